# carpool/core/trips/service.py
"""
Сервис поездок.

Оркестрирует запрос, подбор, присоединение, выход, назначение водителя,
старт и завершение поездки. Каждая мутирующая операция над поездкой
выполняется атомарно: блокировка поездки в процессе, транзакция БД,
чтение строки под FOR UPDATE, проверка, запись. Уведомления и события
отправляются только после фиксации транзакции.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Protocol

from carpool.common.constants import (
    PRE_START_STATUSES,
    ActorRole,
    TransactionKind,
    TripStatus,
    TripType,
    TypeMsg,
)
from carpool.common.errors import (
    AlreadyMemberError,
    CapacityExceededError,
    CarpoolError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotTripDriverError,
    TripNotAvailableError,
    TripNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from carpool.common.logger import log_error, log_info, log_warning
from carpool.common.timeutils import (
    Clock,
    combine_local,
    local_today,
    parse_clock_time,
    parse_trip_date,
    utc_now,
)
from carpool.core.geo.kernel import GeoPoint
from carpool.core.geo.routes import CachedRouteProvider
from carpool.core.matching.service import MatchingPolicy, RouteMatcher
from carpool.core.notifications.service import Notifier
from carpool.core.pricing.repository import SettingsRepository
from carpool.core.pricing.service import FareCalculator, FareQuote, affordable_trips, validate_seats
from carpool.core.trips.conflicts import ConflictDetector, find_conflict
from carpool.core.trips.ledger import add_member, initial_status, is_full_capacity_request, remove_member
from carpool.core.trips.locks import TripLockRegistry
from carpool.core.trips.models import (
    CommitmentWindow,
    JoinTripCommand,
    LeaveResult,
    NearbyTrip,
    NearbyTripsQuery,
    PaymentCheckReport,
    QuoteFareQuery,
    RequestTripCommand,
    RequestTripResult,
    Trip,
    TripMember,
    UserFunds,
)
from carpool.core.trips.repository import TripRepository, trip_summary
from carpool.core.trips.state_machine import (
    LifecyclePolicy,
    TripStateMachine,
    check_start_window,
    leave_penalty,
)
from carpool.shared.events import (
    DomainEvent,
    TripBecameFull,
    TripCancelled,
    TripCompleted,
    TripCreated,
    TripMemberJoined,
    TripMemberLeft,
    TripStatusChanged,
)


class EventPublisher(Protocol):
    async def publish(self, event: DomainEvent) -> bool:
        ...


@dataclass(frozen=True)
class _Leg:
    """Одна направленная поездка из пакетного запроса."""
    trip_date: date
    start: datetime
    end: datetime
    origin: GeoPoint
    destination: GeoPoint
    origin_label: str | None
    destination_label: str | None


class TripService:
    """
    Сервис жизненного цикла совместных поездок.

    Публичные операции принимают проверенные доменные параметры и
    возвращают объект результата либо поднимают типизированную ошибку
    из carpool.common.errors.
    """

    def __init__(
        self,
        repository: TripRepository,
        settings_repository: SettingsRepository,
        routes: CachedRouteProvider,
        notifier: Notifier,
        events: EventPublisher | None = None,
        matching_policy: MatchingPolicy | None = None,
        lifecycle_policy: LifecyclePolicy | None = None,
        timezone_name: str = "UTC",
        clock: Clock = utc_now,
        locks: TripLockRegistry | None = None,
        page_size: int = 10,
    ) -> None:
        self._repo = repository
        self._settings = settings_repository
        self._routes = routes
        self._notifier = notifier
        self._events = events
        self._matcher = RouteMatcher(routes, matching_policy or MatchingPolicy())
        self._policy = lifecycle_policy or LifecyclePolicy()
        self._conflicts = ConflictDetector(repository, self._policy)
        self._tz = timezone_name
        self._clock = clock
        self._locks = locks or TripLockRegistry()
        self._page_size = page_size

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ МЕТОДЫ
    # =========================================================================

    async def _publish(self, *events: DomainEvent) -> None:
        if self._events is None:
            return
        for event in events:
            await self._events.publish(event)

    async def _load_trip(self, trip_id: str) -> Trip:
        trip = await self._repo.get_trip(trip_id)
        if trip is None:
            raise TripNotFoundError("Поездка не найдена", trip_id=trip_id)
        return trip

    async def _load_funds(self, user_id: str) -> UserFunds:
        funds = await self._repo.get_user_funds(user_id)
        if funds is None:
            raise UserNotFoundError("Пользователь не найден", user_id=user_id)
        return funds

    @staticmethod
    def _require(trip: Trip | None, trip_id: str) -> Trip:
        if trip is None:
            raise TripNotFoundError("Поездка не найдена", trip_id=trip_id)
        return trip

    @staticmethod
    def _require_driver(trip: Trip, driver_id: str) -> None:
        if trip.driver_id != driver_id:
            raise NotTripDriverError("Водитель не назначен на эту поездку", trip_id=trip.id, driver_id=driver_id)

    def _notify_many(self, user_ids: list[str], title: str, body: str, data: dict | None = None) -> None:
        for user_id in user_ids:
            self._notifier.notify(user_id, title, body, data=data)

    def _status_changed(self, trip: Trip, old_status: TripStatus, reason: str | None = None) -> TripStatusChanged:
        return TripStatusChanged(
            trip_id=trip.id,
            old_status=old_status.value,
            new_status=trip.status.value,
            driver_id=trip.driver_id,
            reason=reason,
        )

    def _became_full(self, trip: Trip) -> TripBecameFull:
        return TripBecameFull(
            trip_id=trip.id,
            trip_date=trip.trip_date,
            booking_type=trip.booking_type.value,
            origin_label=trip.origin_label,
            destination_label=trip.destination_label,
        )

    # =========================================================================
    # КОТИРОВКА И ПОИСК
    # =========================================================================

    async def quote_fare(self, query: QuoteFareQuery) -> FareQuote:
        """
        Рассчитывает стоимость поездки без создания чего-либо.

        Raises:
            SettingsNotFoundError: Нет тарифов
            RouteProviderError: Провайдер маршрутов недоступен
        """
        validate_seats(query.booking_type, query.seats_requested)
        config = await self._settings.get_pricing_config()
        route = await self._routes.get_route(query.origin, query.destination)

        bonus_balance = 0
        if query.user_id is not None:
            bonus_balance = (await self._load_funds(query.user_id)).bonus

        return FareCalculator(config).quote(
            route.distance_km,
            route.duration_minutes,
            query.seats_requested,
            query.booking_type,
            bonus_balance=bonus_balance,
        )

    async def find_nearby_trips(self, query: NearbyTripsQuery) -> list[NearbyTrip]:
        """Открытые поездки, на маршрут которых ложатся точки пассажира."""
        window = self._matcher.policy.start_time_window
        candidates = await self._repo.find_open_trips(query.start_time - window, query.start_time + window)
        return await self._matcher.find_nearby(candidates, query)

    # =========================================================================
    # ЗАПРОС ПОЕЗДКИ
    # =========================================================================

    def _build_legs(self, cmd: RequestTripCommand, duration: timedelta, now: datetime) -> list[_Leg]:
        today = local_today(now, self._tz)
        dates = sorted({parse_trip_date(value) for value in cmd.trip_dates})
        past = [d.isoformat() for d in dates if d < today]
        if past:
            raise ValidationError("Дата поездки уже прошла", field="trip_dates", value=past)

        start_clock = parse_clock_time(cmd.start_time)
        return_clock = parse_clock_time(cmd.return_time) if cmd.trip_type == TripType.ROUND_TRIP else None

        legs: list[_Leg] = []
        for trip_date in dates:
            start = combine_local(trip_date, start_clock, self._tz)
            if start <= now:
                raise ValidationError("Время отправления уже прошло", field="start_time", value=trip_date.isoformat())
            legs.append(_Leg(
                trip_date=trip_date,
                start=start,
                end=start + duration,
                origin=cmd.origin,
                destination=cmd.destination,
                origin_label=cmd.origin_label,
                destination_label=cmd.destination_label,
            ))

            if return_clock is not None:
                return_start = combine_local(trip_date, return_clock, self._tz)
                if return_start <= start:
                    raise ValidationError("Обратная поездка должна быть позже прямой", field="return_time")
                legs.append(_Leg(
                    trip_date=trip_date,
                    start=return_start,
                    end=return_start + duration,
                    origin=cmd.destination,
                    destination=cmd.origin,
                    origin_label=cmd.destination_label,
                    destination_label=cmd.origin_label,
                ))
        return legs

    async def _check_legs_conflicts(self, user_id: str, legs: list[_Leg]) -> None:
        """Проверяет все поездки пакета до записи: с существующими и между собой."""
        accepted: list[CommitmentWindow] = []
        for index, leg in enumerate(legs):
            await self._conflicts.check_user(user_id, leg.start, leg.end)
            clash = find_conflict(
                leg.start,
                leg.end,
                accepted,
                self._policy.conflict_buffer,
                self._policy.default_commitment,
            )
            if clash is not None:
                raise ValidationError(
                    "Поездки в запросе пересекаются по времени",
                    field="return_time",
                    start=leg.start.isoformat(),
                )
            accepted.append(CommitmentWindow(trip_id=f"leg-{index}", start=leg.start, end=leg.end))

    async def request_trip(self, cmd: RequestTripCommand) -> RequestTripResult:
        """
        Запрос пассажира на одну или несколько дат (и обратные поездки).

        Частичные запросы сначала ищут попутную поездку; найденные варианты
        возвращаются вместо создания новой поездки. Запросы на всю
        вместимость создаются сразу в статусе FULL. Бонус списывается один
        раз на пакет вместе с записью поездок в одной транзакции, скидка
        достаётся только первой созданной поездке, остальные идут по полной
        цене. Если бонус уже израсходован, скидка не применяется.

        Raises:
            ValidationError: Некорректные места, даты или время
            ConflictError: Пересечение с существующей поездкой пользователя
            SettingsNotFoundError: Нет тарифов
            RouteProviderError: Провайдер маршрутов недоступен
        """
        validate_seats(cmd.booking_type, cmd.seats_requested)
        now = self._clock()

        funds = await self._load_funds(cmd.user_id)
        config = await self._settings.get_pricing_config()
        route = await self._routes.get_route(cmd.origin, cmd.destination)
        calculator = FareCalculator(config)
        bonus_quote = calculator.quote(
            route.distance_km,
            route.duration_minutes,
            cmd.seats_requested,
            cmd.booking_type,
            bonus_balance=funds.bonus,
        )
        full_quote = bonus_quote
        if bonus_quote.bonus_used:
            full_quote = calculator.quote(
                route.distance_km,
                route.duration_minutes,
                cmd.seats_requested,
                cmd.booking_type,
                use_bonus=False,
            )

        legs = self._build_legs(cmd, timedelta(minutes=route.duration_minutes), now)
        await self._check_legs_conflicts(cmd.user_id, legs)

        full_request = is_full_capacity_request(cmd.booking_type, cmd.seats_requested)
        nearby_trips: list[NearbyTrip] = []
        pending: list[_Leg] = []
        for leg in legs:
            if not full_request:
                nearby = await self.find_nearby_trips(NearbyTripsQuery(
                    origin=leg.origin,
                    destination=leg.destination,
                    start_time=leg.start,
                    seats_requested=cmd.seats_requested,
                    take=self._page_size,
                ))
                if nearby:
                    nearby_trips.extend(nearby)
                    continue
            pending.append(leg)

        # Скидка уходит только в первую поездку пакета, остальные по полной цене
        first_quote = full_quote
        created: list[Trip] = []
        if pending:
            async with self._repo.transaction() as conn:
                if bonus_quote.bonus_used:
                    if await self._repo.consume_bonus(conn, cmd.user_id, config.bonus_amount):
                        first_quote = bonus_quote
                    else:
                        await log_warning(
                            f"Бонус пользователя {cmd.user_id} уже израсходован, скидка не применена"
                        )
                affordable = affordable_trips(
                    funds.balance, first_quote.final_fare, full_quote.final_fare, len(pending),
                )
                for index, leg in enumerate(pending):
                    trip = self._new_trip(
                        cmd,
                        leg,
                        first_quote if index == 0 else full_quote,
                        route.distance_km,
                        route.duration_minutes,
                        funded=index < affordable,
                    )
                    await self._repo.insert_trip(conn, trip)
                    created.append(trip)
                if first_quote.bonus_used:
                    await self._repo.record_transaction(
                        conn, cmd.user_id, created[0].id, -config.bonus_amount, TransactionKind.BONUS_USED,
                    )
        else:
            first_quote = bonus_quote
            affordable = affordable_trips(
                funds.balance, bonus_quote.final_fare, full_quote.final_fare, len(legs),
            )

        result = RequestTripResult(
            quote=first_quote,
            created_trips=created,
            nearby_trips=nearby_trips,
            max_trips_affordable=affordable,
        )

        for trip in created:
            await log_info(f"Поездка создана: {trip.id}", extra=trip_summary(trip))
            await self._publish(TripCreated(
                trip_id=trip.id,
                creator_id=trip.creator_id,
                booking_type=trip.booking_type.value,
                status=trip.status.value,
                trip_date=trip.trip_date,
                seats_booked=trip.seats_booked,
                total_fare=trip.total_fare,
                user_has_enough_money=trip.user_has_enough_money,
            ))
            if trip.status == TripStatus.FULL:
                await self._publish(self._became_full(trip))
            self._notifier.notify(
                cmd.user_id,
                "Trip created",
                f"Your trip on {trip.trip_date} has been created.",
                data={"trip_id": trip.id},
            )

        funded_count = sum(1 for t in created if t.user_has_enough_money)
        result.user_has_enough_money = funded_count == len(created)
        result.total_trip_cost = sum(t.total_fare for t in created)
        if created and funded_count < len(created):
            self._notifier.notify(
                cmd.user_id,
                "Low balance",
                f"Your balance covers {funded_count} of {len(created)} trips. "
                "Please top up to confirm the rest.",
            )
        return result

    def _new_trip(
        self,
        cmd: RequestTripCommand,
        leg: _Leg,
        quote: FareQuote,
        distance_km: float,
        duration_minutes: int,
        funded: bool,
    ) -> Trip:
        trip = Trip(
            creator_id=cmd.user_id,
            origin=leg.origin,
            destination=leg.destination,
            origin_label=leg.origin_label,
            destination_label=leg.destination_label,
            start_time=leg.start,
            end_time=leg.end,
            trip_date=leg.trip_date.isoformat(),
            booking_type=cmd.booking_type,
            status=initial_status(cmd.booking_type, cmd.seats_requested),
            total_fare=quote.breakdown.passenger_fare,
            driver_share=quote.breakdown.driver_share,
            app_commission=quote.breakdown.app_commission,
            distance_km=distance_km,
            duration_minutes=duration_minutes,
            user_has_enough_money=funded,
        )
        trip.members.append(TripMember(
            trip_id=trip.id,
            user_id=cmd.user_id,
            pickup=leg.origin,
            drop=leg.destination,
            seats_booked=cmd.seats_requested,
            passenger_fare=quote.breakdown.passenger_fare,
            driver_share=quote.breakdown.driver_share,
            app_commission=quote.breakdown.app_commission,
        ))
        return trip

    # =========================================================================
    # ПРИСОЕДИНЕНИЕ И ВЫХОД
    # =========================================================================

    async def join_trip(self, cmd: JoinTripCommand) -> Trip:
        """
        Присоединяет пассажира к открытой поездке.

        Стоимость считается по собственному маршруту пассажира
        (pickup -> drop) с учётом минимальной стоимости, без бонуса.

        Raises:
            TripNotFoundError, TripNotAvailableError, AlreadyMemberError,
            CapacityExceededError, ConflictError, InsufficientBalanceError
        """
        trip = await self._load_trip(cmd.trip_id)
        if trip.status != TripStatus.OPEN:
            raise TripNotAvailableError("Поездка не принимает новых участников", trip_id=trip.id, status=trip.status.value)
        if trip.member(cmd.user_id) is not None:
            raise AlreadyMemberError("Пользователь уже в поездке", trip_id=trip.id, user_id=cmd.user_id)
        validate_seats(trip.booking_type, cmd.seats_requested)
        if trip.available_seats < cmd.seats_requested:
            raise CapacityExceededError(
                f"Недостаточно мест: свободно {trip.available_seats}, запрошено {cmd.seats_requested}",
                trip_id=trip.id,
                available=trip.available_seats,
                requested=cmd.seats_requested,
            )

        await self._conflicts.check_user(cmd.user_id, trip.start_time, trip.end_time, exclude_trip_id=trip.id)

        config = await self._settings.get_pricing_config()
        route = await self._routes.get_route(cmd.pickup, cmd.drop)
        quote = FareCalculator(config).quote(
            route.distance_km,
            route.duration_minutes,
            cmd.seats_requested,
            trip.booking_type,
            use_bonus=False,
        )

        funds = await self._load_funds(cmd.user_id)
        if funds.balance < quote.final_fare:
            raise InsufficientBalanceError(
                "Недостаточно средств для присоединения к поездке",
                user_id=cmd.user_id,
                balance=funds.balance,
                required=quote.final_fare,
            )

        member = TripMember(
            trip_id=trip.id,
            user_id=cmd.user_id,
            pickup=cmd.pickup,
            drop=cmd.drop,
            seats_booked=cmd.seats_requested,
            passenger_fare=quote.breakdown.passenger_fare,
            driver_share=quote.breakdown.driver_share,
            app_commission=quote.breakdown.app_commission,
        )

        async with self._locks.hold(trip.id):
            async with self._repo.transaction() as conn:
                current = self._require(await self._repo.lock_trip(conn, trip.id), trip.id)
                if current.status != TripStatus.OPEN:
                    raise TripNotAvailableError(
                        "Поездка не принимает новых участников",
                        trip_id=current.id,
                        status=current.status.value,
                    )
                if current.member(cmd.user_id) is not None:
                    raise AlreadyMemberError("Пользователь уже в поездке", trip_id=current.id, user_id=cmd.user_id)

                updated = add_member(current, member)
                await self._repo.update_trip(conn, updated, expected_status=current.status)
                await self._repo.insert_member(conn, member)

        await log_info(f"Пассажир {cmd.user_id} присоединился к поездке {updated.id}", extra=trip_summary(updated))
        await self._publish(TripMemberJoined(
            trip_id=updated.id,
            user_id=cmd.user_id,
            seats_booked=member.seats_booked,
            passenger_fare=member.passenger_fare,
            status=updated.status.value,
        ))
        if updated.status != current.status:
            await self._publish(self._status_changed(updated, current.status, reason="capacity_reached"),
                                self._became_full(updated))

        self._notifier.notify(
            cmd.user_id,
            "Joined trip",
            f"You joined the trip on {updated.trip_date}.",
            data={"trip_id": updated.id},
        )
        others = [uid for uid in updated.member_ids() if uid != cmd.user_id]
        self._notify_many(others, "New passenger", "A new passenger joined your trip.", {"trip_id": updated.id})
        return updated

    async def leave_trip(self, user_id: str, trip_id: str) -> LeaveResult:
        """
        Выход пассажира из поездки до старта.

        Штраф списывается в той же транзакции, что и изменение поездки.

        Raises:
            TripNotFoundError, NotTripMemberError, InvalidTransitionError,
            LeaveNotAllowedError
        """
        async with self._locks.hold(trip_id):
            async with self._repo.transaction() as conn:
                current = self._require(await self._repo.lock_trip(conn, trip_id), trip_id)
                if current.status not in PRE_START_STATUSES:
                    raise InvalidTransitionError(
                        "Выйти можно только из не начавшейся поездки",
                        trip_id=trip_id,
                        status=current.status.value,
                    )

                penalty = 0
                if current.member(user_id) is not None:
                    penalty = leave_penalty(current.start_time, self._clock(), ActorRole.PASSENGER, self._policy)
                outcome = remove_member(current, user_id)

                await self._repo.delete_member(conn, trip_id, user_id)
                await self._repo.update_trip(conn, outcome.trip, expected_status=current.status)
                if penalty:
                    await self._repo.adjust_balance(conn, user_id, -penalty, allow_negative=True)
                    await self._repo.record_transaction(conn, user_id, trip_id, -penalty, TransactionKind.LEAVE_PENALTY)

        updated = outcome.trip
        await log_info(
            f"Пассажир {user_id} вышел из поездки {trip_id}, штраф={penalty}",
            extra=trip_summary(updated),
        )
        await self._publish(TripMemberLeft(
            trip_id=trip_id,
            user_id=user_id,
            penalty=penalty,
            trip_cancelled=outcome.cancelled,
        ))
        if updated.status != current.status:
            await self._publish(self._status_changed(updated, current.status, reason="member_left"))
        if outcome.cancelled:
            await self._publish(TripCancelled(trip_id=trip_id, reason="member_left"))

        self._notifier.notify(
            user_id,
            "Left trip",
            f"You left the trip. Penalty: {penalty}." if penalty else "You left the trip.",
            data={"trip_id": trip_id},
        )
        self._notify_many(updated.member_ids(), "Passenger left", "A passenger left your trip.", {"trip_id": trip_id})
        if current.driver_id and updated.driver_id is None:
            self._notifier.notify(
                current.driver_id,
                "Trip changed",
                "A passenger left and the trip is no longer assigned to you.",
                data={"trip_id": trip_id},
            )
        return LeaveResult(trip=updated, penalty=penalty, trip_cancelled=outcome.cancelled)

    # =========================================================================
    # ВОДИТЕЛЬ
    # =========================================================================

    async def assign_driver(self, driver_id: str, trip_id: str) -> Trip:
        """
        Назначает водителя на заполненную оплаченную поездку.

        Raises:
            TripNotFoundError, TripNotAvailableError, ValidationError,
            ConflictError, InvalidTransitionError
        """
        trip = await self._load_trip(trip_id)
        if trip.member(driver_id) is not None:
            raise ValidationError("Водитель не может быть пассажиром своей поездки", driver_id=driver_id)
        await self._conflicts.check_driver(driver_id, trip.start_time)

        async with self._locks.hold(trip_id):
            async with self._repo.transaction() as conn:
                current = self._require(await self._repo.lock_trip(conn, trip_id), trip_id)
                if current.status != TripStatus.FULL:
                    raise TripNotAvailableError(
                        "Водителя можно назначить только на заполненную поездку",
                        trip_id=trip_id,
                        status=current.status.value,
                    )
                if not current.user_has_enough_money:
                    raise TripNotAvailableError("Поездка ещё не оплачена", trip_id=trip_id)

                TripStateMachine.ensure(current.status, TripStatus.ASSIGNED)
                updated = current.model_copy(deep=True)
                updated.driver_id = driver_id
                updated.status = TripStatus.ASSIGNED
                await self._repo.update_trip(conn, updated, expected_status=current.status)

        await log_info(f"Водитель {driver_id} назначен на поездку {trip_id}")
        await self._publish(self._status_changed(updated, current.status, reason="driver_assigned"))
        self._notifier.notify(driver_id, "Trip assigned", f"You accepted the trip on {updated.trip_date}.",
                              data={"trip_id": trip_id})
        self._notify_many(updated.member_ids(), "Driver found", "A driver accepted your trip.", {"trip_id": trip_id})
        return updated

    async def driver_leave_trip(self, driver_id: str, trip_id: str) -> LeaveResult:
        """
        Водитель отказывается от назначенной поездки; поездка снова FULL.

        Raises:
            TripNotFoundError, NotTripDriverError, InvalidTransitionError,
            LeaveNotAllowedError
        """
        async with self._locks.hold(trip_id):
            async with self._repo.transaction() as conn:
                current = self._require(await self._repo.lock_trip(conn, trip_id), trip_id)
                self._require_driver(current, driver_id)
                TripStateMachine.ensure(current.status, TripStatus.FULL)
                penalty = leave_penalty(current.start_time, self._clock(), ActorRole.DRIVER, self._policy)

                updated = current.model_copy(deep=True)
                updated.status = TripStatus.FULL
                updated.driver_id = None
                await self._repo.update_trip(conn, updated, expected_status=current.status)
                if penalty:
                    await self._repo.adjust_balance(conn, driver_id, -penalty, allow_negative=True)
                    await self._repo.record_transaction(conn, driver_id, trip_id, -penalty, TransactionKind.LEAVE_PENALTY)

        await log_info(f"Водитель {driver_id} отказался от поездки {trip_id}, штраф={penalty}")
        await self._publish(self._status_changed(updated, current.status, reason="driver_left"),
                            self._became_full(updated))
        self._notify_many(updated.member_ids(), "Driver left", "Your driver cancelled. We are looking for another one.",
                          {"trip_id": trip_id})
        return LeaveResult(trip=updated, penalty=penalty, trip_cancelled=False)

    async def start_trip(self, driver_id: str, trip_id: str) -> Trip:
        """
        Начинает поездку в окне [-60 мин, +30 мин] от времени отправления.

        Raises:
            TripNotFoundError, NotTripDriverError, InvalidTransitionError,
            OutsideStartWindowError
        """
        async with self._locks.hold(trip_id):
            async with self._repo.transaction() as conn:
                current = self._require(await self._repo.lock_trip(conn, trip_id), trip_id)
                self._require_driver(current, driver_id)
                TripStateMachine.ensure(current.status, TripStatus.STARTED)
                check_start_window(current.start_time, self._clock(), self._policy)

                updated = current.model_copy(deep=True)
                updated.status = TripStatus.STARTED
                await self._repo.update_trip(conn, updated, expected_status=current.status)

        await log_info(f"Поездка {trip_id} начата")
        await self._publish(self._status_changed(updated, current.status))
        self._notify_many(updated.member_ids(), "Trip started", "Your trip has started.", {"trip_id": trip_id})
        return updated

    async def end_trip(self, driver_id: str, trip_id: str) -> Trip:
        """
        Завершает поездку и проводит расчёт.

        Списание с каждого участника, зачисление водителю и смена статуса
        выполняются в одной транзакции: либо всё, либо ничего.

        Raises:
            TripNotFoundError, NotTripDriverError, InvalidTransitionError,
            InsufficientBalanceError (фатально для перехода)
        """
        async with self._locks.hold(trip_id):
            try:
                async with self._repo.transaction() as conn:
                    current = self._require(await self._repo.lock_trip(conn, trip_id), trip_id)
                    self._require_driver(current, driver_id)
                    TripStateMachine.ensure(current.status, TripStatus.COMPLETED)

                    for member in current.members:
                        await self._repo.adjust_balance(conn, member.user_id, -member.passenger_fare, allow_negative=False)
                        await self._repo.record_transaction(
                            conn, member.user_id, trip_id, -member.passenger_fare, TransactionKind.TRIP_PAYMENT,
                        )
                    await self._repo.adjust_balance(conn, driver_id, current.driver_share)
                    await self._repo.record_transaction(
                        conn, driver_id, trip_id, current.driver_share, TransactionKind.TRIP_EARNING,
                    )

                    updated = current.model_copy(deep=True)
                    updated.status = TripStatus.COMPLETED
                    updated.is_paid = True
                    await self._repo.update_trip(conn, updated, expected_status=current.status)
            except InsufficientBalanceError as e:
                await log_error(f"Расчёт поездки {trip_id} отменён: {e.message}", extra=e.details)
                raise

        await log_info(f"Поездка {trip_id} завершена и рассчитана", extra=trip_summary(updated))
        await self._publish(
            self._status_changed(updated, current.status),
            TripCompleted(
                trip_id=trip_id,
                driver_id=driver_id,
                total_fare=updated.total_fare,
                driver_share=updated.driver_share,
                app_commission=updated.app_commission,
                member_ids=updated.member_ids(),
            ),
        )
        self._notify_many(updated.member_ids(), "Trip completed", "Thank you for riding with us.", {"trip_id": trip_id})
        self._notifier.notify(driver_id, "Trip completed", f"You earned {updated.driver_share}.",
                              data={"trip_id": trip_id})
        return updated

    # =========================================================================
    # ПЕРИОДИЧЕСКИЕ ПРОВЕРКИ
    # =========================================================================

    async def expire_trips(self, today: date | None = None) -> list[str]:
        """
        Отменяет не начавшиеся поездки, дата которых прошла.
        Идемпотентна: повторный запуск ничего не меняет.
        """
        today = today or local_today(self._clock(), self._tz)
        cancelled = await self._repo.cancel_expired(today)
        for trip_id in cancelled:
            await self._publish(TripCancelled(trip_id=trip_id, reason="expired"))
        return cancelled

    async def check_pending_payments(self) -> PaymentCheckReport:
        """
        Обрабатывает неоплаченные поездки.

        Если баланс создателя покрывает его стоимость, поездка считается
        оплаченной. Иначе за PAYMENT_NOTICE_HOURS до старта отправляется
        уведомление, затем напоминания за 30 и 15 минут до дедлайна,
        а по истечении PAYMENT_GRACE_MINUTES поездка отменяется.
        """
        report = PaymentCheckReport()
        now = self._clock()

        for trip in await self._repo.get_unfunded_trips(now):
            try:
                await self._process_unfunded(trip.id, now, report)
            except CarpoolError as e:
                await log_warning(f"Проверка оплаты поездки {trip.id} пропущена: {e.message}")

        if report.cancelled or report.funded:
            await log_info(
                f"Проверка оплаты: оплачено={len(report.funded)}, отменено={len(report.cancelled)}",
                type_msg=TypeMsg.INFO,
            )
        return report

    async def _process_unfunded(self, trip_id: str, now: datetime, report: PaymentCheckReport) -> None:
        reminder: str | None = None

        async with self._locks.hold(trip_id):
            async with self._repo.transaction() as conn:
                current = await self._repo.lock_trip(conn, trip_id)
                if (
                    current is None
                    or current.user_has_enough_money
                    or current.status not in (TripStatus.OPEN, TripStatus.FULL)
                ):
                    return

                creator = current.member(current.creator_id)
                required = creator.passenger_fare if creator else current.total_fare
                funds = await self._repo.get_user_funds(current.creator_id)
                updated = current.model_copy(deep=True)

                if funds is not None and funds.balance >= required:
                    updated.user_has_enough_money = True
                    updated.payment_notice_at = None
                    report.funded.append(trip_id)
                elif current.payment_notice_at is None:
                    if current.start_time - now > self._policy.payment_notice_before:
                        return
                    updated.payment_notice_at = now
                    report.notified.append(trip_id)
                else:
                    deadline = current.payment_notice_at + self._policy.payment_grace
                    remaining = deadline - now
                    if remaining <= timedelta(0):
                        TripStateMachine.ensure(current.status, TripStatus.CANCELLED)
                        updated.status = TripStatus.CANCELLED
                        report.cancelled.append(trip_id)
                    elif remaining <= timedelta(minutes=15) and current.payment_reminders_sent < 2:
                        updated.payment_reminders_sent = 2
                        reminder = "15"
                    elif remaining <= timedelta(minutes=30) and current.payment_reminders_sent < 1:
                        updated.payment_reminders_sent = 1
                        reminder = "30"
                    else:
                        return

                await self._repo.update_trip(conn, updated, expected_status=current.status)

        data = {"trip_id": trip_id}
        if trip_id in report.funded:
            self._notifier.notify(current.creator_id, "Trip confirmed", "Your trip is now paid and confirmed.", data=data)
        elif trip_id in report.notified:
            minutes = int(self._policy.payment_grace.total_seconds() // 60)
            self._notifier.notify(
                current.creator_id,
                "Payment required",
                f"Top up your balance within {minutes} minutes or the trip will be cancelled.",
                data=data,
            )
        elif trip_id in report.cancelled:
            await self._publish(
                self._status_changed(updated, current.status, reason="payment_timeout"),
                TripCancelled(trip_id=trip_id, reason="payment_timeout"),
            )
            self._notify_many(updated.member_ids(), "Trip cancelled", "The trip was cancelled: payment not received.",
                              data)
        elif reminder is not None:
            report.reminded.append(trip_id)
            self._notifier.notify(
                current.creator_id,
                "Payment reminder",
                f"{reminder} minutes left to top up your balance.",
                data=data,
            )
