# carpool/core/trips/repository.py
"""
Репозиторий поездок (PostgreSQL).

Мутирующие операции выполняются на соединении из транзакции вызывающего:
чтение строки поездки под FOR UPDATE, затем UPDATE с проверкой ожидаемого
статуса, чтобы исключить потерянные обновления.
"""

from __future__ import annotations

from collections import defaultdict
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from typing import Any, Iterable

from asyncpg import Connection, Record

from carpool.common.constants import ACTIVE_STATUSES, PRE_START_STATUSES, TransactionKind, TripStatus
from carpool.common.errors import ConcurrentUpdateError, InsufficientBalanceError, UserNotFoundError
from carpool.common.logger import log_info
from carpool.core.geo.kernel import GeoPoint
from carpool.core.trips.models import CommitmentWindow, Trip, TripMember, UserFunds
from carpool.infra.database import DatabaseManager


_TRIP_COLUMNS = """
    id, creator_id, driver_id, origin_lat, origin_lng, destination_lat, destination_lng,
    origin_label, destination_label, start_time, end_time, trip_date, booking_type, status,
    total_fare, driver_share, app_commission, distance_km, duration_minutes,
    user_has_enough_money, is_paid, payment_notice_at, payment_reminders_sent
"""


def _statuses(values: Iterable[TripStatus]) -> list[str]:
    return [s.value for s in values]


def _row_to_member(row: Record) -> TripMember:
    return TripMember(
        trip_id=row["trip_id"],
        user_id=row["user_id"],
        pickup=GeoPoint(lat=row["pickup_lat"], lng=row["pickup_lng"]),
        drop=GeoPoint(lat=row["drop_lat"], lng=row["drop_lng"]),
        seats_booked=row["seats_booked"],
        passenger_fare=row["passenger_fare"],
        driver_share=row["driver_share"],
        app_commission=row["app_commission"],
    )


def _row_to_trip(row: Record, members: list[TripMember]) -> Trip:
    trip_date = row["trip_date"]
    return Trip(
        id=row["id"],
        creator_id=row["creator_id"],
        driver_id=row["driver_id"],
        origin=GeoPoint(lat=row["origin_lat"], lng=row["origin_lng"]),
        destination=GeoPoint(lat=row["destination_lat"], lng=row["destination_lng"]),
        origin_label=row["origin_label"],
        destination_label=row["destination_label"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        trip_date=trip_date.isoformat() if isinstance(trip_date, date) else str(trip_date),
        booking_type=row["booking_type"],
        status=row["status"],
        total_fare=row["total_fare"],
        driver_share=row["driver_share"],
        app_commission=row["app_commission"],
        distance_km=row["distance_km"],
        duration_minutes=row["duration_minutes"],
        user_has_enough_money=row["user_has_enough_money"],
        is_paid=row["is_paid"],
        payment_notice_at=row["payment_notice_at"],
        payment_reminders_sent=row["payment_reminders_sent"],
        members=members,
    )


class TripRepository:
    """Доступ к поездкам, участникам и балансам."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    def transaction(self) -> AbstractAsyncContextManager[Connection]:
        """Транзакция, внутри которой выполняются мутирующие операции."""
        return self._db.transaction()

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def _attach_members(self, rows: list[Record], conn: Connection | None = None) -> list[Trip]:
        if not rows:
            return []
        trip_ids = [row["id"] for row in rows]
        query = "SELECT * FROM trip_members WHERE trip_id = ANY($1::text[]) ORDER BY joined_at"
        member_rows = await (conn.fetch(query, trip_ids) if conn else self._db.fetch(query, trip_ids))

        by_trip: dict[str, list[TripMember]] = defaultdict(list)
        for member_row in member_rows:
            by_trip[member_row["trip_id"]].append(_row_to_member(member_row))
        return [_row_to_trip(row, by_trip[row["id"]]) for row in rows]

    async def get_trip(self, trip_id: str) -> Trip | None:
        """Возвращает поездку с участниками."""
        row = await self._db.fetchrow(f"SELECT {_TRIP_COLUMNS} FROM trips WHERE id = $1", trip_id)
        if row is None:
            return None
        return (await self._attach_members([row]))[0]

    async def lock_trip(self, conn: Connection, trip_id: str) -> Trip | None:
        """Читает поездку под блокировкой строки до конца транзакции."""
        row = await conn.fetchrow(f"SELECT {_TRIP_COLUMNS} FROM trips WHERE id = $1 FOR UPDATE", trip_id)
        if row is None:
            return None
        return (await self._attach_members([row], conn))[0]

    async def find_open_trips(self, start_from: datetime, start_to: datetime) -> list[Trip]:
        """Открытые поездки со стартом в диапазоне [start_from, start_to]."""
        rows = await self._db.fetch(
            f"""
            SELECT {_TRIP_COLUMNS} FROM trips
            WHERE status = $1 AND start_time BETWEEN $2 AND $3
            ORDER BY start_time
            """,
            TripStatus.OPEN.value,
            start_from,
            start_to,
        )
        return await self._attach_members(rows)

    async def get_unfunded_trips(self, now: datetime) -> list[Trip]:
        """Неоплаченные OPEN/FULL поездки, которые ещё не начались."""
        rows = await self._db.fetch(
            f"""
            SELECT {_TRIP_COLUMNS} FROM trips
            WHERE user_has_enough_money = FALSE
              AND status = ANY($1::text[])
              AND start_time > $2
            ORDER BY start_time
            """,
            _statuses((TripStatus.OPEN, TripStatus.FULL)),
            now,
        )
        return await self._attach_members(rows)

    async def get_user_commitments(self, user_id: str) -> list[CommitmentWindow]:
        """Активные обязательства пользователя как участника."""
        rows = await self._db.fetch(
            """
            SELECT t.id, t.start_time, t.end_time
            FROM trips t
            JOIN trip_members m ON m.trip_id = t.id
            WHERE m.user_id = $1 AND t.status = ANY($2::text[])
            """,
            user_id,
            _statuses(ACTIVE_STATUSES),
        )
        return [CommitmentWindow(trip_id=r["id"], start=r["start_time"], end=r["end_time"]) for r in rows]

    async def get_driver_commitments(self, driver_id: str) -> list[CommitmentWindow]:
        """Назначенные водителю и ещё не оплаченные поездки."""
        rows = await self._db.fetch(
            """
            SELECT id, start_time, end_time FROM trips
            WHERE driver_id = $1 AND status = $2 AND is_paid = FALSE
            """,
            driver_id,
            TripStatus.ASSIGNED.value,
        )
        return [CommitmentWindow(trip_id=r["id"], start=r["start_time"], end=r["end_time"]) for r in rows]

    async def get_user_funds(self, user_id: str) -> UserFunds | None:
        row = await self._db.fetchrow("SELECT id, balance, bonus FROM users WHERE id = $1", user_id)
        if row is None:
            return None
        return UserFunds(user_id=row["id"], balance=row["balance"], bonus=row["bonus"])

    # =========================================================================
    # ЗАПИСЬ (в транзакции вызывающего)
    # =========================================================================

    async def insert_trip(self, conn: Connection, trip: Trip) -> None:
        """Создаёт поездку вместе с участниками."""
        await conn.execute(
            f"""
            INSERT INTO trips ({_TRIP_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                    $15, $16, $17, $18, $19, $20, $21, $22, $23)
            """,
            trip.id,
            trip.creator_id,
            trip.driver_id,
            trip.origin.lat,
            trip.origin.lng,
            trip.destination.lat,
            trip.destination.lng,
            trip.origin_label,
            trip.destination_label,
            trip.start_time,
            trip.end_time,
            date.fromisoformat(trip.trip_date),
            trip.booking_type.value,
            trip.status.value,
            trip.total_fare,
            trip.driver_share,
            trip.app_commission,
            trip.distance_km,
            trip.duration_minutes,
            trip.user_has_enough_money,
            trip.is_paid,
            trip.payment_notice_at,
            trip.payment_reminders_sent,
        )
        for member in trip.members:
            await self.insert_member(conn, member)

    async def update_trip(self, conn: Connection, trip: Trip, expected_status: TripStatus) -> None:
        """
        Сохраняет изменяемые поля поездки при условии, что статус не менялся.

        Raises:
            ConcurrentUpdateError: Статус строки отличается от ожидаемого
        """
        result = await conn.execute(
            """
            UPDATE trips SET
                driver_id = $3,
                origin_lat = $4, origin_lng = $5,
                destination_lat = $6, destination_lng = $7,
                status = $8,
                total_fare = $9, driver_share = $10, app_commission = $11,
                user_has_enough_money = $12, is_paid = $13,
                payment_notice_at = $14, payment_reminders_sent = $15,
                updated_at = NOW()
            WHERE id = $1 AND status = $2
            """,
            trip.id,
            expected_status.value,
            trip.driver_id,
            trip.origin.lat,
            trip.origin.lng,
            trip.destination.lat,
            trip.destination.lng,
            trip.status.value,
            trip.total_fare,
            trip.driver_share,
            trip.app_commission,
            trip.user_has_enough_money,
            trip.is_paid,
            trip.payment_notice_at,
            trip.payment_reminders_sent,
        )
        if result.split()[-1] == "0":
            raise ConcurrentUpdateError(
                "Поездка изменена параллельной операцией",
                trip_id=trip.id,
                expected_status=expected_status.value,
            )

    async def insert_member(self, conn: Connection, member: TripMember) -> None:
        await conn.execute(
            """
            INSERT INTO trip_members (
                trip_id, user_id, pickup_lat, pickup_lng, drop_lat, drop_lng,
                seats_booked, passenger_fare, driver_share, app_commission
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            member.trip_id,
            member.user_id,
            member.pickup.lat,
            member.pickup.lng,
            member.drop.lat,
            member.drop.lng,
            member.seats_booked,
            member.passenger_fare,
            member.driver_share,
            member.app_commission,
        )

    async def delete_member(self, conn: Connection, trip_id: str, user_id: str) -> None:
        await conn.execute("DELETE FROM trip_members WHERE trip_id = $1 AND user_id = $2", trip_id, user_id)

    async def adjust_balance(self, conn: Connection, user_id: str, delta: int, *, allow_negative: bool = True) -> int:
        """
        Изменяет баланс пользователя на delta.

        Returns:
            Новый баланс

        Raises:
            UserNotFoundError: Пользователя нет
            InsufficientBalanceError: allow_negative=False и баланс стал бы отрицательным
        """
        new_balance = await conn.fetchval(
            """
            UPDATE users SET balance = balance + $2
            WHERE id = $1 AND ($3 OR balance + $2 >= 0)
            RETURNING balance
            """,
            user_id,
            delta,
            allow_negative,
        )
        if new_balance is not None:
            return new_balance

        current = await conn.fetchval("SELECT balance FROM users WHERE id = $1", user_id)
        if current is None:
            raise UserNotFoundError("Пользователь не найден", user_id=user_id)
        raise InsufficientBalanceError(
            "Недостаточно средств для списания",
            fatal=True,
            user_id=user_id,
            balance=current,
            required=-delta,
        )

    async def consume_bonus(self, conn: Connection, user_id: str, amount: int) -> bool:
        """Списывает бонус, если его хватает. Возвращает True при списании."""
        result = await conn.execute(
            "UPDATE users SET bonus = bonus - $2 WHERE id = $1 AND bonus >= $2",
            user_id,
            amount,
        )
        return result.split()[-1] != "0"

    async def record_transaction(
        self,
        conn: Connection,
        user_id: str,
        trip_id: str | None,
        amount: int,
        kind: TransactionKind,
    ) -> None:
        """Фиксирует денежную операцию по балансу."""
        await conn.execute(
            "INSERT INTO money_transactions (user_id, trip_id, amount, kind) VALUES ($1, $2, $3, $4)",
            user_id,
            trip_id,
            amount,
            kind.value,
        )

    async def cancel_expired(self, today: date) -> list[str]:
        """
        Отменяет все не начавшиеся поездки с датой раньше today.
        Повторный запуск ничего не меняет.
        """
        rows = await self._db.fetch(
            """
            UPDATE trips SET status = $1, updated_at = NOW()
            WHERE trip_date < $2 AND status = ANY($3::text[])
            RETURNING id
            """,
            TripStatus.CANCELLED.value,
            today,
            _statuses(PRE_START_STATUSES),
        )
        trip_ids = [row["id"] for row in rows]
        if trip_ids:
            await log_info(f"Просроченные поездки отменены: {len(trip_ids)}")
        return trip_ids


def trip_summary(trip: Trip) -> dict[str, Any]:
    """Краткое описание поездки для логов."""
    return {
        "trip_id": trip.id,
        "status": trip.status.value,
        "seats": f"{trip.seats_booked}/{trip.capacity}",
        "total_fare": trip.total_fare,
    }
