# create_dev_user.py
"""
Заполняет локальную БД данными для разработки: тарифы и тестовые пользователи.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_info
from carpool.infra.database import close_db, get_db, init_db

DEV_TIERS = (
    ("SINGLE", Decimal("10"), Decimal("2")),
    ("DOUBLE", Decimal("8"), Decimal("1.5")),
    ("TRIPLE", Decimal("5"), Decimal("1")),
)

DEV_USERS = (
    ("dev_passenger_1", 500, 20),
    ("dev_passenger_2", 500, 20),
    ("dev_passenger_3", 50, 0),
    ("dev_driver", 0, 0),
)


async def main() -> None:
    await init_db()
    db = get_db()

    async with db.transaction() as conn:
        for booking_type, base_fare, per_km_rate in DEV_TIERS:
            await conn.execute(
                """
                INSERT INTO booking_type_settings (booking_type, base_fare, per_km_rate)
                VALUES ($1, $2, $3)
                ON CONFLICT (booking_type) DO NOTHING
                """,
                booking_type,
                base_fare,
                per_km_rate,
            )
        await conn.execute("INSERT INTO app_settings (id) VALUES (1) ON CONFLICT (id) DO NOTHING")

        for user_id, balance, bonus in DEV_USERS:
            await conn.execute(
                "INSERT INTO users (id, balance, bonus) VALUES ($1, $2, $3) ON CONFLICT (id) DO NOTHING",
                user_id,
                balance,
                bonus,
            )

    await log_info(f"Тестовые данные созданы: пользователей {len(DEV_USERS)}", type_msg=TypeMsg.INFO)
    await close_db()


if __name__ == "__main__":
    asyncio.run(main())
