# create_db.py
"""
Создаёт базу данных Carpool, если её ещё нет, и применяет схему.
"""

from __future__ import annotations

import asyncio

import asyncpg

from carpool.common.constants import TypeMsg
from carpool.common.logger import log_error, log_info
from carpool.config import settings
from carpool.infra.database import close_db, init_db


async def create_db() -> bool:
    db_name = settings.database.DB_NAME

    try:
        # Подключаемся к системной БД, чтобы создать рабочую
        sys_conn = await asyncpg.connect(
            user=settings.database.DB_USER,
            password=settings.database.DB_PASSWORD,
            host=settings.database.DB_HOST,
            port=settings.database.DB_PORT,
            database="postgres",
        )
        try:
            exists = await sys_conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name)
            if not exists:
                await log_info(f"Создание базы данных {db_name}...", type_msg=TypeMsg.INFO)
                await sys_conn.execute(f'CREATE DATABASE "{db_name}"')
            else:
                await log_info(f"База данных {db_name} уже существует", type_msg=TypeMsg.INFO)
        finally:
            await sys_conn.close()
    except (asyncpg.PostgresError, OSError) as e:
        await log_error(f"Не удалось создать базу данных {db_name}: {e}")
        return False

    await init_db()
    await close_db()
    return True


if __name__ == "__main__":
    raise SystemExit(0 if asyncio.run(create_db()) else 1)
