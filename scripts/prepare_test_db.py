from __future__ import annotations

import asyncio
import re
from pathlib import Path

import asyncpg
from alembic import command
from alembic.config import Config
from sqlalchemy.engine import make_url

from app.core.config import get_settings
from app.core.integration_db_safety import assert_safe_integration_db

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


async def _create_database_if_missing(database_url: str) -> None:
    parsed = make_url(database_url)
    db_name = (parsed.database or "").strip()
    if IDENTIFIER_RE.fullmatch(db_name) is None:
        raise RuntimeError(f"Unsupported database name '{db_name}'.")

    conn = await asyncpg.connect(
        host=parsed.host or "localhost",
        port=int(parsed.port or 5432),
        user=parsed.username,
        password=parsed.password,
        database="postgres",
    )
    try:
        if await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", db_name):
            print(f"prepare_test_db: exists db={db_name}")  # noqa: T201
            return
        await conn.execute(f'CREATE DATABASE "{db_name}"')
        print(f"prepare_test_db: created db={db_name}")  # noqa: T201
    finally:
        await conn.close()


def main() -> int:
    database_url = get_settings().database_url
    assert_safe_integration_db(database_url)
    asyncio.run(_create_database_if_missing(database_url))
    command.upgrade(Config(str(ALEMBIC_INI)), "head")
    print("prepare_test_db: migrations applied")  # noqa: T201
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
