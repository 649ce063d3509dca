import asyncio
import logging
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

import app.core.models  # noqa: F401  (registers every table on Base.metadata)
from app.db.session import Base, engine

logger = logging.getLogger(__name__)


REQUIRED_TABLES: List[str] = [
    "schools",
    "students",
    "events",
    "event_participants",
    "event_participant_students",
    "participation_requests",
    "audit_logs",
]


async def missing_tables(db_engine: AsyncEngine) -> List[str]:
    async with db_engine.connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    return [name for name in REQUIRED_TABLES if name not in existing]


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Create any missing table (with its indexes, including the partial unique index
    on active participation requests). Existing tables are left untouched.
    Returns the names of the tables that were created.
    """
    missing = await missing_tables(db_engine)
    if missing:
        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, checkfirst=True)
        logger.info("Created tables: %s", ", ".join(missing))
    return missing


async def main() -> None:
    created = await ensure_tables(engine)
    print("Created: " + ", ".join(created) if created else "Schema up to date")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
