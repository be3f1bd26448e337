"""Create the proctoring tables in DATABASE_URL (non-interactive)."""
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect

from proctorwatch.core.config import get_settings
from proctorwatch.core.database import create_engine, init_db


logger = logging.getLogger("auto_migrate")


async def create_tables() -> None:
    settings = get_settings()
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set; nothing to migrate")
    engine = create_engine(settings.DATABASE_URL)
    try:
        await init_db(engine)
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        logger.info("Tables present: %s", ", ".join(sorted(tables)))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(create_tables())
