"""
CI helper: check for schema drift between the SQLAlchemy models and the live DB.

Exit code:
 - 0: no drift
 - 2: drift detected (prints differences)
 - 3: connection/config error
"""
import asyncio
import sys

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from sqlalchemy.ext.asyncio import create_async_engine

from paychannel.core.config import settings
from paychannel.db.models import Base


def _diff(sync_conn):
    return compare_metadata(MigrationContext.configure(sync_conn), Base.metadata)


async def collect_diffs(db_url: str) -> list:
    engine = create_async_engine(db_url)
    try:
        async with engine.connect() as conn:
            return await conn.run_sync(_diff)
    finally:
        await engine.dispose()


def main():
    db_url = settings.DATABASE_URL
    if not db_url:
        print("DATABASE_URL not set", file=sys.stderr)
        sys.exit(3)
    try:
        diffs = asyncio.run(collect_diffs(db_url))
    except Exception as exc:
        print(f"Schema check failed: {type(exc).__name__}", file=sys.stderr)
        sys.exit(3)
    if not diffs:
        print("No schema drift detected")
        sys.exit(0)
    print("Schema drift detected. Diff items:")
    for d in diffs:
        print(d)
    sys.exit(2)


if __name__ == "__main__":
    main()
