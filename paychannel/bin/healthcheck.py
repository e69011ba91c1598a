"""
DB healthcheck script for Kubernetes readiness/liveness exec probes.

Usage: python -m paychannel.bin.healthcheck
Exits 0 if the DB answers and the custody/channel tables exist; non-zero otherwise.

This script must not log secrets.
"""
import asyncio
import sys

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from paychannel.core.config import settings

REQUIRED_TABLES = ("payment_channels", "crypto_addresses", "pricing_snapshots")


async def main(db_url: str | None = None) -> int:
    db_url = db_url or settings.DATABASE_URL
    if not db_url:
        print("DATABASE_URL not set", file=sys.stderr)
        return 2
    engine = create_async_engine(db_url, echo=False)
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            for table in REQUIRED_TABLES:
                await conn.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))
        return 0
    except Exception:
        # never echo the URL, it carries credentials
        print("DB connection failed", file=sys.stderr)
        return 3
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
