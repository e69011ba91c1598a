from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from paychannel.core.config import settings


def make_engine(db_url: str = settings.DATABASE_URL, echo: bool = settings.DATABASE_ECHO) -> AsyncEngine:
    # DATABASE_URL must use an async driver (postgresql+asyncpg://, sqlite+aiosqlite://)
    if db_url.startswith("postgresql"):
        # allocation and pricing hold advisory locks for the whole transaction
        return create_async_engine(db_url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=5)
    return create_async_engine(db_url, echo=echo)


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async_engine = make_engine()
AsyncSessionLocal = make_session_factory(async_engine)
