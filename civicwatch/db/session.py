# File: civicwatch/db/session.py
# Project: civicwatch

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from civicwatch.core.config import settings


def engine_options(url: str) -> dict:
    # SQLite pools (StaticPool / NullPool) reject the queue-pool sizing arguments
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as db:
        yield db
