from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings


def _normalize_database_url(url: str) -> str:
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _engine_options(url: str) -> dict:
    # in-memory sqlite needs a single shared connection or every session sees an empty db
    if url.startswith("sqlite+aiosqlite://"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {}


database_url = _normalize_database_url(settings.DATABASE_URL)
engine = create_async_engine(database_url, future=True, echo=False, **_engine_options(database_url))
async_session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session
