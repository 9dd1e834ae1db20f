from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from .config import Settings, get_settings
from .models.database import Base


def get_async_database_url(url: str) -> str:
    """Convert database URL to async format for asyncpg."""
    # Some providers still hand out postgres:// (old format)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def create_engine_from_settings(settings: Settings = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(
        get_async_database_url(settings.database_url),
        echo=False,
        pool_pre_ping=True
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )


async def init_db(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
