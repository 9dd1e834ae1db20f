"""
Pytest configuration and fixtures for property access tests.
"""
import pytest
import pytest_asyncio
from typing import AsyncGenerator, Set

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from property_access.constants import CPA_GROUP_NAME
from property_access.models.database import Base
from property_access.models.schemas import PropertyGroup
from property_access.services.access import PropertyAccessService
from property_access.services.custom_profile_attributes import CustomProfileAttributesService
from property_access.services.properties import ControlledGroup, PropertyApp, resolve_controlled_group
from property_access.services.store import SqlPropertyStore

from helpers import RecordingPublisher


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        # Enable foreign key constraints in SQLite
        await conn.execute(text("PRAGMA foreign_keys=ON"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def installed_plugins() -> Set[str]:
    """Plugin ids the fake plugin-installed predicate reports as installed."""
    return {"plugin1", "plugin2"}


@pytest_asyncio.fixture
async def store(db_session: AsyncSession) -> SqlPropertyStore:
    return SqlPropertyStore(db_session)


@pytest_asyncio.fixture
async def access_service(store: SqlPropertyStore, installed_plugins: Set[str]) -> PropertyAccessService:
    return PropertyAccessService(store, lambda plugin_id: plugin_id in installed_plugins)


@pytest_asyncio.fixture
async def group(access_service: PropertyAccessService) -> PropertyGroup:
    return await access_service.register_property_group("test_group")


@pytest_asyncio.fixture
async def other_group(access_service: PropertyAccessService) -> PropertyGroup:
    return await access_service.register_property_group("other_group")


# ============================================================================
# APPLICATION FIXTURES
# ============================================================================

@pytest_asyncio.fixture
async def controlled_group(store: SqlPropertyStore) -> ControlledGroup:
    return await resolve_controlled_group(store, CPA_GROUP_NAME)


@pytest_asyncio.fixture
async def property_app(
    store: SqlPropertyStore,
    access_service: PropertyAccessService,
    controlled_group: ControlledGroup
) -> PropertyApp:
    return PropertyApp(store, access_service, controlled_group)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest_asyncio.fixture
async def cpa_service(property_app: PropertyApp, publisher: RecordingPublisher) -> CustomProfileAttributesService:
    return CustomProfileAttributesService(property_app, publisher, field_limit=3)
