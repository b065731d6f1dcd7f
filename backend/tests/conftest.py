"""pytest fixtures for MealForge backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- settings: Test settings pointing at a per-test SQLite database
- session_factory: Session factory with all tables created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- providers: Controllable fake concept/nutrition/image/storage providers
- services: Generation stack wired with the fake providers
"""

import os
from types import SimpleNamespace
from typing import AsyncGenerator

# Settings validation is relaxed for APP_ENV=test; mealforge.app builds an app at import
os.environ.setdefault("APP_ENV", "test")

import pytest
import pytest_asyncio
from fakes import (
    TEST_TIER_LIMITS,
    FakeConceptProvider,
    FakeImageProvider,
    FakeNutritionValidator,
    FakeStorageProvider,
    fast_retry_policy,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from mealforge import models  # noqa: F401
from mealforge.core.config import Settings
from mealforge.core.database import setup_db_session
from mealforge.services.generation.factory import build_services
from mealforge.services.quota.tiers import StaticTierConfigSource
from mealforge.uow import create_uow_factory


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests.

    Autouse fixture ensures TZ=UTC is set before any test runs.
    """
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Test settings on a fresh SQLite file per test."""
    return Settings(
        APP_ENV="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'mealforge_test.db'}",
        PLACEHOLDER_IMAGE_URL="https://cdn.test/placeholder.png",
        JOB_PARALLELISM=5,
        MAX_ITEMS_PER_REQUEST=20,
        SNAPSHOT_INTERVAL_SECONDS=0.05,
        HEALING_INTERVAL_SECONDS=0.05,
        ACCOUNT_TIERS={
            "acct-tiny": "tiny",
            "acct-ten": "ten",
            "acct-enterprise": "enterprise",
        },
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    """Session factory with the schema created from SQLModel metadata."""
    factory = setup_db_session(settings.database_url)
    engine = factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def tier_source() -> StaticTierConfigSource:
    return StaticTierConfigSource(
        {"acct-tiny": "tiny", "acct-ten": "ten", "acct-enterprise": "enterprise"},
        default_tier="starter",
        tier_limits=TEST_TIER_LIMITS,
    )


@pytest.fixture
def providers() -> SimpleNamespace:
    return SimpleNamespace(
        concept=FakeConceptProvider(),
        nutrition=FakeNutritionValidator(),
        image=FakeImageProvider(),
        storage=FakeStorageProvider(),
    )


@pytest_asyncio.fixture
async def services(settings, uow_factory, providers, tier_source):
    """Generation stack with fake external providers and the real SQL recipe store."""
    services = build_services(
        settings,
        uow_factory,
        concept_provider=providers.concept,
        nutrition_validator=providers.nutrition,
        image_provider=providers.image,
        storage_provider=providers.storage,
        tier_source=tier_source,
        retry_policy=fast_retry_policy(),
    )
    yield services
    await services.orchestrator.shutdown()
