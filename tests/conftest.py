"""pytest fixtures for imagegen backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite database with all tables created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings
- FakeCaller / fake caller factories for background dispatch
"""

import asyncio
import os
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

os.environ.setdefault("APP_ENV", "test")

from imagegen import models  # noqa: E402,F401  (registers tables)
from imagegen.core.config import Settings  # noqa: E402
from imagegen.core.database import setup_db_session  # noqa: E402
from imagegen.services.image_generation.dispatcher import BackgroundDispatcher  # noqa: E402
from imagegen.services.image_generation.service import ImageGenerationService  # noqa: E402
from imagegen.services.storage.file_service import FileService  # noqa: E402
from imagegen.uow import create_uow_factory  # noqa: E402

TEST_USER = "user_test"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory bound to a fresh SQLite file database.

    A file database (not :memory:) is used so that concurrent sessions opened
    by background dispatch see each other's committed rows.
    """
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'imagegen_test.db'}"
    factory = setup_db_session(db_url, pool_size=5)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        APP_ENV="test",
        DATABASE_URL="sqlite+aiosqlite://",
        ASYNC_SERVICE_URL="http://async.test",
        ASYNC_SERVICE_SECRET="test-secret",
        REPLICATE_API_TOKEN="r8_test",
        FILE_PUBLIC_BASE_URL="https://cdn.example.com",
        MAX_IMAGE_NUM=8,
    )


class FakeCaller:
    """Stands in for AsyncCaller.

    Args:
        failures: Map of call index -> exception raised by that call
        gate: When given, every call waits for it before finishing
    """

    def __init__(
        self,
        failures: Optional[dict[int, Exception]] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.failures = failures or {}
        self.gate = gate
        self.calls: list[dict] = []

    async def create_image(self, **kwargs):
        index = len(self.calls)
        self.calls.append(kwargs)
        cancel_event = kwargs.get("cancel_event")
        if cancel_event is not None and cancel_event.is_set():
            from imagegen.services.exceptions import DispatchCancelledError

            raise DispatchCancelledError("cancelled before start")
        if self.gate is not None:
            await self.gate.wait()
        if index in self.failures:
            raise self.failures[index]
        return {"success": True}


def caller_factory_for(caller: FakeCaller):
    async def _factory(user_id: str):
        return caller

    return _factory


@pytest.fixture
def fake_caller() -> FakeCaller:
    return FakeCaller()


@pytest.fixture
def dispatcher(uow_factory, fake_caller) -> BackgroundDispatcher:
    return BackgroundDispatcher(
        uow_factory=uow_factory, caller_factory=caller_factory_for(fake_caller)
    )


@pytest.fixture
def image_service(settings, uow_factory, dispatcher) -> ImageGenerationService:
    return ImageGenerationService(
        settings=settings,
        uow_factory=uow_factory,
        file_service=FileService(settings.file_public_base_url),
        dispatcher=dispatcher,
    )
