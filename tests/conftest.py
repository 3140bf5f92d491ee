"""
Pytest configuration and shared fixtures.

Tests run against a fresh SQLite file per test unless TEST_DATABASE_URL
points at another database (for example a PostgreSQL test database).
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Integer, String
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.api.main import create_app
from jobqueue.api.routes.jobs import get_registry
from jobqueue.config import Settings, WorkerConfig, get_settings
from jobqueue.db import Base, create_session_factory, get_async_session
from jobqueue.db.connection import get_test_engine
from jobqueue.payload import PayloadObject, PayloadRegistry
from jobqueue.types.events import EventEmitter
from jobqueue.types.job import current_job_context
from jobqueue.worker import Worker

# Test database URL; None means a per-test SQLite file
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

TEST_API_KEY = "test-api-key"


class EntityBase(DeclarativeBase):
    """Base for application tables used as deferred-call targets in tests."""

    pass


class Account(EntityBase):
    """A stored entity jobs can call methods on."""

    __tablename__ = "test_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def deposit(self, amount: int) -> None:
        self.balance += amount

    def deposit_then_fail(self, amount: int) -> None:
        self.balance += amount
        raise RuntimeError("deposit rejected")

    async def record_attempt(self) -> None:
        context = current_job_context()
        self.owner = f"{self.owner}:{context.job_id}:{context.attempts}"


class Mailer:
    """A named target standing in for a service class."""

    sent: list[str] = []

    @classmethod
    def deliver(cls, address: str) -> None:
        cls.sent.append(address)


class FrozenClock:
    """Replacement for jobqueue.clock.db_time_now that only moves when told."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobqueue_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine with empty queue tables."""
    engine = get_test_engine(database_url)

    async with engine.begin() as conn:
        for metadata in (Base.metadata, EntityBase.metadata):
            await conn.run_sync(metadata.drop_all)
            await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """
    Create a database session for tests.

    Commit writes before running a worker: workers use their own sessions.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def frozen_clock(monkeypatch) -> FrozenClock:
    """Freeze the queue clock at a fixed instant."""
    clock = FrozenClock(datetime(2026, 1, 1, 12, 0, 0))
    monkeypatch.setattr("jobqueue.clock.db_time_now", clock)
    return clock


@pytest.fixture
def performed() -> list[Any]:
    """Side-effect log written by the test handlers."""
    return []


@pytest.fixture
def registry(performed: list[Any]) -> PayloadRegistry:
    """A payload registry with the test handlers, entities and targets."""
    registry = PayloadRegistry(max_payload_bytes=65535)

    @registry.register("echo")
    class EchoJob(PayloadObject):
        message: str

        async def perform(self) -> None:
            performed.append(self.message)

    @registry.register("always_fail")
    class AlwaysFailJob(PayloadObject):
        reason: str = "boom"

        def perform(self) -> None:
            raise RuntimeError(self.reason)

    @registry.register("blob")
    class BlobJob(PayloadObject):
        content: str

        def perform(self) -> None:
            performed.append(len(self.content))

    registry.register_entity("Account", Account)
    registry.register_target("Mailer", Mailer)
    registry.register_target("performed", performed)
    return registry


@pytest.fixture(autouse=True)
def reset_mailer():
    Mailer.sent = []
    yield
    Mailer.sent = []


@pytest.fixture
def events() -> list[Any]:
    return []


@pytest.fixture
def emitter(events: list[Any]) -> EventEmitter:
    """Emitter collecting every event into the events fixture."""
    return EventEmitter([events.append])


@pytest.fixture
def worker_config() -> WorkerConfig:
    return WorkerConfig(worker_id="test-worker", poll_interval=0.01)


@pytest.fixture
def make_worker(
    registry: PayloadRegistry,
    session_factory: async_sessionmaker[AsyncSession],
    emitter: EventEmitter,
    worker_config: WorkerConfig,
):
    """Factory for workers sharing the test database and registry."""

    def factory(**overrides: Any) -> Worker:
        config_values = {
            "worker_id": worker_config.worker_id,
            "min_priority": worker_config.min_priority,
            "max_priority": worker_config.max_priority,
            "lease_duration": worker_config.lease_duration,
            "batch_size": worker_config.batch_size,
            "poll_interval": worker_config.poll_interval,
        }
        config_values.update(overrides)
        return Worker(
            config=WorkerConfig(**config_values),
            registry=registry,
            session_factory=session_factory,
            emitter=emitter,
        )

    return factory


@pytest.fixture
def worker(make_worker) -> Worker:
    return make_worker()


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        api_key=TEST_API_KEY,
        log_level="DEBUG",
        log_format="console",
        worker_lease_duration_seconds=5,
        worker_poll_interval_seconds=0.1,
    )


@pytest.fixture
def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    registry: PayloadRegistry,
) -> FastAPI:
    """Create a FastAPI app bound to the test database and registry."""

    async def override_session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_registry] = lambda: registry
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": TEST_API_KEY}


@pytest.fixture
def account_model() -> type[Account]:
    return Account


@pytest.fixture
def mailer() -> type[Mailer]:
    return Mailer
