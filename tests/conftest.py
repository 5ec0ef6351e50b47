"""Shared test fixtures."""
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from tinysteps.models.store import LocalEntry, SnapshotRecord  # noqa: F401
from tinysteps.models.sync import QueuedMutation, SyncLog, SyncMeta  # noqa: F401
from tinysteps.storage.local_store import LocalStore
from tinysteps.storage.meta import MetaStore
from tinysteps.storage.mutation_queue import MutationQueue


class FakeClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, start: datetime = datetime(2025, 9, 21, 8, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="store")
def store_fixture(engine, clock) -> LocalStore:
    return LocalStore(engine, clock=clock)


@pytest.fixture(name="queue")
def queue_fixture(engine, store, clock) -> MutationQueue:
    return MutationQueue(engine, store, clock=clock)


@pytest.fixture(name="meta")
def meta_fixture(engine) -> MetaStore:
    return MetaStore(engine)


@pytest.fixture(name="network")
def network_fixture():
    """Stand-in reachability source; flip .is_online in the test."""
    return SimpleNamespace(is_online=True)
