from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401
from config import Settings
from services.cycle import ModeCycleController
from services.expiry import PausedSessionWatchdog
from services.rollover import HeartbeatMemory, MidnightRollover, midnight_for
from services.session import SessionService
from store import LoopCounter, ProfileMirror, SessionStore

TORONTO = ZoneInfo("America/Toronto")
T0 = datetime(2026, 3, 10, 14, 0, 0, tzinfo=timezone.utc)
# 2026-03-20 00:00 in Toronto (EDT) is 04:00 UTC.
ROLLOVER_DAY = date(2026, 3, 20)
MIDNIGHT = midnight_for(ROLLOVER_DAY, TORONTO)


def local(year, month, day, hour, minute=0, second=0) -> datetime:
    """A Toronto wall-clock time as an aware UTC datetime."""
    return datetime(year, month, day, hour, minute, second, tzinfo=TORONTO).astimezone(timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(reference_timezone=TORONTO, cron_secret="test-secret")


@pytest.fixture
def store(db) -> SessionStore:
    return SessionStore(db)


@pytest.fixture
def mirror(db) -> ProfileMirror:
    return ProfileMirror(db)


@pytest.fixture
def counter(db) -> LoopCounter:
    return LoopCounter(db)


@pytest.fixture
def sessions(store, mirror, counter, settings) -> SessionService:
    return SessionService(store, mirror, counter, settings)


@pytest.fixture
def cycle(sessions) -> ModeCycleController:
    return ModeCycleController(sessions)


@pytest.fixture
def memory() -> HeartbeatMemory:
    return HeartbeatMemory()


@pytest.fixture
def rollover(store, mirror, settings) -> MidnightRollover:
    return MidnightRollover(store, mirror, settings)


@pytest.fixture
def watchdog(sessions) -> PausedSessionWatchdog:
    return PausedSessionWatchdog(sessions)


@pytest.fixture
def seed(store):
    """Insert a session with explicit timing columns, bypassing the state machine."""

    def _seed(owner, label="Deep work", mode="stopwatch", *, started_at, status="active",
              accumulated=0, last_resumed_at=None, last_paused_at=None):
        row = store.create_session(owner, label, mode, started_at)
        patch = {"status": status, "accumulated_seconds": accumulated}
        if status == "active":
            patch["last_resumed_at"] = last_resumed_at or started_at
        else:
            patch["last_resumed_at"] = None
            patch["last_paused_at"] = last_paused_at
        return store.update_session(row.id, patch)

    return _seed


@pytest.fixture
def client(engine, settings):
    from fastapi.testclient import TestClient

    from db import get_session
    from deps import get_settings
    from main import app

    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.heartbeat_memory = HeartbeatMemory()
    yield TestClient(app)
    app.dependency_overrides.clear()


def minutes(n: int) -> timedelta:
    return timedelta(minutes=n)
