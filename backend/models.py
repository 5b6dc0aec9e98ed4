from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from sqlalchemy import Column, DateTime, Index, text
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field


class SessionMode(str, Enum):
    STOPWATCH = "stopwatch"
    POMO = "pomo"
    SHORT_BREAK = "short-break"
    LONG_BREAK = "long-break"


TIMED_MODES = frozenset({SessionMode.POMO, SessionMode.SHORT_BREAK, SessionMode.LONG_BREAK})

DEFAULT_LABELS = {
    SessionMode.STOPWATCH: "Focus",
    SessionMode.POMO: "Focus",
    SessionMode.SHORT_BREAK: "Short Break",
    SessionMode.LONG_BREAK: "Long Break",
}


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


OPEN_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.PAUSED.value)


class ProfileStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ONLINE = "online"
    OFFLINE = "offline"


class UTCDateTime(TypeDecorator):
    """DateTime column that only accepts aware values and always returns UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Datetime must be timezone-aware")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        # SQLite drops the offset; stored values are always UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class FocusSession(SQLModel, table=True):
    # One open (active or paused) session per user, enforced by the database.
    __table_args__ = (
        Index(
            "ux_focussession_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status != 'completed'"),
            postgresql_where=text("status != 'completed'"),
        ),
    )

    id: str = Field(default_factory=_new_id, primary_key=True, index=True)
    user_id: str = Field(index=True)
    task_title: str
    mode: str = Field(default=SessionMode.STOPWATCH.value)
    status: str = Field(default=SessionStatus.ACTIVE.value, index=True)
    started_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))
    last_resumed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    last_paused_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    accumulated_seconds: int = 0
    ended_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    duration_seconds: Optional[int] = None


class Profile(SQLModel, table=True):
    id: str = Field(primary_key=True)
    current_status: str = Field(default=ProfileStatus.OFFLINE.value)
    current_task: Optional[str] = None
    pomo_count: int = 0
    updated_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))


# --- In-process session state ---
#
# The row keeps nullable columns; arithmetic works on a snapshot whose state
# is one of Active / Paused / Completed, each carrying only its own payload.


@dataclass(frozen=True, slots=True)
class Active:
    # None only for rows written without resume tracking.
    last_resumed_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class Paused:
    paused_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Completed:
    ended_at: datetime
    duration_seconds: int


SessionState = Union[Active, Paused, Completed]


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    id: str
    owner: str
    label: str
    mode: SessionMode
    started_at: datetime
    accumulated_seconds: int
    state: SessionState

    @property
    def status(self) -> SessionStatus:
        if isinstance(self.state, Active):
            return SessionStatus.ACTIVE
        if isinstance(self.state, Paused):
            return SessionStatus.PAUSED
        return SessionStatus.COMPLETED

    @classmethod
    def from_row(cls, row: FocusSession) -> "SessionSnapshot":
        status = SessionStatus(row.status)
        state: SessionState
        if status is SessionStatus.ACTIVE:
            state = Active(last_resumed_at=row.last_resumed_at)
        elif status is SessionStatus.PAUSED:
            state = Paused(paused_at=row.last_paused_at)
        else:
            state = Completed(
                ended_at=row.ended_at or row.started_at,
                duration_seconds=row.duration_seconds if row.duration_seconds is not None else row.accumulated_seconds,
            )
        return cls(
            id=row.id,
            owner=row.user_id,
            label=row.task_title,
            mode=SessionMode(row.mode),
            started_at=row.started_at,
            accumulated_seconds=row.accumulated_seconds or 0,
            state=state,
        )

    def to_patch(self) -> dict:
        """Column values that persist this snapshot's state."""
        patch = {
            "status": self.status.value,
            "accumulated_seconds": self.accumulated_seconds,
            "last_resumed_at": None,
            "last_paused_at": None,
            "ended_at": None,
            "duration_seconds": None,
        }
        if isinstance(self.state, Active):
            patch["last_resumed_at"] = self.state.last_resumed_at
        elif isinstance(self.state, Paused):
            patch["last_paused_at"] = self.state.paused_at
        else:
            patch["ended_at"] = self.state.ended_at
            patch["duration_seconds"] = self.state.duration_seconds
        return patch
