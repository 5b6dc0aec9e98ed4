"""
Time accounting for a single session: pure arithmetic over snapshots, no I/O.

Total elapsed time is always accumulated_seconds plus, while active, the
clamped span since last_resumed_at.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from models import Active, Paused, SessionSnapshot


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, never negative (tolerates clock skew)."""
    return max(0, int((end - start).total_seconds()))


def elapsed_seconds(session: SessionSnapshot, now: datetime) -> int:
    state = session.state
    if not isinstance(state, Active) or state.last_resumed_at is None:
        return session.accumulated_seconds
    return session.accumulated_seconds + seconds_between(state.last_resumed_at, now)


def accumulate_on_pause(session: SessionSnapshot, now: datetime) -> SessionSnapshot:
    """Bank the running segment and return the paused snapshot. Caller persists."""
    return replace(
        session,
        accumulated_seconds=elapsed_seconds(session, now),
        state=Paused(paused_at=now),
    )


def accumulate_on_resume(session: SessionSnapshot, now: datetime) -> SessionSnapshot:
    return replace(session, state=Active(last_resumed_at=now))


def remaining_seconds(session: SessionSnapshot, now: datetime, target: int | None) -> int | None:
    """Countdown left for a timed session, None when there is no target."""
    if target is None:
        return None
    return max(0, target - elapsed_seconds(session, now))


def format_clock(total_seconds: int) -> str:
    """Render as MM:SS, or H:MM:SS once an hour has passed."""
    safe_seconds = max(0, int(total_seconds))
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02}:{seconds:02}"
    return f"{minutes:02}:{seconds:02}"
