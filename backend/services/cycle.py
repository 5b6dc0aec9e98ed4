"""
Pomodoro mode cycling: what starts next when a timed session runs out.

pomo -> short break (x cycle_size - 1) -> long break on every cycle_size-th
pomo. Breaks never chain back into work; the user starts the next pomo.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from errors import InvalidStateError, NotFoundError
from models import TIMED_MODES, FocusSession, SessionMode, SessionSnapshot, SessionStatus

from .accumulator import utc_now

if TYPE_CHECKING:
    from .session import SessionService


@dataclass(frozen=True, slots=True)
class TransitionResult:
    stopped: bool
    ended: FocusSession
    session: Optional[FocusSession] = None
    loop_count: Optional[int] = None


def should_reset_loop(last_ended: Optional[FocusSession], now: datetime, max_gap: timedelta) -> bool:
    """True when a fresh pomo start should begin a new loop instead of continuing one."""
    if last_ended is None or last_ended.ended_at is None:
        return True
    if now - last_ended.ended_at > max_gap:
        return True
    try:
        mode = SessionMode(last_ended.mode)
    except ValueError:
        return True
    return mode not in TIMED_MODES


def next_break(count: int, cycle_size: int) -> SessionMode:
    if count % cycle_size == 0:
        return SessionMode.LONG_BREAK
    return SessionMode.SHORT_BREAK


class ModeCycleController:
    def __init__(self, sessions: SessionService, logger: logging.Logger | None = None) -> None:
        self.sessions = sessions
        self.logger = logger or logging.getLogger(__name__)

    def complete(self, owner: str, session_id: str, now: datetime | None = None) -> TransitionResult:
        """
        Close a timed session whose countdown reached zero and chain the next one.

        Countdown lengths are per-user client settings, so the caller decides
        when the timer ran out.
        """
        now = now or utc_now()
        settings = self.sessions.settings

        row = self.sessions.store.get_session(session_id)
        if row is None or row.user_id != owner:
            raise NotFoundError("Session not found")
        snapshot = SessionSnapshot.from_row(row)
        if snapshot.status is not SessionStatus.ACTIVE:
            raise InvalidStateError(f"Cannot complete a {snapshot.status.value} session")

        ended = self.sessions.stop(owner, session_id, now)

        if snapshot.mode is not SessionMode.POMO:
            # Breaks end into idle; a stopwatch has no natural end.
            self.logger.info("Cycle stopped: user=%s after %s", owner, snapshot.mode.value)
            return TransitionResult(stopped=True, ended=ended)

        count = self.sessions.counter.get_count(owner) + 1
        self.sessions.counter.set_count(owner, count)
        mode = next_break(count, settings.pomo_cycle_size)

        started = self.sessions.start(owner, None, mode, now, auto=True)
        self.logger.info("Cycle advanced: user=%s loop=%s next=%s", owner, count, mode.value)
        return TransitionResult(stopped=False, ended=ended, session=started, loop_count=count)
