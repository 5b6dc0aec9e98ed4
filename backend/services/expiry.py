"""
Auto-end sessions left paused longer than the configured threshold.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from models import FocusSession, SessionStatus

from .accumulator import utc_now
from .session import SessionService


def expiry_poll_interval(threshold_minutes: int) -> int:
    """Seconds between client checks: every 5 min for an hour-scale threshold, else every 15 s."""
    return 5 * 60 if threshold_minutes >= 60 else 15


def describe_threshold(minutes: int) -> str:
    if minutes >= 60:
        hours = minutes / 60
        hours_text = f"{hours:g}"
        return f"{hours_text} hour{'s' if minutes > 60 else ''}"
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


@dataclass(frozen=True, slots=True)
class ExpiryOutcome:
    session: FocusSession
    notice: str


class PausedSessionWatchdog:
    def __init__(
        self,
        sessions: SessionService,
        logger: logging.Logger | None = None,
    ) -> None:
        self.sessions = sessions
        self.threshold_minutes = sessions.settings.paused_auto_end_minutes
        self.logger = logger or logging.getLogger(__name__)

    def check(self, owner: str, now: datetime | None = None) -> Optional[ExpiryOutcome]:
        now = now or utc_now()
        row = self.sessions.current(owner)
        if row is None or row.status != SessionStatus.PAUSED.value:
            return None
        if row.last_paused_at is None:
            self.logger.debug("Skip auto-end: session %s has no pause timestamp", row.id)
            return None
        if now - row.last_paused_at < timedelta(minutes=self.threshold_minutes):
            return None

        session_id = row.id
        ended = self.sessions.stop(owner, session_id, now)
        self.logger.info("Auto-ended paused session %s for user=%s", session_id, owner)

        # A stopped session is no longer current, so this notice goes out once.
        notice = (
            "Your session was automatically ended because it had been paused for more than "
            f"{describe_threshold(self.threshold_minutes)}."
        )
        return ExpiryOutcome(session=ended, notice=notice)
