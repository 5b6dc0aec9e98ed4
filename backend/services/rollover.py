"""
Midnight rollover: split open sessions at the reference-timezone day boundary.

A session still open when the reference date advances is completed at local
midnight, and an active one continues as a new session for the new day. The
"started before today's midnight" filter makes every pass safe to repeat:
once rolled, nothing left open started before midnight.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import Settings
from errors import CollaboratorError, SessionError
from models import (
    DEFAULT_LABELS,
    Active,
    FocusSession,
    ProfileStatus,
    SessionSnapshot,
    SessionStatus,
)
from store import ProfileMirror, SessionStore

from .accumulator import seconds_between, utc_now

# Scheduled job acts only in the first minutes after reference midnight.
CRON_WINDOW = (time(0, 0), time(0, 5))
# Clients poll more often from 15 minutes before midnight until 5 after.
CLIENT_WINDOW = (time(23, 45), time(0, 5))
CLIENT_POLL_IN_WINDOW_SECONDS = 60
CLIENT_POLL_OUTSIDE_WINDOW_SECONDS = 5 * 60


def reference_today(now: datetime, tz: ZoneInfo) -> date:
    return now.astimezone(tz).date()


def midnight_for(day: date, tz: ZoneInfo) -> datetime:
    """UTC instant of 00:00 on the given reference-timezone date."""
    midnight_local = datetime.combine(day, time.min, tzinfo=tz)
    return midnight_local.astimezone(timezone.utc)


def start_of_today(now: datetime, tz: ZoneInfo) -> datetime:
    return midnight_for(reference_today(now, tz), tz)


def in_window(now: datetime, tz: ZoneInfo, start: time, end: time) -> bool:
    """Inclusive local-time window check; start > end means it wraps midnight."""
    local = now.astimezone(tz).time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= local <= end
    return local >= start or local <= end


def rollover_poll_interval(now: datetime, tz: ZoneInfo) -> int:
    if in_window(now, tz, *CLIENT_WINDOW):
        return CLIENT_POLL_IN_WINDOW_SECONDS
    return CLIENT_POLL_OUTSIDE_WINDOW_SECONDS


def rolled_duration(session: SessionSnapshot, midnight: datetime, cap_seconds: int) -> int:
    """Seconds attributed to the old day: banked time plus the capped running segment."""
    duration = session.accumulated_seconds
    state = session.state
    if isinstance(state, Active) and state.last_resumed_at is not None:
        duration += min(seconds_between(state.last_resumed_at, midnight), cap_seconds)
    return duration


@dataclass(slots=True)
class RolloverReport:
    rolled: int = 0
    continued: int = 0
    failed: int = 0


class HeartbeatMemory:
    """Per-process memory for the client heartbeat path."""

    def __init__(self) -> None:
        self.last_rolled: dict[str, str] = {}


@dataclass(frozen=True, slots=True)
class RolloverOutcome:
    ended: FocusSession
    continuation: Optional[FocusSession] = None
    was_active: bool = False

    @property
    def notice(self) -> str:
        if self.was_active:
            return (
                "Since it hit midnight, to avoid confusion the app auto-ended your active "
                "session and auto-started a new one for today."
            )
        return "Since it hit midnight, your paused session was auto-ended to avoid confusion."


class MidnightRollover:
    def __init__(
        self,
        store: SessionStore,
        mirror: ProfileMirror,
        settings: Settings,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.mirror = mirror
        self.settings = settings
        self.tz = settings.reference_timezone
        self.logger = logger or logging.getLogger(__name__)

    def run(self, now: datetime | None = None) -> RolloverReport:
        """Scheduled pass over every user's open sessions."""
        now = now or utc_now()
        midnight = start_of_today(now, self.tz)
        report = RolloverReport()

        for row in self.store.list_stale_open_sessions(midnight):
            session_id = row.id
            try:
                outcome = self.roll_session(row, midnight, now)
            except SessionError:
                # Leave it open; the next pass retries it.
                self.logger.exception("Rollover failed for session %s", session_id)
                report.failed += 1
                continue
            if outcome is None:
                continue
            report.rolled += 1
            if outcome.continuation is not None:
                report.continued += 1

        self.logger.info(
            "Midnight rollover: rolled=%d continued=%d failed=%d",
            report.rolled,
            report.continued,
            report.failed,
        )
        return report

    def run_for_owner(
        self,
        owner: str,
        memory: HeartbeatMemory,
        now: datetime | None = None,
    ) -> Optional[RolloverOutcome]:
        """Heartbeat pass for one user's current session."""
        now = now or utc_now()
        row = self.store.get_current_session(owner)
        if row is None:
            return None

        midnight = start_of_today(now, self.tz)
        if row.started_at >= midnight:
            self.logger.debug("Skip rollover: session %s started today", row.id)
            return None
        if memory.last_rolled.get(owner) == row.id:
            self.logger.debug("Skip rollover: session %s already rolled", row.id)
            return None

        session_id = row.id
        outcome = self.roll_session(row, midnight, now)
        if outcome is not None:
            memory.last_rolled[owner] = session_id
        return outcome

    def roll_session(self, row: FocusSession, midnight: datetime, now: datetime) -> Optional[RolloverOutcome]:
        """Close one stale session at midnight. None when it was closed or changed meanwhile."""
        snapshot = SessionSnapshot.from_row(row)
        if snapshot.status is SessionStatus.COMPLETED:
            self.logger.debug("Skip rollover: session %s already completed", snapshot.id)
            return None
        was_active = snapshot.status is SessionStatus.ACTIVE
        duration = rolled_duration(snapshot, midnight, self.settings.max_active_segment_seconds)

        ended = self.store.close_if_unchanged(
            snapshot.id,
            snapshot.accumulated_seconds,
            {
                "ended_at": midnight,
                "duration_seconds": duration,
                "status": SessionStatus.COMPLETED.value,
                "last_resumed_at": None,
                "last_paused_at": None,
            },
        )
        if ended is None:
            self.logger.info("Skip rollover: session %s changed during the pass", snapshot.id)
            return None
        self.logger.info("Rolled session %s for user=%s duration=%ss", snapshot.id, snapshot.owner, duration)
        self._sync_mirror(snapshot.owner, ProfileStatus.ONLINE, None)

        if not was_active:
            return RolloverOutcome(ended=ended)

        label = snapshot.label.strip() or DEFAULT_LABELS[snapshot.mode]
        try:
            continuation = self.store.create_session(snapshot.owner, label, snapshot.mode.value, now)
        except SessionError:
            # The old day is closed correctly; the user can punch in again.
            self.logger.exception("Failed to open continuation for session %s", snapshot.id)
            return RolloverOutcome(ended=ended, was_active=True)

        self.logger.info("Continuation %s opened for user=%s", continuation.id, snapshot.owner)
        self._sync_mirror(snapshot.owner, ProfileStatus.ACTIVE, label)
        return RolloverOutcome(ended=ended, continuation=continuation, was_active=True)

    def _sync_mirror(self, owner: str, status: ProfileStatus, label: str | None) -> None:
        try:
            self.mirror.set_status(owner, status, label)
        except CollaboratorError:
            self.logger.exception("Failed to sync profile status for user=%s", owner)
