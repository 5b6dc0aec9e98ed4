"""
Session state machine: start, pause, resume and stop a user's focus session.

    active --pause--> paused --resume--> active
    active|paused --stop--> completed

Each status change also updates the profile mirror, best effort.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from config import Settings
from errors import CollaboratorError, InvalidStateError, NotFoundError, ValidationError
from models import (
    DEFAULT_LABELS,
    Completed,
    FocusSession,
    ProfileStatus,
    SessionMode,
    SessionSnapshot,
    SessionStatus,
)
from store import LoopCounter, ProfileMirror, SessionStore

from .accumulator import accumulate_on_pause, accumulate_on_resume, elapsed_seconds, utc_now
from .cycle import should_reset_loop


def parse_mode(raw: str | None) -> SessionMode:
    try:
        return SessionMode((raw or SessionMode.STOPWATCH.value).strip())
    except ValueError as exc:
        raise ValidationError(f"Unknown mode: {raw}") from exc


class SessionService:
    def __init__(
        self,
        store: SessionStore,
        mirror: ProfileMirror,
        counter: LoopCounter,
        settings: Settings,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.mirror = mirror
        self.counter = counter
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)

    def current(self, owner: str) -> Optional[FocusSession]:
        return self.store.get_current_session(owner)

    def list_recent(self, owner: str, limit: int = 20) -> list[FocusSession]:
        return self.store.list_sessions(owner, limit)

    def start(
        self,
        owner: str,
        label: str | None,
        mode: SessionMode,
        now: datetime | None = None,
        *,
        auto: bool = False,
    ) -> FocusSession:
        """Punch in. Auto starts (mode cycle, rollover) may omit the label."""
        now = now or utc_now()
        title = (label or "").strip()
        if not title:
            if not auto:
                raise ValidationError("Task name is required")
            title = DEFAULT_LABELS[mode]

        if self.store.get_current_session(owner) is not None:
            raise InvalidStateError("A session is already in progress")

        if mode is SessionMode.POMO and not auto:
            self._maybe_reset_loop(owner, now)

        row = self.store.create_session(owner, title, mode.value, now)
        self.logger.info("Session started: user=%s id=%s mode=%s auto=%s", owner, row.id, mode.value, auto)
        self._sync_mirror(owner, ProfileStatus.ACTIVE, title)
        return row

    def pause(self, owner: str, session_id: str, now: datetime | None = None) -> FocusSession:
        now = now or utc_now()
        snapshot = self._load(owner, session_id)
        if snapshot.status is not SessionStatus.ACTIVE:
            raise InvalidStateError(f"Cannot pause a {snapshot.status.value} session")

        paused = accumulate_on_pause(snapshot, now)
        row = self.store.update_session(session_id, paused.to_patch())
        self.logger.info("Session paused: user=%s id=%s banked=%ss", owner, session_id, paused.accumulated_seconds)
        self._sync_mirror(owner, ProfileStatus.PAUSED, snapshot.label)
        return row

    def resume(self, owner: str, session_id: str, now: datetime | None = None) -> FocusSession:
        now = now or utc_now()
        snapshot = self._load(owner, session_id)
        if snapshot.status is not SessionStatus.PAUSED:
            raise InvalidStateError(f"Cannot resume a {snapshot.status.value} session")

        row = self.store.update_session(session_id, accumulate_on_resume(snapshot, now).to_patch())
        self.logger.info("Session resumed: user=%s id=%s", owner, session_id)
        self._sync_mirror(owner, ProfileStatus.ACTIVE, snapshot.label)
        return row

    def stop(self, owner: str, session_id: str, now: datetime | None = None) -> FocusSession:
        """Punch out. A completed session is no longer current, so a second stop is rejected."""
        now = now or utc_now()
        snapshot = self._load(owner, session_id)
        if snapshot.status is SessionStatus.COMPLETED:
            raise InvalidStateError("Session already ended")

        duration = elapsed_seconds(snapshot, now)
        completed = replace(snapshot, state=Completed(ended_at=now, duration_seconds=duration))
        row = self.store.update_session(session_id, completed.to_patch())
        self.logger.info("Session stopped: user=%s id=%s duration=%ss", owner, session_id, duration)
        self._sync_mirror(owner, ProfileStatus.OFFLINE, None)
        return row

    def rename(self, owner: str, session_id: str, label: str) -> FocusSession:
        title = (label or "").strip()
        if not title:
            raise ValidationError("Task name is required")
        self._load(owner, session_id)
        row = self.store.update_session(session_id, {"task_title": title})
        if row.status != SessionStatus.COMPLETED.value:
            self._sync_mirror(owner, ProfileStatus(row.status), title)
        return row

    def amend_end_time(self, owner: str, session_id: str, ended_at: datetime) -> FocusSession:
        """Pull a completed session's end time earlier, trimming its duration to match."""
        if ended_at.tzinfo is None:
            raise ValidationError("End time must include a timezone offset")

        snapshot = self._load(owner, session_id)
        state = snapshot.state
        if not isinstance(state, Completed):
            raise InvalidStateError("Only completed sessions can be edited")
        if ended_at < snapshot.started_at:
            raise ValidationError("End time cannot be earlier than the start time")
        if ended_at > state.ended_at:
            raise ValidationError("End time cannot be later than the current end time")

        trimmed = int((state.ended_at - ended_at).total_seconds())
        duration = max(0, state.duration_seconds - trimmed)
        amended = replace(snapshot, state=Completed(ended_at=ended_at, duration_seconds=duration))
        row = self.store.update_session(session_id, amended.to_patch())
        self.logger.info("Session end time amended: user=%s id=%s duration=%ss", owner, session_id, duration)
        return row

    def _load(self, owner: str, session_id: str) -> SessionSnapshot:
        row = self.store.get_session(session_id)
        if row is None or row.user_id != owner:
            raise NotFoundError("Session not found")
        return SessionSnapshot.from_row(row)

    def _maybe_reset_loop(self, owner: str, now: datetime) -> None:
        try:
            last_ended = self.store.last_ended_session(owner)
            if should_reset_loop(last_ended, now, timedelta(minutes=self.settings.loop_reset_gap_minutes)):
                self.counter.set_count(owner, 0)
                self.logger.info("Pomodoro loop reset: user=%s", owner)
        except CollaboratorError:
            self.logger.exception("Failed to evaluate pomodoro loop reset for user=%s", owner)

    def _sync_mirror(self, owner: str, status: ProfileStatus, label: str | None) -> None:
        # The session row is already committed; a stale mirror is tolerated.
        try:
            self.mirror.set_status(owner, status, label)
        except CollaboratorError:
            self.logger.exception("Failed to sync profile status for user=%s", owner)
