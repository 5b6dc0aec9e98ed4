"""
Storage collaborators for the session core: the session table, the profile
status mirror and the pomodoro loop counter, all backed by SQLModel.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from errors import CollaboratorError, InvalidStateError, NotFoundError
from models import OPEN_STATUSES, FocusSession, Profile, ProfileStatus, SessionStatus

logger = logging.getLogger(__name__)


class SessionStore:
    """Reads and writes session rows. Every write commits immediately."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create_session(self, owner: str, label: str, mode: str, now: datetime) -> FocusSession:
        row = FocusSession(
            user_id=owner,
            task_title=label,
            mode=mode,
            status=SessionStatus.ACTIVE.value,
            started_at=now,
            last_resumed_at=now,
            accumulated_seconds=0,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise InvalidStateError("A session is already in progress") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to create session for user=%s", owner)
            raise CollaboratorError("Failed to start session") from exc
        self.db.refresh(row)
        return row

    def get_session(self, session_id: str) -> Optional[FocusSession]:
        try:
            return self.db.get(FocusSession, session_id)
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load session") from exc

    def get_current_session(self, owner: str) -> Optional[FocusSession]:
        statement = (
            select(FocusSession)
            .where(FocusSession.user_id == owner, col(FocusSession.status).in_(OPEN_STATUSES))
            .order_by(col(FocusSession.started_at).desc())
        )
        try:
            return self.db.exec(statement).first()
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load current session") from exc

    def update_session(self, session_id: str, patch: dict) -> FocusSession:
        row = self.get_session(session_id)
        if row is None:
            raise NotFoundError("Session not found")
        for key, value in patch.items():
            setattr(row, key, value)
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to update session %s", session_id)
            raise CollaboratorError("Failed to update session") from exc
        self.db.refresh(row)
        return row

    def close_if_unchanged(self, session_id: str, seen_accumulated: int, patch: dict) -> Optional[FocusSession]:
        """
        Apply a closing patch only while the row is still open with the banked
        seconds the caller computed from. Returns None when another writer got
        there first.
        """
        statement = (
            update(FocusSession)
            .where(
                col(FocusSession.id) == session_id,
                col(FocusSession.status).in_(OPEN_STATUSES),
                col(FocusSession.accumulated_seconds) == seen_accumulated,
            )
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.exec(statement)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to close session %s", session_id)
            raise CollaboratorError("Failed to update session") from exc
        if result.rowcount == 0:
            return None
        return self.get_session(session_id)

    def list_stale_open_sessions(self, before: datetime) -> list[FocusSession]:
        """Open sessions that started before the given instant, across all users."""
        statement = (
            select(FocusSession)
            .where(col(FocusSession.status).in_(OPEN_STATUSES), col(FocusSession.started_at) < before)
            .order_by(col(FocusSession.started_at))
        )
        try:
            return list(self.db.exec(statement).all())
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to fetch open sessions") from exc

    def last_ended_session(self, owner: str) -> Optional[FocusSession]:
        statement = (
            select(FocusSession)
            .where(FocusSession.user_id == owner, FocusSession.status == SessionStatus.COMPLETED.value)
            .order_by(col(FocusSession.ended_at).desc())
        )
        try:
            return self.db.exec(statement).first()
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load last session") from exc

    def list_sessions(self, owner: str, limit: int = 20) -> list[FocusSession]:
        statement = (
            select(FocusSession)
            .where(FocusSession.user_id == owner)
            .order_by(col(FocusSession.started_at).desc())
            .limit(limit)
        )
        try:
            return list(self.db.exec(statement).all())
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to list sessions") from exc


def _get_or_create_profile(db: Session, owner: str) -> Profile:
    profile = db.get(Profile, owner)
    if profile is None:
        profile = Profile(id=owner)
    return profile


def _save_profile(db: Session, profile: Profile, action: str) -> None:
    try:
        db.add(profile)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise CollaboratorError(f"Failed to {action}") from exc


class ProfileMirror:
    """Denormalized current_status / current_task shown on leaderboards and friend lists."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def set_status(self, owner: str, status: ProfileStatus, label: Optional[str]) -> None:
        try:
            profile = _get_or_create_profile(self.db, owner)
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load profile") from exc
        profile.current_status = status.value
        profile.current_task = label
        profile.updated_at = datetime.now(timezone.utc)
        _save_profile(self.db, profile, "update profile status")

    def get(self, owner: str) -> Optional[Profile]:
        try:
            return self.db.get(Profile, owner)
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load profile") from exc


class LoopCounter:
    """Per-user count of completed pomodoro work segments."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_count(self, owner: str) -> int:
        try:
            profile = self.db.get(Profile, owner)
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load loop counter") from exc
        return profile.pomo_count if profile is not None else 0

    def set_count(self, owner: str, value: int) -> None:
        try:
            profile = _get_or_create_profile(self.db, owner)
        except SQLAlchemyError as exc:
            raise CollaboratorError("Failed to load loop counter") from exc
        profile.pomo_count = value
        _save_profile(self.db, profile, "save loop counter")
