"""
Focus sessions: punch in/out, pause/resume, pomodoro transitions,
the client heartbeat (midnight rollover + paused auto-end), and edits
to finished sessions.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from config import Settings
from deps import (
    get_cycle_controller,
    get_memory,
    get_rollover,
    get_session_service,
    get_settings,
    get_watchdog,
    require_user_id,
)
from errors import SessionError
from models import FocusSession, SessionSnapshot, SessionStatus
from services.accumulator import elapsed_seconds, format_clock, remaining_seconds, utc_now
from services.cycle import ModeCycleController
from services.expiry import PausedSessionWatchdog, expiry_poll_interval
from services.rollover import HeartbeatMemory, MidnightRollover, rollover_poll_interval
from services.session import SessionService, parse_mode

router = APIRouter(prefix="/api", tags=["sessions"])
logger = logging.getLogger(__name__)


class StartSessionRequest(BaseModel):
    task_title: str = ""
    mode: str = "stopwatch"


class RenameSessionRequest(BaseModel):
    task_title: str


class EndTimeRequest(BaseModel):
    ended_at: datetime


def present(row: FocusSession, settings: Settings, now: datetime) -> dict:
    """Session row plus live clock values for the timer display."""
    snapshot = SessionSnapshot.from_row(row)
    if snapshot.status is SessionStatus.COMPLETED:
        elapsed = row.duration_seconds or 0
        remaining = None
    else:
        elapsed = elapsed_seconds(snapshot, now)
        remaining = remaining_seconds(snapshot, now, settings.target_seconds(row.mode))
    data = row.model_dump()
    data["elapsed_seconds"] = elapsed
    data["remaining_seconds"] = remaining
    data["display"] = format_clock(elapsed if remaining is None else remaining)
    return data


@router.post("/sessions", status_code=201)
def start_session(
    req: StartSessionRequest,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """Punch in. Fails if a session is already running or the task name is empty."""
    now = utc_now()
    row = sessions.start(uid, req.task_title, parse_mode(req.mode), now)
    return present(row, sessions.settings, now)


@router.get("/sessions/current")
def current_session(
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    row = sessions.current(uid)
    if row is None:
        return None
    return present(row, sessions.settings, utc_now())


@router.get("/sessions")
def list_sessions(
    limit: int = 20,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """List recent sessions (newest first) for this user."""
    now = utc_now()
    return [present(row, sessions.settings, now) for row in sessions.list_recent(uid, limit)]


@router.post("/sessions/heartbeat")
def heartbeat(
    uid: str = Depends(require_user_id),
    rollover: MidnightRollover = Depends(get_rollover),
    watchdog: PausedSessionWatchdog = Depends(get_watchdog),
    memory: HeartbeatMemory = Depends(get_memory),
    settings: Settings = Depends(get_settings),
):
    """
    Periodic client check. Splits the caller's session at reference midnight
    if the scheduled job has not yet, then auto-ends an over-long pause.
    Tells the client when to call again.
    """
    now = utc_now()
    notices = []

    rolled = None
    try:
        rolled = rollover.run_for_owner(uid, memory, now)
    except SessionError:
        # The scheduled pass or a later heartbeat will retry.
        logger.exception("Heartbeat rollover failed for user=%s", uid)
    if rolled is not None:
        notices.append(rolled.notice)

    expired = watchdog.check(uid, now)
    if expired is not None:
        notices.append(expired.notice)

    row = watchdog.sessions.current(uid)
    return {
        "session": present(row, settings, now) if row is not None else None,
        "rolled_over": rolled is not None,
        "auto_ended": expired is not None,
        "notices": notices,
        "next_check_in": min(
            rollover_poll_interval(now, settings.reference_timezone),
            expiry_poll_interval(settings.paused_auto_end_minutes),
        ),
    }


@router.post("/sessions/{session_id}/pause")
def pause_session(
    session_id: str,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    now = utc_now()
    return present(sessions.pause(uid, session_id, now), sessions.settings, now)


@router.post("/sessions/{session_id}/resume")
def resume_session(
    session_id: str,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    now = utc_now()
    return present(sessions.resume(uid, session_id, now), sessions.settings, now)


@router.post("/sessions/{session_id}/stop")
def stop_session(
    session_id: str,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """Punch out. Sets ended_at to now and records the final duration."""
    now = utc_now()
    return present(sessions.stop(uid, session_id, now), sessions.settings, now)


@router.post("/sessions/{session_id}/complete")
def complete_session(
    session_id: str,
    uid: str = Depends(require_user_id),
    cycle: ModeCycleController = Depends(get_cycle_controller),
):
    """Called when a pomodoro or break countdown reaches zero."""
    now = utc_now()
    result = cycle.complete(uid, session_id, now)
    settings = cycle.sessions.settings
    return {
        "stopped": result.stopped,
        "ended": present(result.ended, settings, now),
        "session": present(result.session, settings, now) if result.session is not None else None,
        "pomo_session_count": result.loop_count,
    }


@router.patch("/sessions/{session_id}")
def rename_session(
    session_id: str,
    req: RenameSessionRequest,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    return present(sessions.rename(uid, session_id, req.task_title), sessions.settings, utc_now())


@router.patch("/sessions/{session_id}/end-time")
def amend_end_time(
    session_id: str,
    req: EndTimeRequest,
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """Move a finished session's end time earlier (e.g. forgot to punch out)."""
    row = sessions.amend_end_time(uid, session_id, req.ended_at)
    return present(row, sessions.settings, utc_now())
