"""
FastAPI dependencies shared by the routers.
"""
from fastapi import Depends, Header, HTTPException, Request
from sqlmodel import Session

from config import Settings, get_settings
from db import get_session
from services.cycle import ModeCycleController
from services.expiry import PausedSessionWatchdog
from services.rollover import HeartbeatMemory, MidnightRollover
from services.session import SessionService
from store import LoopCounter, ProfileMirror, SessionStore


def require_user_id(user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return user_id


def get_memory(request: Request) -> HeartbeatMemory:
    return request.app.state.heartbeat_memory


def get_session_service(
    db: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> SessionService:
    return SessionService(SessionStore(db), ProfileMirror(db), LoopCounter(db), settings)


def get_cycle_controller(sessions: SessionService = Depends(get_session_service)) -> ModeCycleController:
    return ModeCycleController(sessions)


def get_rollover(
    db: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> MidnightRollover:
    return MidnightRollover(SessionStore(db), ProfileMirror(db), settings)


def get_watchdog(sessions: SessionService = Depends(get_session_service)) -> PausedSessionWatchdog:
    return PausedSessionWatchdog(sessions)
