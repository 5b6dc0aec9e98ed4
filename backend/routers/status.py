from fastapi import APIRouter, Depends

from deps import get_session_service, require_user_id
from errors import CollaboratorError
from models import ProfileStatus
from services.session import SessionService

router = APIRouter(prefix="/api/status", tags=["status"])


@router.post("/offline")
def mark_offline(
    uid: str = Depends(require_user_id),
    sessions: SessionService = Depends(get_session_service),
):
    """Sent when the tab closes. Keeps the status if a session is still open (e.g. a refresh)."""
    if sessions.current(uid) is not None:
        return {"ok": True, "changed": False}
    try:
        sessions.mirror.set_status(uid, ProfileStatus.OFFLINE, None)
    except CollaboratorError:
        sessions.logger.exception("Failed to mark user=%s offline", uid)
        return {"ok": False, "changed": False}
    return {"ok": True, "changed": True}
