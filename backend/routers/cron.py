"""
Scheduled midnight rollover, invoked by an external cron (e.g. hourly).
Only acts in the first minutes after midnight in the reference timezone.
"""
import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException

from config import Settings
from deps import get_rollover, get_settings
from services.accumulator import utc_now
from services.rollover import CRON_WINDOW, MidnightRollover, in_window

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = logging.getLogger(__name__)


def _bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    return None


@router.post("/midnight-rollover")
def midnight_rollover(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
    rollover: MidnightRollover = Depends(get_rollover),
):
    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured; refusing rollover request")
        raise HTTPException(status_code=503, detail="Server misconfiguration")

    token = _bearer_token(authorization)
    if token is None or not secrets.compare_digest(token, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")

    now = utc_now()
    if not in_window(now, settings.reference_timezone, *CRON_WINDOW):
        return {"ok": True, "skipped": True, "reason": "outside_midnight_window"}

    report = rollover.run(now)
    return {"ok": True, "rolled": report.rolled, "continued": report.continued, "failed": report.failed}
