"""
Locked-In Factory – session backend
Start with: uvicorn main:app --reload
"""
import logging
from contextlib import asynccontextmanager

# Load .env (DATABASE_URL, CRON_SECRET, REFERENCE_TIMEZONE, ...) before db reads it
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402

from db import init_db  # noqa: E402
from deps import get_settings  # noqa: E402
from errors import SessionError  # noqa: E402
from routers import cron, sessions, status  # noqa: E402
from services.rollover import HeartbeatMemory  # noqa: E402


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("lockedin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database ready; reference timezone %s", settings.reference_timezone.key)
    yield


app = FastAPI(
    title="Locked-In Factory API",
    description="Focus session time accounting: punch in/out, pomodoro cycles, midnight rollover",
    version="0.2.0",
    lifespan=lifespan,
)

# Allow frontend (Next.js) to call this API
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Survives across requests in this process only; each worker keeps its own.
app.state.heartbeat_memory = HeartbeatMemory()


@app.exception_handler(SessionError)
async def session_error_handler(request: Request, exc: SessionError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.detail},
    )


@app.get("/health")
def health():
    """Check that the API is running. Frontend can call this first."""
    return {"status": "ok", "message": "Locked-In Factory API is running"}


@app.get("/")
def root():
    """Root welcome."""
    return {"app": "Locked-In Factory", "docs": "/docs"}


app.include_router(sessions.router)
app.include_router(cron.router)
app.include_router(status.router)
