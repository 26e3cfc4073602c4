# app.py: MentorGate
# - Daily check-ins drive the student status state machine
# - Mentor workflow assigns/completes remedial interventions
# - In-process store when DATABASE_URL is unset, SQLite otherwise

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from engines.intervention_lifecycle import InterventionLifecycleManager
from env_validation import load_config, validate_environment
from errors import MentorGateError, PayloadValidationError
from notifier import build_notifier
from schemas import (
    AssignInterventionBody,
    AssignInterventionResponse,
    CheckInBody,
    CheckInResponse,
    DailyLog,
    Intervention,
    MarkCompleteBody,
    MarkCompleteResponse,
    StudentStatusResponse,
)
from store import build_store

logger = logging.getLogger(__name__)

LIFECYCLE: Optional[InterventionLifecycleManager] = None


def build_lifecycle() -> InterventionLifecycleManager:
    config = load_config()
    store = build_store(config.database_url)
    notifier = build_notifier(config.webhook_url, timeout=config.notify_timeout)
    return InterventionLifecycleManager(store, notifier)


def _lifecycle() -> InterventionLifecycleManager:
    global LIFECYCLE
    if LIFECYCLE is None:
        LIFECYCLE = build_lifecycle()
    return LIFECYCLE


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global LIFECYCLE
    try:
        validate_environment()
        config = load_config()
        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        if LIFECYCLE is None:
            LIFECYCLE = build_lifecycle()
        logger.info(
            "Record store: %s | notifications: %s",
            LIFECYCLE.store.backend,
            "enabled" if LIFECYCLE.notifier.enabled else "disabled",
        )
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    yield
    if LIFECYCLE is not None:
        LIFECYCLE.store.close()


app = FastAPI(title="MentorGate", version="1.0.0", lifespan=_lifespan)

_STARTUP_CONFIG = load_config()
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_STARTUP_CONFIG.cors_allow_origins),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def _invalid_payload(request: Request, exc: RequestValidationError):
    logger.info("Rejected payload on %s: %s", request.url.path, exc.errors())
    return _error(400, PayloadValidationError.public_message)


@app.exception_handler(MentorGateError)
async def _service_error(request: Request, exc: MentorGateError):
    if exc.status_code >= 500:
        logger.error(
            "%s failed on %s: %s", type(exc).__name__, request.url.path, exc, exc_info=exc
        )
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return _error(exc.status_code, exc.public_message)


@app.middleware("http")
async def _server_error_guard(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Server error")


# ---------- Health ----------
@app.get("/health")
def health():
    return {"ok": True}


# ---------- Students ----------
@app.get("/student/{student_id}/status", response_model=StudentStatusResponse)
def student_status(student_id: str):
    return _lifecycle().get_status(student_id)


@app.post("/daily-checkin", response_model=CheckInResponse)
def daily_checkin(body: CheckInBody):
    result = _lifecycle().record_check_in(body.student_id, body.quiz_score, body.focus_minutes)
    return CheckInResponse(status=result.reported_status)


# ---------- Mentor workflow ----------
@app.post("/assign-intervention", response_model=AssignInterventionResponse)
def assign_intervention(body: AssignInterventionBody):
    intervention = _lifecycle().assign(body.student_id, body.task, body.intervention_id)
    return AssignInterventionResponse(intervention=intervention)


@app.post("/mark-complete", response_model=MarkCompleteResponse)
def mark_complete(body: MarkCompleteBody):
    _lifecycle().complete(body.student_id)
    return MarkCompleteResponse()


# ---------- DB Inspect ----------
@app.get("/db/interventions", response_model=List[Intervention])
def db_interventions(student_id: Optional[str] = None, limit: int = Query(100, ge=1, le=1000)):
    return _lifecycle().store.list_interventions(student_id, limit)


@app.get("/db/daily_logs", response_model=List[DailyLog])
def db_daily_logs(student_id: Optional[str] = None, limit: int = Query(100, ge=1, le=1000)):
    return _lifecycle().store.list_daily_logs(student_id, limit)


if __name__ == "__main__":
    import uvicorn

    validate_environment()
    config = load_config()
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=config.log_level.lower())
