# backend/app/main.py

import asyncio
import logging
import os

from fastapi import FastAPI, Request, status
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as SA_TimeoutError
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models  # noqa: F401  registers tables on Base.metadata
from .api import api_dispute
from .core.config import settings
from .core.observability import setup_logging
from .database import Base, SessionLocal, engine
from .middleware.security_headers import SecurityHeadersMiddleware
from .services.dispute_scheduler import scan_disputes
from .api.dependencies import get_dispatcher
from .utils import background_worker
from .utils.errors import DisputeError
from .utils.notifications import alert_scheduler_failure

# Configure logging before creating any loggers
setup_logging()
logger = logging.getLogger(__name__)

# Alembic owns the schema in deployed environments; this keeps local sqlite
# and tests usable without running migrations first.
if os.getenv("SKIP_CREATE_ALL", "0") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Dispute Resolution API", default_response_class=ORJSONResponse)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials="*" not in settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info("CORS origins set to: %s", settings.CORS_ORIGINS)
app.add_middleware(SecurityHeadersMiddleware, private_prefix=settings.API_V1_STR)


@app.middleware("http")
async def catch_exceptions(request: Request, call_next):
    """Return JSON responses for HTTP errors and log them."""
    try:
        response = await call_next(request)
    except StarletteHTTPException as exc:  # return the original status and detail
        logger.error(
            "HTTP error %s at %s: %s", exc.status_code, request.url.path, exc.detail
        )
        response = ORJSONResponse(
            status_code=exc.status_code, content={"detail": exc.detail}
        )
    except SA_TimeoutError as exc:  # DB pool timeout -> 503 to reduce retry storms
        logger.error("DB timeout at %s: %s", request.url.path, str(exc))
        response = ORJSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database busy, please retry"},
        )
    except Exception as exc:  # pragma: no cover - generic handler
        logger.exception("Unhandled error: %s", exc)
        response = ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error"},
        )
    return response


@app.exception_handler(DisputeError)
async def dispute_exception_handler(request: Request, exc: DisputeError):
    """Render engine errors as ``{"detail": {message, field_errors, code}}``."""
    log = logger.warning if exc.status_code >= 409 else logger.info
    log(
        "Dispute error %s at %s: %s %s",
        exc.code,
        request.url.path,
        exc.message,
        exc.field_errors,
    )
    return ORJSONResponse(
        status_code=exc.status_code,
        content={
            "detail": {
                "message": exc.message,
                "field_errors": exc.field_errors,
                "code": exc.code,
            }
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors with details and log them for debugging."""
    errors = exc.errors()
    logger.warning("Validation error at %s: %s", request.url.path, errors)
    field_errors = {
        ".".join(str(p) for p in err.get("loc", ()) if p != "body"): err.get("msg", "invalid")
        for err in errors
    }
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": {
                "message": "Invalid request",
                "field_errors": field_errors,
                "code": "validation_error",
            }
        },
    )


api_prefix = settings.API_V1_STR  # usually something like "/api/v1"

app.include_router(api_dispute.router, prefix=f"{api_prefix}", tags=["disputes"])


@app.get("/healthz", tags=["health"])
async def healthz():
    return {"status": "ok", "pending_jobs": background_worker.pending()}


async def dispute_scan_loop() -> None:
    """Periodically auto-escalate overdue disputes and auto-close idle ones."""
    interval = settings.DISPUTE_SCAN_INTERVAL_SECONDS
    dispatcher = get_dispatcher()
    while True:
        await asyncio.sleep(interval)
        # Retry with backoff on transient DB failures
        delay = 5
        max_retries = 5
        for attempt in range(max_retries):
            try:
                summary = await asyncio.to_thread(scan_disputes, SessionLocal, None, dispatcher)
                logger.info("Dispute scan summary: %s", summary)
                break
            except OperationalError as exc:  # pragma: no cover - transient DB outage
                alert_scheduler_failure(exc)
                if attempt < max_retries - 1:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, 60)
                    continue
                else:
                    # Give up for this cycle; try again next tick
                    break
            except Exception as exc:  # pragma: no cover - continue running
                alert_scheduler_failure(exc)
                break


def _db_ping_sync() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


async def _wait_for_db_ready(max_wait_seconds: int = 30, interval_seconds: float = 1.0) -> None:
    """Best-effort wait until the database is reachable before launching schedulers.

    Does not raise if the DB stays unavailable beyond ``max_wait_seconds``;
    the scan loop also has its own backoff.
    """
    elapsed = 0.0
    while elapsed < max_wait_seconds:
        try:
            await asyncio.wait_for(asyncio.to_thread(_db_ping_sync), timeout=1.0)
            return
        except Exception:
            await asyncio.sleep(interval_seconds)
            elapsed += interval_seconds
    logger.warning("DB readiness check timed out; starting tasks with backoff enabled")


@app.on_event("startup")
async def start_background_tasks() -> None:
    """Launch the dispute scanner unless disabled (tests, dedicated worker)."""
    if not settings.DISPUTE_SCAN_ENABLED:
        logger.info("Dispute scan loop disabled")
        return
    await _wait_for_db_ready()
    asyncio.create_task(dispute_scan_loop())


@app.on_event("shutdown")
def shutdown_background_worker() -> None:
    """Stop the notification worker; queued deliveries are dropped."""
    logger.info("Stopping background worker (pending=%s)", background_worker.pending())
    background_worker.shutdown(wait=False)


@app.get("/")
async def root():
    return {"message": "Welcome to the Dispute Resolution API"}
