"""
Church Appointments API

Application entry point: logging, lifespan wiring, error mapping and
routers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import appointments, health, reminders
from app.bootstrap import open_services
from app.config import settings
from app.core.scheduling.errors import SchedulingError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers kept at WARNING unless DEBUG is on
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio")


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if settings.debug else logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Open the booking store and wire the scheduling services on startup.
    Everything opened here is closed on shutdown, in reverse order.
    """
    setup_logging()
    logger.info(
        f"Starting {settings.app_name} ({settings.app_env}) | "
        f"Timezone: {settings.authority_timezone} | Store: {settings.store_backend}"
    )
    health.set_start_time()

    services = await open_services(settings)
    app.state.services = services
    app.state.appointment_service = services.appointment_service
    app.state.reminder_scheduler = services.reminder_scheduler
    app.state.notifier = services.notifier
    app.state.database = services.database
    app.state.redis = services.redis

    if await services.redis.get_client() is None:
        logger.warning("Redis unavailable - reminder passes run at-least-once")

    logger.info(f"Accepting requests on {settings.host}:{settings.port}")
    yield

    logger.info("Closing booking store and connections")
    await services.close()


app = FastAPI(
    title="Church Appointments API",
    description="""
    Book time with the pastor.

    Availability is defined weekly in the pastor's timezone. Bookings are
    spaced by a configurable buffer, confirmed by email with a calendar
    invite, and reminded ahead of time.

    Staff endpoints take an `X-API-Key` header. Requesters manage their
    own booking with the token from the confirmation email.
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "X-API-Key"],
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Domain errors carry their own status and code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a 400. Submitted values are not echoed back."""
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    logger.info(f"Rejected {request.method} {request.url.path}: {[e['loc'] for e in errors]}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation error", "detail": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.is_development else None,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration and the staff principal, when there is one."""
    started = time.perf_counter()
    try:
        return await call_next(request)
    finally:
        principal = getattr(request.state, "principal", None)
        logger.debug(
            f"{request.method} {request.url.path} took {time.perf_counter() - started:.3f}s"
            f" | Principal: {principal.id if principal else 'anonymous'}"
        )


app.include_router(health.router)
app.include_router(appointments.router)
app.include_router(reminders.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "timezone": settings.authority_timezone,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
