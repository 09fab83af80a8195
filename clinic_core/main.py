import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_core.api.routes import appointments, contacts, duplicates, patients, schedule_blocks, slots
from clinic_core.core.config import _ENV_FILE, settings
from clinic_core.core.db import init_db
from clinic_core.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)

if os.getenv("ENV", settings.env) != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)

_ALLOWED_METHODS = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]

_ERROR_STATUS: list[tuple[type[SchedulingError], int]] = [
    (ValidationError, 422),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidTransitionError, 409),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    logger.info(
        "Default appointment duration: %d min; notifications: %s",
        settings.default_appointment_duration_minutes,
        "webhook" if settings.webhook_enabled else "log only",
    )
    if settings.auto_create_tables:
        await init_db()
    yield


app = FastAPI(
    title="Clinic Scheduling Core",
    description="Patient identity resolution, slots and appointment scheduling",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=_ALLOWED_METHODS,
    allow_headers=["Content-Type"],
)

app.include_router(contacts.router, prefix="/api/v1")
app.include_router(patients.router, prefix="/api/v1")
app.include_router(slots.router, prefix="/api/v1")
app.include_router(schedule_blocks.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(duplicates.router, prefix="/api/v1")


def _cors_headers(request: Request) -> dict[str, str]:
    """CORS headers for error responses; the middleware does not see them."""
    origins = settings.cors_origins_list
    origin = request.headers.get("origin")
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ", ".join(_ALLOWED_METHODS),
        "Access-Control-Allow-Headers": "Content-Type",
    }
    if origins:
        headers["Access-Control-Allow-Origin"] = origin if origin in origins else origins[0]
    return headers


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Surface core errors to the caller with a stable code they can branch on."""
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=_cors_headers(request),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=_cors_headers(request))
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"{type(exc).__name__}: {exc}", "code": "internal_error"},
        headers=_cors_headers(request),
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
