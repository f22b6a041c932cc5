from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import redis as redis_lib
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import JSONResponse, Response

from app.api.entitlements import router as entitlements_router
from app.api.payments import router as payments_router
from app.config import settings, validate_settings
from app.db import SessionLocal
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.services.payment_gateway import PaylinkGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[arg-type]
    # ── Startup ──────────────────────────────────────────
    warnings = validate_settings(settings)
    for w in warnings:
        logger.warning("Config warning: %s", w)

    # One client per process so the Paylink token cache is shared by requests
    if getattr(app.state, "payment_gateway", None) is None:
        app.state.payment_gateway = PaylinkGateway()

    logger.info("Application started (pid=%s)", os.getpid())
    yield

    # ── Shutdown ─────────────────────────────────────────
    logger.info("Application shutting down")


app = FastAPI(title="Sports Market Payments API", lifespan=lifespan)
configure_logging()

# ── Middleware (order matters: last added = first executed) ──
register_error_handlers(app)

cors_origins = [
    o.strip()
    for o in settings.cors_origins.split(",")
    if o.strip()
]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

app.add_middleware(ObservabilityMiddleware)


def _include_api_router(router: object) -> None:
    app.include_router(router)  # type: ignore[arg-type]
    app.include_router(router, prefix="/api/v1")  # type: ignore[arg-type]


_include_api_router(payments_router)
_include_api_router(entitlements_router)


# ── Health Checks ────────────────────────────────────────


@app.get("/health")
def health_check() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/ready")
def readiness_check() -> JSONResponse:
    """Readiness probe: verifies database and Redis connectivity."""
    checks: dict[str, str] = {}
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            checks["database"] = "ok"
        finally:
            db.close()
    except SQLAlchemyError as e:
        checks["database"] = f"error: {e}"

    try:
        r = redis_lib.Redis.from_url(
            settings.redis_url, decode_responses=True, socket_timeout=2
        )
        r.ping()
        checks["redis"] = "ok"
    except redis_lib.RedisError as e:
        checks["redis"] = f"error: {e}"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ok" if all_ok else "degraded", "checks": checks},
    )


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
