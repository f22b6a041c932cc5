import logging
import time
import uuid

from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.config import settings
from app.metrics import REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY
from app.services.auth_dependencies import _extract_bearer_token

logger = logging.getLogger(__name__)

# Probes and scrapes are counted but not logged
QUIET_PATHS = frozenset({"/health", "/health/ready", "/metrics"})


def _actor_id(request: Request) -> str | None:
    """Best-effort user id for log lines; never rejects a request."""
    # Paylink webhooks put a static credential in Authorization, not a bearer JWT
    token = _extract_bearer_token(request.headers.get("authorization"))
    if not token or not settings.jwt_secret:
        return None
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        return None
    subject = claims.get("sub")
    return str(subject) if subject else None


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Assign a request id, record request metrics and log one line per request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            self._observe(request, request_id, status_code, started)
        response.headers["x-request-id"] = request_id
        return response

    @staticmethod
    def _observe(request: Request, request_id: str, status_code: int, started: float) -> None:
        elapsed = time.monotonic() - started
        path = _route_path(request)
        labels = (request.method, path, str(status_code))
        REQUEST_COUNT.labels(*labels).inc()
        REQUEST_LATENCY.labels(*labels).observe(elapsed)
        if status_code >= 500:
            REQUEST_ERRORS.labels(*labels).inc()
        if path in QUIET_PATHS and status_code < 500:
            return
        extra = {
            "request_id": request_id,
            "actor_id": getattr(request.state, "actor_id", None) or _actor_id(request),
            "path": path,
            "method": request.method,
            "status": status_code,
            "duration_ms": round(elapsed * 1000.0, 2),
        }
        if status_code >= 500:
            logger.error("request_failed", extra=extra)
        else:
            logger.info("request_completed", extra=extra)
