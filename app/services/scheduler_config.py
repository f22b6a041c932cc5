import logging
import os
from datetime import timedelta

from app.config import settings

logger = logging.getLogger(__name__)

RECONCILE_TASK_NAME = "app.tasks.payments.reconcile_pending_invoices"


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def get_celery_config() -> dict:
    broker = _env_value("CELERY_BROKER_URL") or settings.redis_url
    backend = _env_value("CELERY_RESULT_BACKEND") or settings.redis_url
    timezone = _env_value("CELERY_TIMEZONE") or "UTC"
    config = {"broker_url": broker, "result_backend": backend, "timezone": timezone}
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5
    return config


def build_beat_schedule() -> dict:
    interval_seconds = max(settings.reconcile_interval_seconds, 1)
    return {
        "reconcile_pending_invoices": {
            "task": RECONCILE_TASK_NAME,
            "schedule": timedelta(seconds=interval_seconds),
            "kwargs": {"limit": settings.reconcile_batch_limit},
        }
    }
