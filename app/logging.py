import json
import logging
import logging.config
import os
from datetime import datetime, timezone

# Extra attributes copied from a record into the JSON line when present
CONTEXT_FIELDS = (
    "request_id",
    "actor_id",
    "path",
    "method",
    "status",
    "duration_ms",
    "order_number",
    "invoice_id",
)

# httpx logs every request line at INFO; Paylink traffic is already counted in metrics
QUIET_LOGGERS = ("httpx", "httpcore")


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonLogFormatter}},
            "handlers": {
                "default": {"class": "logging.StreamHandler", "formatter": "json"}
            },
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
            "root": {"handlers": ["default"], "level": level},
        }
    )
