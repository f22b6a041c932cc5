"""Shared service utilities: UUID coercion and timestamp normalisation."""
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any


def coerce_uuid(value: Any) -> uuid.UUID | None:
    """Convert a string or UUID to UUID, or return None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive timestamps (as returned by SQLite) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
