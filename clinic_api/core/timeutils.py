"""Timezone helpers shared by services."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def row_to_dict(row: Any) -> dict[str, Any]:
    """Convert a result row to a dict with UTC datetimes."""
    return {
        key: to_utc(value) if isinstance(value, datetime) else value
        for key, value in row._mapping.items()
    }
