from datetime import UTC, datetime
from enum import Enum


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class EntityStatus(str, Enum):
    """Lifecycle state shared by soft-deletable entities."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
