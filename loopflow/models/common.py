"""
Shared enums and helpers for record models.
"""

from datetime import datetime
from enum import Enum


class EntityKind(str, Enum):
    """Kinds of stored records."""

    INSIGHT = "insight"
    TASK = "task"


class ScanScope(str, Enum):
    """Which entity kinds a retrieval call searches."""

    ALL = "all"
    INSIGHTS = "insights"
    TASKS = "tasks"

    def kinds(self) -> list[EntityKind]:
        """Entity kinds covered by this scope."""
        if self is ScanScope.INSIGHTS:
            return [EntityKind.INSIGHT]
        if self is ScanScope.TASKS:
            return [EntityKind.TASK]
        return [EntityKind.INSIGHT, EntityKind.TASK]


def normalize_timestamp(value: datetime) -> datetime:
    """
    Convert aware datetimes to naive local time.

    Records are compared and stored as naive local timestamps, so "Z"/offset
    suffixes coming from flat files or bundles must not leak through.
    """
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 string (or pass a datetime through) into a naive datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return normalize_timestamp(value)
    text = str(value).strip()
    if not text:
        return None
    return normalize_timestamp(datetime.fromisoformat(text.replace("Z", "+00:00")))


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 text so lexical order equals chronological order."""
    return normalize_timestamp(value).isoformat(timespec="microseconds")
