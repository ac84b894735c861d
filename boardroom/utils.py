"""Shared utility functions used across boardroom modules."""
from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite stores and hands back."""
    return datetime.now(UTC).replace(tzinfo=None)


def format_percent(value: float) -> str:
    """``40.0`` -> ``"40"``, ``33.333`` -> ``"33.3"``."""
    rounded = round(value, 1)
    return str(int(rounded)) if rounded == int(rounded) else str(rounded)
