"""Shared utility functions used across pitrack modules."""
from __future__ import annotations

from collections.abc import Iterable


def truncate(text: str | None, limit: int) -> str:
    """Shorten text to ``limit`` characters plus an ellipsis."""
    text = text or ""
    return text[:limit] + "..." if len(text) > limit else text


def mean(values: Iterable[float]) -> float | None:
    """Arithmetic mean, or None for an empty input."""
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)
