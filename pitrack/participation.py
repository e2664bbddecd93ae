"""Participation Index formula engine.

Five activity-frequency counts, ordered by depth of engagement, are weighted
and normalized by their sum::

    PI = (fa*0.2 + fc*0.4 + fi*0.6 + fcol*0.8 + femp*1.0) / N
    N  = fa + fc + fi + fcol + femp

- **Attend** (fa), **Consult** (fc), **Involve** (fi), **Collaborate** (fcol),
  **Empower** (femp).
- Absent counts are 0. ``N == 0`` yields ``None``: the index is undefined and
  must be shown as "no data", never as zero.
- The stored value is the raw index in [0, 1]; percentages are a display concern.
"""
from __future__ import annotations

import math
from typing import Any


class NegativeCountError(ValueError):
    """A participation count was below zero."""
    def __init__(self, field: str, value: float):
        super().__init__(f"{field} must not be negative (got {value})")
        self.field = field
        self.value = value


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

# ItemDetail column -> weight, Attend through Empower.
PI_WEIGHTS: dict[str, float] = {
    "attend_fa": 0.2,
    "consult_fc": 0.4,
    "involve_fi": 0.6,
    "collaborate_fcol": 0.8,
    "empower_femp": 1.0,
}
COUNT_FIELDS: tuple[str, ...] = tuple(PI_WEIGHTS)

COUNT_LABELS: dict[str, str] = {
    "attend_fa": "Attend (fa)",
    "consult_fc": "Consult (fc)",
    "involve_fi": "Involve (fi)",
    "collaborate_fcol": "Collaborate (fcol)",
    "empower_femp": "Empower (femp)",
}

DRIFT_TOLERANCE = 1e-9


# ---------------------------------------------------------------------------
# Formula
# ---------------------------------------------------------------------------


def _normalize(counts: tuple[float | None, ...]) -> list[float]:
    values: list[float] = []
    for field, raw in zip(COUNT_FIELDS, counts):
        v = float(raw or 0)
        if v < 0:
            raise NegativeCountError(field, v)
        values.append(v)
    return values


def total_participation(
    fa: float | None = None, fc: float | None = None, fi: float | None = None,
    fcol: float | None = None, femp: float | None = None,
) -> float:
    """N: the sum of the five counts, absent counts as 0."""
    return sum(_normalize((fa, fc, fi, fcol, femp)))


def compute_pi(
    fa: float | None = None, fc: float | None = None, fi: float | None = None,
    fcol: float | None = None, femp: float | None = None,
) -> float | None:
    """Participation Index in [0, 1], or None when no participation was recorded.

    Raises ``NegativeCountError`` for counts below zero.
    """
    values = _normalize((fa, fc, fi, fcol, femp))
    n = sum(values)
    if n == 0:
        return None
    weighted = sum(v * w for v, w in zip(values, PI_WEIGHTS.values()))
    return weighted / n


def counts_of(detail: Any) -> tuple[float | None, ...]:
    """The five count columns of an ItemDetail-like object, in formula order."""
    return tuple(getattr(detail, f, None) for f in COUNT_FIELDS)


def detail_pi(detail: Any) -> float | None:
    """Recompute PI from an ItemDetail's stored counts."""
    return compute_pi(*counts_of(detail))


def detail_pi_drift(detail: Any) -> bool:
    """True when the cached ``calculated_pi`` no longer matches the counts."""
    expected = detail_pi(detail)
    stored = detail.calculated_pi
    if expected is None or stored is None:
        return expected is not stored
    return not math.isclose(expected, stored, rel_tol=0.0, abs_tol=DRIFT_TOLERANCE)


def pi_percent(pi: float | None, ndigits: int = 2) -> float | None:
    """Convert a 0-1 index to a rounded percentage; None passes through."""
    if pi is None:
        return None
    return round(pi * 100, ndigits)
