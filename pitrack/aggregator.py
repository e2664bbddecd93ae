"""Rollups of checklist items over the stage / category / method hierarchy.

Items are addressed two ways and both are honoured:

- **Structured**: ``stage_number`` (1-6) and ``method_key`` (A-E) columns.
- **Legacy**: a ``(X)`` marker in the title, from data written before the
  structured columns existed.

Method matching ORs both paths. Stage placement uses ``stage_number`` only;
items without it are unassigned and appear in no stage.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pitrack.completion import is_complete
from pitrack.framework import LIFECYCLE_STAGES, PARTICIPATION_CATEGORIES, get_stage, title_method_key
from pitrack.participation import COUNT_FIELDS, pi_percent

log = logging.getLogger(__name__)


@dataclass
class StageSummary:
    stage_id: int
    name: str
    label: str
    total: int
    completed: int
    pending: int
    completion_rate: int


@dataclass
class CategorySummary:
    category_id: int
    name: str
    total: int
    completed: int
    pending: int
    completion_rate: int
    analog_count: int
    digital_count: int


@dataclass
class FrameworkCategorySummary:
    number: int
    name: str
    title: str
    total: int
    completed: int
    pending: int
    completion_rate: int


@dataclass
class MethodSummary:
    code: str
    key: str
    name: str
    category_number: int
    category_title: str
    total: int
    completed: int
    avg_pi: float
    entries: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StageBreakdown:
    stage_id: int
    name: str
    categories: list[dict[str, Any]]
    completed_methods: int
    total_methods: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_UNSET = object()


def completion_rate(completed: int, total: int) -> int:
    """Whole-number percentage, halves rounded up; 0 for an empty bucket."""
    if total == 0:
        return 0
    return math.floor(completed / total * 100 + 0.5)


def build_category_index(categories: Iterable[Any]) -> dict[str, int]:
    """Map stored category name -> id. Rebuilt from fetched rows on every call."""
    return {c.name: c.id for c in categories}


def detail_for(item: Any, details_by_item: dict[int, Any] | None = None) -> Any:
    """The detail row of an item: from ``details_by_item`` when given, else ``item.detail``."""
    if details_by_item is None:
        return getattr(item, "detail", None)
    return details_by_item.get(item.id)


def _complete(item: Any, details_by_item: dict[int, Any] | None) -> bool:
    return is_complete(item, detail_for(item, details_by_item))


def method_key_from_title(title: str | None) -> str | None:
    return title_method_key(title)


def matches_method(item: Any, key: str) -> bool:
    """Structured key OR legacy ``(key)`` title marker; neither path wins."""
    return item.method_key == key or f"({key})" in (item.title or "")


def check_method_consistency(item: Any) -> bool:
    """Warn when an item's method_key and title marker name different methods."""
    title_key = method_key_from_title(item.title)
    if item.method_key and title_key and item.method_key != title_key:
        log.warning(
            "Checklist item %s: method_key %r disagrees with title marker (%s) in %r",
            item.id, item.method_key, title_key, item.title,
        )
        return False
    return True


def method_entry(item: Any, detail: Any = _UNSET) -> dict[str, Any]:
    """Flat view of one completed method item and its survey data."""
    if detail is _UNSET:
        detail = getattr(item, "detail", None)
    entry: dict[str, Any] = {
        "item_id": item.id, "title": item.title, "updated_at": getattr(item, "updated_at", None),
    }
    if detail is None:
        return {**entry, "has_detail": False}
    entry.update({f: getattr(detail, f) or 0 for f in COUNT_FIELDS})
    entry.update({
        "has_detail": True,
        "activity": detail.activity,
        "calculated_pi": detail.calculated_pi,
        "pi_percent": pi_percent(detail.calculated_pi, 1),
        "data_collected_by": detail.data_collected_by,
        "collection_date": detail.collection_date,
    })
    return entry


# ---------------------------------------------------------------------------
# Aggregations
# ---------------------------------------------------------------------------
#
# Every aggregation takes an optional ``details_by_item`` map (item id -> detail
# row). When given it is the only source of detail data; otherwise each item's
# own ``detail`` relationship is used.


def unassigned_items(items: Iterable[Any]) -> list[Any]:
    return [i for i in items if i.stage_number is None]


def aggregate_by_stage(
    items: Sequence[Any], details_by_item: dict[int, Any] | None = None,
) -> list[StageSummary]:
    out: list[StageSummary] = []
    for stage in LIFECYCLE_STAGES:
        stage_items = [i for i in items if i.stage_number == stage.id]
        completed = sum(1 for i in stage_items if _complete(i, details_by_item))
        out.append(StageSummary(
            stage_id=stage.id, name=stage.name, label=stage.label,
            total=len(stage_items), completed=completed,
            pending=len(stage_items) - completed,
            completion_rate=completion_rate(completed, len(stage_items)),
        ))
    return out


def aggregate_by_category(
    items: Sequence[Any], categories: Iterable[Any], details_by_item: dict[int, Any] | None = None,
) -> list[CategorySummary]:
    out: list[CategorySummary] = []
    for cat in sorted(categories, key=lambda c: (c.sort_order or 0, c.id)):
        cat_items = [i for i in items if i.category_id == cat.id]
        completed = sum(1 for i in cat_items if _complete(i, details_by_item))
        out.append(CategorySummary(
            category_id=cat.id, name=cat.name,
            total=len(cat_items), completed=completed,
            pending=len(cat_items) - completed,
            completion_rate=completion_rate(completed, len(cat_items)),
            analog_count=sum(1 for i in cat_items if i.item_type == "analog"),
            digital_count=sum(1 for i in cat_items if i.item_type == "digital"),
        ))
    return out


def aggregate_by_framework_category(
    items: Sequence[Any], details_by_item: dict[int, Any] | None = None,
) -> list[FrameworkCategorySummary]:
    """Completion per participation category across all stages.

    An item belongs to a category when it matches any of the category's method
    keys, so one item can count toward several categories.
    """
    out: list[FrameworkCategorySummary] = []
    for category in PARTICIPATION_CATEGORIES:
        cat_items = [i for i in items if any(matches_method(i, m.key) for m in category.methods)]
        completed = sum(1 for i in cat_items if _complete(i, details_by_item))
        out.append(FrameworkCategorySummary(
            number=category.number,
            name=" ".join(category.title.split()[:3]) + "...",
            title=category.title,
            total=len(cat_items), completed=completed,
            pending=len(cat_items) - completed,
            completion_rate=completion_rate(completed, len(cat_items)),
        ))
    return out


def aggregate_by_method(
    items: Sequence[Any], stage_id: int, details_by_item: dict[int, Any] | None = None,
) -> list[MethodSummary]:
    """All 13 framework methods for one stage, with completion and average PI."""
    if get_stage(stage_id) is None:
        raise ValueError(f"Unknown lifecycle stage: {stage_id!r}")
    stage_items = [i for i in items if i.stage_number == stage_id]
    for item in stage_items:
        check_method_consistency(item)

    out: list[MethodSummary] = []
    for category in PARTICIPATION_CATEGORIES:
        for method in category.methods:
            matched = [i for i in stage_items if matches_method(i, method.key)]
            completed = [(i, detail_for(i, details_by_item)) for i in matched if _complete(i, details_by_item)]
            pis = [d.calculated_pi for _, d in completed if d is not None and d.calculated_pi is not None]
            avg = sum(pis) / len(pis) * 100 if pis else 0.0
            out.append(MethodSummary(
                code=method.code, key=method.key, name=method.name,
                category_number=category.number, category_title=category.title,
                total=len(matched), completed=len(completed),
                avg_pi=round(avg, 2),
                entries=[method_entry(i, d) for i, d in completed],
            ))
    return out


def summarize_stage(
    items: Sequence[Any], stage_id: int, details_by_item: dict[int, Any] | None = None,
) -> StageBreakdown:
    """Stage view: the 13 method summaries grouped under their categories."""
    methods = aggregate_by_method(items, stage_id, details_by_item)
    stage = get_stage(stage_id)
    categories = []
    for category in PARTICIPATION_CATEGORIES:
        cat_methods = [m for m in methods if m.category_number == category.number]
        categories.append({
            "number": category.number,
            "title": category.title,
            "subtitle": category.subtitle,
            "completed_methods": sum(1 for m in cat_methods if m.completed > 0),
            "methods": cat_methods,
        })
    return StageBreakdown(
        stage_id=stage.id, name=stage.name, categories=categories,
        completed_methods=sum(1 for m in methods if m.completed > 0),
        total_methods=len(methods),
    )
