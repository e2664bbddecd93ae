"""Chart-ready projections of a project's checklist.

Everything here is recomputed from fetched rows on each request; nothing is
cached between calls.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import asdict
from typing import Any

from pitrack.aggregator import (
    aggregate_by_category,
    aggregate_by_framework_category,
    aggregate_by_stage,
    completion_rate,
    summarize_stage,
    unassigned_items,
)
from pitrack.completion import is_complete
from pitrack.framework import LIFECYCLE_STAGES
from pitrack.participation import detail_pi
from pitrack.utils import mean, truncate

ITEM_NAME_LIMIT = 20
GROUPED_ITEM_NAME_LIMIT = 15


def overall_progress(items: Sequence[Any], details_by_item: dict[int, Any]) -> dict[str, int]:
    """Completed/pending split across every item of a project (pie chart)."""
    total = len(items)
    completed = sum(1 for i in items if is_complete(i, details_by_item.get(i.id)))
    return {
        "total": total,
        "completed": completed,
        "pending": total - completed,
        "completion_rate": completion_rate(completed, total),
    }


def item_pi_points(
    items: Sequence[Any], details_by_item: dict[int, Any], category_names: dict[int, str],
) -> list[dict[str, Any]]:
    """One point per item with a defined PI. Items without detail data are left out."""
    points: list[dict[str, Any]] = []
    for item in items:
        detail = details_by_item.get(item.id)
        if detail is None:
            continue
        pi = detail_pi(detail)
        if pi is None:
            continue
        points.append({
            "item_id": item.id,
            "category_id": item.category_id,
            "name": truncate(item.title, ITEM_NAME_LIMIT),
            "full_name": item.title,
            "category": category_names.get(item.category_id, "Unknown"),
            "item_type": item.item_type,
            "pi": pi,
            "pi_percent": pi * 100,
        })
    return points


def category_pi_series(points: list[dict[str, Any]], categories: Sequence[Any]) -> list[dict[str, Any]]:
    """Average PI (percent) per category; categories with no points are omitted."""
    out: list[dict[str, Any]] = []
    for cat in categories:
        cat_points = [p for p in points if p["category_id"] == cat.id]
        if not cat_points:
            continue
        out.append({
            "category_id": cat.id,
            "category": cat.name,
            "average_pi": mean(p["pi_percent"] for p in cat_points),
            "item_count": len(cat_points),
            "analog_count": sum(1 for p in cat_points if p["item_type"] == "analog"),
            "digital_count": sum(1 for p in cat_points if p["item_type"] == "digital"),
        })
    return out


def items_by_category(points: list[dict[str, Any]], categories: Sequence[Any]) -> list[dict[str, Any]]:
    out = []
    for cat in categories:
        grouped = [
            {"name": truncate(p["full_name"], GROUPED_ITEM_NAME_LIMIT), "full_name": p["full_name"],
             "pi": p["pi_percent"], "item_type": p["item_type"]}
            for p in points if p["category_id"] == cat.id
        ]
        if grouped:
            out.append({"category": cat.name, "items": grouped})
    return out


def project_for_analytics(
    items: Sequence[Any], item_details: Iterable[Any], categories: Iterable[Any],
) -> dict[str, Any]:
    """Build every analytics series for one project.

    ``item_details`` are matched to items by ``checklist_item_id``. They are the
    only detail data used here. Every series resolves completion and PI from
    them, never from ``item.detail``.
    """
    categories = sorted(categories, key=lambda c: (c.sort_order or 0, c.id))
    details_by_item = {d.checklist_item_id: d for d in item_details}
    category_names = {c.id: c.name for c in categories}

    points = item_pi_points(items, details_by_item, category_names)
    category_pi = category_pi_series(points, categories)

    return {
        "stages": [asdict(s) for s in aggregate_by_stage(items, details_by_item)],
        "categories": [asdict(c) for c in aggregate_by_category(items, categories, details_by_item)],
        "framework_categories": [
            asdict(c) for c in aggregate_by_framework_category(items, details_by_item)
        ],
        "overall": overall_progress(items, details_by_item),
        "items": points,
        "category_pi": category_pi,
        "items_by_category": items_by_category(points, categories),
        "coverage": {
            "with_pi_data": len(points),
            "without_pi_data": len(items) - len(points),
        },
        "type_distribution": {
            "analog": sum(1 for p in points if p["item_type"] == "analog"),
            "digital": sum(1 for p in points if p["item_type"] == "digital"),
        },
        "average_pi": mean(c["average_pi"] for c in category_pi),
        "methods": [asdict(summarize_stage(items, s.id, details_by_item)) for s in LIFECYCLE_STAGES],
        "unassigned_count": len(unassigned_items(items)),
    }
