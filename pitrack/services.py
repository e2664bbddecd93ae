"""Shared business logic for the pitrack API and MCP server."""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from pitrack.aggregator import (
    aggregate_by_category,
    aggregate_by_stage,
    build_category_index,
    completion_rate,
    summarize_stage,
)
from pitrack.analytics import project_for_analytics
from pitrack.completion import count_completed, is_complete
from pitrack.framework import (
    DEFAULT_CHECKLIST_ITEMS,
    FRAMEWORK_CATEGORY_NAMES,
    get_category,
    get_stage,
    item_type_for,
)
from pitrack.models import Category, ChecklistItem, ItemDetail, Project
from pitrack.participation import (
    COUNT_FIELDS,
    compute_pi,
    detail_pi,
    detail_pi_drift,
    pi_percent,
    total_participation,
)

log = logging.getLogger(__name__)


class FrameworkError(ValueError):
    """Stage, category or method coordinates outside the fixed framework."""


# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

PROJECT_FIELDS = ("name", "description", "image_url")

DETAIL_FIELDS = (
    "activity", "image1_url", "image2_url", "image3_url", "image4_url",
    *COUNT_FIELDS,
    "assumptions", "data_collected_by", "collection_date",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def project_summary(project: Project) -> dict:
    total = len(project.items)
    completed = count_completed(project.items)
    return {
        "id": project.id, "name": project.name, "description": project.description,
        "image_url": project.image_url, "created_at": project.created_at,
        "completed_count": completed, "total_count": total,
        "completion_rate": completion_rate(completed, total),
    }


def category_dict(cat: Category) -> dict:
    return {"id": cat.id, "name": cat.name, "sort_order": cat.sort_order}


def detail_dict(detail: ItemDetail) -> dict:
    out = {f: getattr(detail, f) for f in DETAIL_FIELDS}
    out.update({
        "id": detail.id, "checklist_item_id": detail.checklist_item_id,
        "total_participation_n": detail.total_participation_n,
        "calculated_pi": detail.calculated_pi,
        "pi_percent": pi_percent(detail.calculated_pi),
    })
    return out


def item_dict(item: ChecklistItem) -> dict:
    return {
        "id": item.id, "project_id": item.project_id, "category_id": item.category_id,
        "category": item.category.name if item.category else None,
        "item_type": item.item_type, "title": item.title, "description": item.description,
        "is_completed": bool(item.is_completed), "complete": is_complete(item),
        "stage_number": item.stage_number, "method_key": item.method_key,
        "detail": detail_dict(item.detail) if item.detail else None,
    }


# ---------------------------------------------------------------------------
# Lookup and mutation helpers
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id: int):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def list_projects(session: Session) -> list[dict]:
    projects = session.execute(
        select(Project)
        .options(selectinload(Project.items).selectinload(ChecklistItem.detail))
        .order_by(Project.created_at.desc(), Project.id.desc())
    ).scalars().all()
    return [project_summary(p) for p in projects]


def create_project(
    session: Session, name: str, description: str | None = None, image_url: str | None = None,
) -> Project:
    """Create a project and seed the default checklist (caller must commit)."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Project name is required")
    project = Project(name=name, description=(description or "").strip() or None, image_url=image_url)
    session.add(project)
    session.flush()

    seeded = 0
    for cat in list_category_rows(session):
        template = DEFAULT_CHECKLIST_ITEMS.get(cat.name)
        if not template:
            continue
        for item_type in ("analog", "digital"):
            for title in template[item_type]:
                session.add(ChecklistItem(
                    project_id=project.id, category_id=cat.id,
                    item_type=item_type, title=title, is_completed=False,
                ))
                seeded += 1
    session.flush()
    log.info("Created project %s (%r) with %d template items", project.id, project.name, seeded)
    return project


def project_detail(session: Session, project: Project) -> dict:
    items = load_project_items(session, project.id)
    out = project_summary(project)
    out.update({"updated_at": project.updated_at, "items": [item_dict(i) for i in items]})
    return out


def update_project(session: Session, project: Project, updates: dict[str, Any], clear_image: bool = False) -> Project:
    if updates.get("name") is not None and not updates["name"].strip():
        raise ValueError("Project name is required")
    apply_updates(project, updates, PROJECT_FIELDS)
    if clear_image:
        project.image_url = None
    return project


def delete_project(session: Session, project: Project) -> None:
    """Delete a project; items and their details cascade."""
    session.delete(project)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def list_category_rows(session: Session) -> list[Category]:
    return list(session.execute(
        select(Category).order_by(Category.sort_order, Category.id)
    ).scalars().all())


def list_categories(session: Session) -> list[dict]:
    return [category_dict(c) for c in list_category_rows(session)]


def add_category(session: Session, name: str) -> dict | None:
    """Add a shared category at the end of the sort order (caller must commit).

    Returns None on duplicate.
    """
    name = (name or "").strip().upper()
    if not name:
        raise ValueError("Category name is required")
    if session.execute(select(Category).where(Category.name == name)).scalars().first():
        return None
    max_order = session.execute(select(func.max(Category.sort_order))).scalar() or 0
    cat = Category(name=name, sort_order=max_order + 1)
    session.add(cat)
    session.flush()
    return category_dict(cat)


def delete_category(session: Session, category_id: int, project_id: int) -> dict | None:
    """Remove a project's items in a category, then the category itself if no
    other project still uses it (caller must commit)."""
    cat = get_entity(session, Category, category_id)
    if cat is None:
        return None
    items = session.execute(
        select(ChecklistItem).where(
            ChecklistItem.category_id == category_id,
            ChecklistItem.project_id == project_id,
        )
    ).scalars().all()
    for item in items:
        session.delete(item)
    session.flush()

    still_used = session.execute(
        select(ChecklistItem.id).where(ChecklistItem.category_id == category_id).limit(1)
    ).first()
    if still_used is None:
        session.delete(cat)
    return {"items_deleted": len(items), "category_deleted": still_used is None}


# ---------------------------------------------------------------------------
# Checklist items
# ---------------------------------------------------------------------------


def load_project_items(session: Session, project_id: int) -> list[ChecklistItem]:
    return list(session.execute(
        select(ChecklistItem)
        .where(ChecklistItem.project_id == project_id)
        .options(selectinload(ChecklistItem.detail), selectinload(ChecklistItem.category))
        .order_by(ChecklistItem.id)
    ).scalars().all())


def get_project_item(session: Session, project_id: int, item_id: int) -> ChecklistItem | None:
    return session.execute(
        select(ChecklistItem).where(
            ChecklistItem.id == item_id, ChecklistItem.project_id == project_id,
        )
    ).scalars().first()


def add_item(
    session: Session, project_id: int, category_id: int, item_type: str, title: str,
    description: str | None = None,
) -> ChecklistItem:
    title = (title or "").strip()
    if not title:
        raise ValueError("Item title is required")
    item = ChecklistItem(
        project_id=project_id, category_id=category_id, item_type=item_type,
        title=title, description=description, is_completed=False,
    )
    session.add(item)
    session.flush()
    return item


def delete_item(session: Session, item: ChecklistItem) -> None:
    """Delete an item; its detail cascades."""
    session.delete(item)


def toggle_item(session: Session, project_id: int, item_id: int) -> ChecklistItem | None:
    """Flip the completion flag of an item within a project (caller must commit)."""
    item = get_project_item(session, project_id, item_id)
    if item is None:
        return None
    item.is_completed = not item.is_completed
    return item


def get_or_create_method_item(
    session: Session, project_id: int, stage_id: int, category_number: int, method_key: str,
) -> tuple[ChecklistItem, bool]:
    """Find the item recording one method in one stage, creating it on first use.

    Returns ``(item, created)``. New items start incomplete with no detail.
    """
    stage = get_stage(stage_id)
    if stage is None:
        raise FrameworkError(f"Unknown lifecycle stage: {stage_id}")
    category = get_category(category_number)
    if category is None:
        raise FrameworkError(f"Unknown participation category: {category_number}")
    method = category.method(method_key)
    if method is None:
        raise FrameworkError(f"Category {category_number} has no method {method_key!r}")

    stored_name = FRAMEWORK_CATEGORY_NAMES[category.number]
    category_id = build_category_index(list_category_rows(session)).get(stored_name)
    if category_id is None:
        raise FrameworkError(f"Stored category {stored_name!r} does not exist")

    existing = session.execute(
        select(ChecklistItem).where(
            ChecklistItem.project_id == project_id,
            ChecklistItem.category_id == category_id,
            ChecklistItem.stage_number == stage.id,
            ChecklistItem.title == method.title,
        )
    ).scalars().first()
    if existing is not None:
        return existing, False

    item = ChecklistItem(
        project_id=project_id, category_id=category_id,
        stage_number=stage.id, method_key=method.key,
        item_type=item_type_for(category.number),
        title=method.title, description=category.subtitle,
        is_completed=False,
    )
    session.add(item)
    session.flush()
    return item, True


# ---------------------------------------------------------------------------
# Item details
# ---------------------------------------------------------------------------


def save_item_detail(session: Session, item: ChecklistItem, data: dict[str, Any]) -> ItemDetail:
    """Upsert the single detail row of an item (last write wins).

    The PI and N are always recomputed from the submitted counts, and the item
    is marked completed. Caller must commit.
    """
    counts = [data.get(f) for f in COUNT_FIELDS]
    pi = compute_pi(*counts)
    n = total_participation(*counts)

    detail = item.detail
    if detail is None:
        detail = session.execute(
            select(ItemDetail).where(ItemDetail.checklist_item_id == item.id)
        ).scalars().first()
    if detail is None:
        detail = ItemDetail(checklist_item_id=item.id)
        item.detail = detail
        session.add(detail)

    for field in DETAIL_FIELDS:
        setattr(detail, field, data.get(field))
    detail.calculated_pi = pi
    detail.total_participation_n = n if any(c is not None for c in counts) else None
    item.is_completed = True
    session.flush()
    return detail


def recalculate_pi(session: Session) -> int:
    """Rewrite every stored calculated_pi that drifted from its counts (caller must commit)."""
    fixed = 0
    for detail in session.execute(select(ItemDetail)).scalars().all():
        if not detail_pi_drift(detail):
            continue
        new_pi = detail_pi(detail)
        log.warning(
            "Item detail %s: stored PI %r does not match counts, resetting to %r",
            detail.id, detail.calculated_pi, new_pi,
        )
        detail.calculated_pi = new_pi
        fixed += 1
    if fixed:
        log.info("Recalculated PI for %d item detail(s)", fixed)
    return fixed


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------


def stage_summaries(session: Session, project: Project) -> list[dict]:
    return [asdict(s) for s in aggregate_by_stage(load_project_items(session, project.id))]


def category_summaries(session: Session, project: Project) -> list[dict]:
    items = load_project_items(session, project.id)
    return [asdict(c) for c in aggregate_by_category(items, list_category_rows(session))]


def stage_breakdown(session: Session, project: Project, stage_id: int) -> dict:
    if get_stage(stage_id) is None:
        raise FrameworkError(f"Unknown lifecycle stage: {stage_id}")
    return asdict(summarize_stage(load_project_items(session, project.id), stage_id))


def project_analytics(session: Session, project: Project) -> dict:
    items = load_project_items(session, project.id)
    details = [i.detail for i in items if i.detail is not None]
    return project_for_analytics(items, details, list_category_rows(session))
