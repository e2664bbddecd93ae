from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Generator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import HTMLResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from pitrack import services
from pitrack.db import get_session, init_db
from pitrack.exporter import export_filename, export_project_xlsx
from pitrack.framework import framework_overview
from pitrack.models import Category, ChecklistItem, Project
from pitrack.participation import PI_WEIGHTS, NegativeCountError, compute_pi, pi_percent, total_participation
from pitrack.schemas import (
    AnalyticsOut,
    CategoryCreate,
    CategoryOut,
    CategorySummaryOut,
    ChecklistItemOut,
    ItemCreate,
    ItemDetailIn,
    ItemDetailOut,
    PICountsIn,
    PIResult,
    ProjectCreate,
    ProjectDetail,
    ProjectOut,
    ProjectUpdate,
    StageBreakdownOut,
    StageSummaryOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="pitrack",
    version="0.1.0",
    description=(
        "Participation Index tracker for urban projects. "
        "Record participation methods per lifecycle stage, survey counts per method, "
        "and read back completion and PI rollups. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Projects", "description": "Create, browse, and delete projects."},
        {"name": "Categories", "description": "Shared checklist categories."},
        {"name": "Items", "description": "Checklist items, completion toggles, and survey details."},
        {"name": "Stages", "description": "Lifecycle stage and method rollups."},
        {"name": "Analytics", "description": "Chart-ready series and spreadsheet export."},
        {"name": "Framework", "description": "The fixed stage/category/method framework and PI calculator."},
        {"name": "Admin", "description": "Administrative operations."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


def _item_in_project(session: Session, project_id: int, item_id: int) -> ChecklistItem:
    item = services.get_project_item(session, project_id, item_id)
    if item is None:
        raise HTTPException(404, "Item not found")
    return item


# ---------------------------------------------------------------------------
# Routes: Root
# ---------------------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def root():
    return HTMLResponse(
        "<h1>pitrack</h1><p>Participation Index tracker. "
        "See <a href=\"/docs\">/docs</a> for the API.</p>"
    )


# ---------------------------------------------------------------------------
# Routes: Projects
# ---------------------------------------------------------------------------


@app.get("/api/projects", response_model=list[ProjectOut],
         tags=["Projects"], summary="List projects, newest first, with completion counts")
async def list_projects(session: Session = Depends(db_session)):
    return services.list_projects(session)


@app.post("/api/projects", response_model=ProjectOut, status_code=201,
          tags=["Projects"], summary="Create a project seeded with the default checklist")
async def create_project(body: ProjectCreate, session: Session = Depends(db_session)):
    try:
        proj = services.create_project(session, body.name, body.description, body.image_url)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    session.refresh(proj)
    return services.project_summary(proj)


@app.get("/api/projects/{project_id}", response_model=ProjectDetail,
         tags=["Projects"], summary="Get a project with all of its checklist items")
async def get_project(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    return services.project_detail(session, proj)


@app.put("/api/projects/{project_id}", response_model=ProjectOut,
         tags=["Projects"], summary="Update project fields (partial update, null fields ignored)")
async def update_project(project_id: int, body: ProjectUpdate, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    try:
        services.update_project(session, proj, body.model_dump(), clear_image=body.clear_image)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    return services.project_summary(proj)


@app.delete("/api/projects/{project_id}", tags=["Projects"],
            summary="Delete a project with its items and details")
async def delete_project(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    services.delete_project(session, proj)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Categories
# ---------------------------------------------------------------------------


@app.get("/api/categories", response_model=list[CategoryOut],
         tags=["Categories"], summary="List shared categories in sort order")
async def list_categories(session: Session = Depends(db_session)):
    return services.list_categories(session)


@app.post("/api/categories", response_model=CategoryOut, status_code=201,
          tags=["Categories"], summary="Add a shared category (name is upper-cased)")
async def create_category(body: CategoryCreate, session: Session = Depends(db_session)):
    try:
        result = services.add_category(session, body.name)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    if result is None:
        raise HTTPException(409, f"Category '{body.name.strip().upper()}' already exists")
    session.commit()
    return result


@app.delete("/api/projects/{project_id}/categories/{category_id}", tags=["Categories"],
            summary="Remove a project's items in a category; drop the category once unused")
async def delete_category(project_id: int, category_id: int, session: Session = Depends(db_session)):
    _get_or_404(session, Project, project_id, "Project")
    result = services.delete_category(session, category_id, project_id)
    if result is None:
        raise HTTPException(404, "Category not found")
    session.commit()
    return result


# ---------------------------------------------------------------------------
# Routes: Items
# ---------------------------------------------------------------------------


@app.post("/api/projects/{project_id}/items", response_model=ChecklistItemOut, status_code=201,
          tags=["Items"], summary="Add a free-form checklist item")
async def create_item(project_id: int, body: ItemCreate, session: Session = Depends(db_session)):
    _get_or_404(session, Project, project_id, "Project")
    _get_or_404(session, Category, body.category_id, "Category")
    try:
        item = services.add_item(
            session, project_id, body.category_id, body.item_type, body.title, body.description,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc
    session.commit()
    return services.item_dict(item)


@app.delete("/api/projects/{project_id}/items/{item_id}", tags=["Items"],
            summary="Delete a checklist item and its detail")
async def delete_item(project_id: int, item_id: int, session: Session = Depends(db_session)):
    item = _item_in_project(session, project_id, item_id)
    services.delete_item(session, item)
    session.commit()
    return {"ok": True}


@app.post("/api/projects/{project_id}/items/{item_id}/toggle", response_model=ChecklistItemOut,
          tags=["Items"], summary="Flip an item's completion flag")
async def toggle_item(project_id: int, item_id: int, session: Session = Depends(db_session)):
    item = services.toggle_item(session, project_id, item_id)
    if item is None:
        raise HTTPException(404, "Item not found")
    session.commit()
    return services.item_dict(item)


@app.get("/api/items/{item_id}/detail", response_model=ItemDetailOut,
         tags=["Items"], summary="Get the survey detail recorded for an item")
async def get_item_detail(item_id: int, session: Session = Depends(db_session)):
    item = _get_or_404(session, ChecklistItem, item_id, "Item")
    if item.detail is None:
        raise HTTPException(404, "Item has no detail yet")
    return services.detail_dict(item.detail)


@app.put("/api/items/{item_id}/detail", response_model=ItemDetailOut,
         tags=["Items"], summary="Save survey counts for an item; PI is recomputed and the item completed")
async def save_item_detail(item_id: int, body: ItemDetailIn, session: Session = Depends(db_session)):
    item = _get_or_404(session, ChecklistItem, item_id, "Item")
    detail = services.save_item_detail(session, item, body.model_dump())
    session.commit()
    return services.detail_dict(detail)


@app.post("/api/projects/{project_id}/stages/{stage_id}/methods/{category_number}/{method_key}",
          response_model=ChecklistItemOut, tags=["Items", "Stages"],
          summary="Get or create the item recording a method within a stage")
async def method_item(
    project_id: int, stage_id: int, category_number: int, method_key: str,
    session: Session = Depends(db_session),
):
    _get_or_404(session, Project, project_id, "Project")
    try:
        item, created = services.get_or_create_method_item(
            session, project_id, stage_id, category_number, method_key.upper(),
        )
    except services.FrameworkError as exc:
        raise HTTPException(400, str(exc)) from exc
    if created:
        session.commit()
    return services.item_dict(item)


# ---------------------------------------------------------------------------
# Routes: Stages & Analytics
# ---------------------------------------------------------------------------


@app.get("/api/projects/{project_id}/stages", response_model=list[StageSummaryOut],
         tags=["Stages"], summary="Completion per lifecycle stage")
async def list_stages(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    return services.stage_summaries(session, proj)


@app.get("/api/projects/{project_id}/stages/{stage_id}", response_model=StageBreakdownOut,
         tags=["Stages"], summary="All 13 methods of a stage with completion and average PI")
async def get_stage(project_id: int, stage_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    try:
        return services.stage_breakdown(session, proj, stage_id)
    except services.FrameworkError as exc:
        raise HTTPException(404, str(exc)) from exc


@app.get("/api/projects/{project_id}/categories/summary", response_model=list[CategorySummaryOut],
         tags=["Stages"], summary="Completion and analog/digital split per category")
async def category_summary(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    return services.category_summaries(session, proj)


@app.get("/api/projects/{project_id}/analytics", response_model=AnalyticsOut,
         tags=["Analytics"], summary="Every chart series for a project")
async def project_analytics(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    return services.project_analytics(session, proj)


@app.get("/api/projects/{project_id}/export.xlsx", tags=["Analytics"],
         summary="Download the project checklist and stage summary as XLSX")
async def export_project(project_id: int, session: Session = Depends(db_session)):
    proj = _get_or_404(session, Project, project_id, "Project")
    buf = export_project_xlsx(
        proj, services.load_project_items(session, proj.id), services.stage_summaries(session, proj),
    )
    return StreamingResponse(
        buf,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(proj)}"'},
    )


# ---------------------------------------------------------------------------
# Routes: Framework
# ---------------------------------------------------------------------------


@app.get("/api/framework", tags=["Framework"], summary="Lifecycle stages, categories, methods, and PI weights")
async def get_framework():
    return {**framework_overview(), "pi_weights": PI_WEIGHTS}


@app.post("/api/pi/compute", response_model=PIResult,
          tags=["Framework"], summary="Compute a Participation Index from raw counts")
async def compute_pi_route(body: PICountsIn):
    counts = [body.attend_fa, body.consult_fc, body.involve_fi, body.collaborate_fcol, body.empower_femp]
    try:
        pi = compute_pi(*counts)
    except NegativeCountError as exc:
        raise HTTPException(400, str(exc)) from exc
    return {"total_participation_n": total_participation(*counts), "pi": pi, "pi_percent": pi_percent(pi)}


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.post("/api/admin/recalculate-pi", tags=["Admin"],
          summary="Recompute stored PI values that drifted from their counts")
async def recalculate_pi(session: Session = Depends(db_session)):
    fixed = services.recalculate_pi(session)
    session.commit()
    return {"updated": fixed}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    logging.basicConfig(level=os.environ.get("PITRACK_LOG_LEVEL", "INFO").upper())
    uvicorn.run("pitrack.app:app", host="127.0.0.1", port=8002, reload=True)


if __name__ == "__main__":
    main()
