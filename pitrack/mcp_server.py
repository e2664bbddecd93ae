from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP
from sqlalchemy import select

from pitrack import services
from pitrack.db import get_session, init_db
from pitrack.framework import framework_overview
from pitrack.models import Project
from pitrack.participation import NegativeCountError, compute_pi, pi_percent, total_participation

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def pitrack_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "pitrack",
    instructions=(
        "pitrack tracks how deeply communities take part in urban projects. "
        "Each project has checklist items placed in lifecycle stages and participation "
        "methods, with survey counts that yield a Participation Index (PI, 0-1). "
        "Start with list_projects(), then get_stage_breakdown(project_id, stage_id) "
        "or get_project_analytics(project_id)."
    ),
    lifespan=pitrack_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _get_or_error(session, model, entity_id, label="Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if not obj:
        return None, {"error": f"{label} {entity_id} not found"}
    return obj, None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("pitrack://overview")
def pitrack_overview() -> str:
    """Overview of pitrack: data model, framework, and the PI formula."""
    return json.dumps({
        "system": "pitrack - Participation Index tracker",
        "data_model": {
            "project": "An urban project with a checklist of participation items.",
            "category": "Shared checklist grouping (GOAL SETTING, PROGRAMMING, CO-PRODUCTION, ...).",
            "checklist_item": "One activity or method. Optionally placed in a lifecycle stage (1-6) with a method key (A-E).",
            "item_detail": "Survey data for an item: five participation counts and the resulting PI.",
        },
        "pi_formula": "PI = (fa*0.2 + fc*0.4 + fi*0.6 + fcol*0.8 + femp*1.0) / N, N = sum of counts; undefined when N = 0.",
        "framework": framework_overview(),
    }, indent=2, default=str)


# ---------------------------------------------------------------------------
# Tools: Projects
# ---------------------------------------------------------------------------


@mcp.tool()
def list_projects() -> list[dict]:
    """List all projects, newest first, with checklist completion counts."""
    with _session() as session:
        return services.list_projects(session)


@mcp.tool()
def get_project(project_id: int) -> dict:
    """Get a project with every checklist item and its survey detail.

    Args:
        project_id: The project ID (from list_projects).
    """
    with _session() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        if err:
            return err
        return services.project_detail(session, proj)


# ---------------------------------------------------------------------------
# Tools: Rollups
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stage_summaries(project_id: int) -> list[dict] | dict:
    """Completion per lifecycle stage for a project.

    Items without a stage are not counted in any stage.
    """
    with _session() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        if err:
            return err
        return services.stage_summaries(session, proj)


@mcp.tool()
def get_stage_breakdown(project_id: int, stage_id: int) -> dict:
    """All 13 participation methods of one lifecycle stage, with completion and average PI.

    Args:
        project_id: The project ID.
        stage_id: Lifecycle stage 1-6: 1 Initiation & user requirements,
                  2 Briefing and site survey, 3 Schematic and product design,
                  4 Product information and working drawings (detail design),
                  5 Assembly, production and construction,
                  6 Consumption and implementation.
    """
    with _session() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        if err:
            return err
        try:
            return services.stage_breakdown(session, proj, stage_id)
        except services.FrameworkError as exc:
            return {"error": str(exc)}


@mcp.tool()
def get_project_analytics(project_id: int) -> dict:
    """Every analytics series for a project: stage and category completion,
    per-item PI, category averages, and the method rollup of each stage."""
    with _session() as session:
        proj, err = _get_or_error(session, Project, project_id, "Project")
        if err:
            return err
        return services.project_analytics(session, proj)


# ---------------------------------------------------------------------------
# Tools: Calculator
# ---------------------------------------------------------------------------


@mcp.tool()
def compute_participation_index(
    attend: float = 0, consult: float = 0, involve: float = 0,
    collaborate: float = 0, empower: float = 0,
) -> dict:
    """Compute a Participation Index from raw participant counts.

    Args:
        attend: Participants who attended (weight 0.2).
        consult: Participants who were consulted (weight 0.4).
        involve: Participants who were involved (weight 0.6).
        collaborate: Participants who collaborated (weight 0.8).
        empower: Participants who were empowered (weight 1.0).

    Returns pi as None when every count is zero.
    """
    counts = (attend, consult, involve, collaborate, empower)
    try:
        pi = compute_pi(*counts)
    except NegativeCountError as exc:
        return {"error": str(exc)}
    return {"total_participation_n": total_participation(*counts), "pi": pi, "pi_percent": pi_percent(pi)}


@mcp.tool()
def recalculate_pi() -> dict:
    """Recompute stored PI values that no longer match their counts."""
    with _session() as session:
        fixed = services.recalculate_pi(session)
        session.commit()
        return {"updated": fixed}


def main():
    """Run the pitrack MCP server over stdio."""
    logging.basicConfig(level=os.environ.get("PITRACK_LOG_LEVEL", "INFO").upper())
    mcp.run()


if __name__ == "__main__":
    main()
