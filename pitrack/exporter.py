"""XLSX export of a project's checklist and stage rollup."""
from __future__ import annotations

import io
import re
from collections.abc import Sequence
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from pitrack.completion import is_complete
from pitrack.framework import get_stage
from pitrack.participation import COUNT_FIELDS, COUNT_LABELS, pi_percent

CHECKLIST_HEADERS = [
    "Item ID", "Category", "Type", "Title", "Stage", "Method", "Complete",
    "Activity", *(COUNT_LABELS[f] for f in COUNT_FIELDS),
    "Total N", "PI", "PI %", "Data collected by", "Collection date",
]

STAGE_HEADERS = ["Stage", "Name", "Total", "Completed", "Pending", "Completion %"]


def _style_sheet(worksheet: Worksheet) -> None:
    worksheet.freeze_panes = "A2"
    worksheet.auto_filter.ref = worksheet.dimensions

    header_fill = PatternFill(fill_type="solid", fgColor="1F4E78")
    header_font = Font(color="FFFFFF", bold=True)
    for cell in worksheet[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    for col_cells in worksheet.columns:
        values = [str(cell.value) if cell.value is not None else "" for cell in col_cells]
        width = min(60, max(10, max(len(value) for value in values) + 2))
        worksheet.column_dimensions[col_cells[0].column_letter].width = width


def checklist_row(item: Any) -> list[Any]:
    detail = item.detail
    stage = get_stage(item.stage_number) if item.stage_number else None
    row = [
        item.id,
        item.category.name if item.category else None,
        item.item_type,
        item.title,
        stage.label if stage else None,
        item.method_key,
        "yes" if is_complete(item) else "no",
    ]
    if detail is None:
        return row + [None] * (len(CHECKLIST_HEADERS) - len(row))
    return row + [
        detail.activity,
        *(getattr(detail, f) for f in COUNT_FIELDS),
        detail.total_participation_n,
        detail.calculated_pi,
        pi_percent(detail.calculated_pi),
        detail.data_collected_by,
        detail.collection_date,
    ]


def build_workbook(project: Any, items: Sequence[Any], stage_summaries: Sequence[dict[str, Any]]) -> Workbook:
    workbook = Workbook()
    workbook.properties.title = project.name
    checklist = workbook.active
    checklist.title = "Checklist"
    checklist.append(CHECKLIST_HEADERS)
    for item in items:
        checklist.append(checklist_row(item))
    _style_sheet(checklist)

    stages = workbook.create_sheet("Stages")
    stages.append(STAGE_HEADERS)
    for s in stage_summaries:
        stages.append([s["label"], s["name"], s["total"], s["completed"], s["pending"], s["completion_rate"]])
    _style_sheet(stages)
    return workbook


def export_project_xlsx(project: Any, items: Sequence[Any], stage_summaries: Sequence[dict[str, Any]]) -> io.BytesIO:
    """Serialize a project's workbook into an in-memory buffer positioned at 0."""
    buf = io.BytesIO()
    build_workbook(project, items, stage_summaries).save(buf)
    buf.seek(0)
    return buf


def export_filename(project: Any) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", project.name or "").strip("_").lower() or "project"
    return f"pitrack_{slug}_{project.id}.xlsx"
