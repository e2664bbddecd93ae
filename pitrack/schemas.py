"""Pydantic request/response schemas for the pitrack API."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field, field_validator

from pitrack.framework import ITEM_TYPES

_IMAGE_PREFIXES = ("data:image/", "http://", "https://")


def _check_image(v: str | None) -> str | None:
    if v and not v.startswith(_IMAGE_PREFIXES):
        raise ValueError("image must be a data:image/ URI or an http(s) URL")
    return v or None


ImageRef = Annotated[str | None, AfterValidator(_check_image)]


class ProjectCreate(BaseModel):
    name: str
    description: str | None = None
    image_url: ImageRef = None


class ProjectUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    image_url: ImageRef = None
    clear_image: bool = False


class ProjectOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    image_url: str | None = None
    created_at: datetime | None = None
    completed_count: int
    total_count: int
    completion_rate: int


class CategoryCreate(BaseModel):
    name: str


class CategoryOut(BaseModel):
    id: int
    name: str
    sort_order: int


class ItemCreate(BaseModel):
    category_id: int
    item_type: str = "analog"
    title: str
    description: str | None = None

    @field_validator("item_type")
    @classmethod
    def item_type_known(cls, v: str) -> str:
        if v not in ITEM_TYPES:
            raise ValueError("item_type must be 'analog' or 'digital'")
        return v


class ItemDetailIn(BaseModel):
    activity: str | None = None
    image1_url: ImageRef = None
    image2_url: ImageRef = None
    image3_url: ImageRef = None
    image4_url: ImageRef = None
    attend_fa: float | None = Field(None, ge=0)
    consult_fc: float | None = Field(None, ge=0)
    involve_fi: float | None = Field(None, ge=0)
    collaborate_fcol: float | None = Field(None, ge=0)
    empower_femp: float | None = Field(None, ge=0)
    assumptions: str | None = None
    data_collected_by: str | None = None
    collection_date: str | None = None


class ItemDetailOut(ItemDetailIn):
    id: int
    checklist_item_id: int
    total_participation_n: float | None = None
    calculated_pi: float | None = None
    pi_percent: float | None = None


class ChecklistItemOut(BaseModel):
    id: int
    project_id: int
    category_id: int
    category: str | None = None
    item_type: str
    title: str
    description: str | None = None
    is_completed: bool
    complete: bool
    stage_number: int | None = None
    method_key: str | None = None
    detail: ItemDetailOut | None = None


class ProjectDetail(ProjectOut):
    updated_at: datetime | None = None
    items: list[ChecklistItemOut] = []


class PICountsIn(BaseModel):
    attend_fa: float | None = None
    consult_fc: float | None = None
    involve_fi: float | None = None
    collaborate_fcol: float | None = None
    empower_femp: float | None = None


class PIResult(BaseModel):
    total_participation_n: float
    pi: float | None
    pi_percent: float | None


class StageSummaryOut(BaseModel):
    stage_id: int
    name: str
    label: str
    total: int
    completed: int
    pending: int
    completion_rate: int


class CategorySummaryOut(BaseModel):
    category_id: int
    name: str
    total: int
    completed: int
    pending: int
    completion_rate: int
    analog_count: int
    digital_count: int


class FrameworkCategorySummaryOut(BaseModel):
    number: int
    name: str
    title: str
    total: int
    completed: int
    pending: int
    completion_rate: int


class StageBreakdownOut(BaseModel):
    stage_id: int
    name: str
    categories: list[dict[str, Any]]
    completed_methods: int
    total_methods: int


class AnalyticsOut(BaseModel):
    stages: list[StageSummaryOut]
    categories: list[CategorySummaryOut]
    framework_categories: list[FrameworkCategorySummaryOut]
    overall: dict[str, int]
    items: list[dict[str, Any]]
    category_pi: list[dict[str, Any]]
    items_by_category: list[dict[str, Any]]
    coverage: dict[str, int]
    type_distribution: dict[str, int]
    average_pi: float | None
    methods: list[StageBreakdownOut]
    unassigned_count: int
