from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)  # data-URI or public URL
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    items: Mapped[list[ChecklistItem]] = relationship(
        "ChecklistItem", back_populates="project", cascade="all, delete-orphan",
    )


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    items: Mapped[list[ChecklistItem]] = relationship("ChecklistItem", back_populates="category")


class ChecklistItem(Base):
    __tablename__ = "checklist_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey("projects.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("categories.id"), nullable=False)
    item_type: Mapped[str] = mapped_column(String(20), default="analog")  # "analog" | "digital"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    stage_number: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1..6
    method_key: Mapped[str | None] = mapped_column(String(1), nullable=True)  # A..E
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    project: Mapped[Project] = relationship("Project", back_populates="items")
    category: Mapped[Category] = relationship("Category", back_populates="items")
    detail: Mapped[ItemDetail | None] = relationship(
        "ItemDetail", back_populates="item", uselist=False, cascade="all, delete-orphan",
    )


class ItemDetail(Base):
    __tablename__ = "item_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    checklist_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("checklist_items.id"), nullable=False, unique=True,
    )
    activity: Mapped[str | None] = mapped_column(Text, nullable=True)
    image1_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image2_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image3_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image4_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attend_fa: Mapped[float | None] = mapped_column(Float, nullable=True)
    consult_fc: Mapped[float | None] = mapped_column(Float, nullable=True)
    involve_fi: Mapped[float | None] = mapped_column(Float, nullable=True)
    collaborate_fcol: Mapped[float | None] = mapped_column(Float, nullable=True)
    empower_femp: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_participation_n: Mapped[float | None] = mapped_column(Float, nullable=True)
    calculated_pi: Mapped[float | None] = mapped_column(Float, nullable=True)  # derived, 0..1
    assumptions: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_collected_by: Mapped[str | None] = mapped_column(String(300), nullable=True)
    collection_date: Mapped[str | None] = mapped_column(String(30), nullable=True)  # ISO date
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    item: Mapped[ChecklistItem] = relationship("ChecklistItem", back_populates="detail")
