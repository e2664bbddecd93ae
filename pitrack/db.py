from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from sqlalchemy import create_engine, inspect as sa_inspect, text
from sqlalchemy.orm import Session, sessionmaker

from pitrack.models import Base

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DATA_DIR = Path(__file__).parent / "data"

# Columns added after the first release: (table, column, DDL type).
_LATE_COLUMNS = (
    ("projects", "image_url", "TEXT"),
    ("checklist_items", "stage_number", "INTEGER"),
    ("checklist_items", "method_key", "VARCHAR(1)"),
    ("item_details", "image3_url", "TEXT"),
    ("item_details", "image4_url", "TEXT"),
)


def default_db_path() -> Path:
    env = os.environ.get("PITRACK_DB")
    return Path(env) if env else DATA_DIR / "pitrack.db"


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        db_path = Path(db_path) if db_path is not None else default_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"
        _engine = create_engine(url, connect_args={"check_same_thread": False})
        _migrate_existing_db(_engine)
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        seed_default_categories(_engine)


def _migrate_existing_db(engine) -> None:
    """Add columns that may be missing in older databases."""
    inspector = sa_inspect(engine)
    for table, column, ddl in _LATE_COLUMNS:
        if not inspector.has_table(table):
            continue
        columns = {col["name"] for col in inspector.get_columns(table)}
        if column not in columns:
            log.info("Adding missing column %s.%s", table, column)
            with engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))


def seed_default_categories(engine) -> None:
    """Seed the default categories if the table is empty."""
    with engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM categories")).scalar()
        if count > 0:
            return
    from pitrack.framework import DEFAULT_CATEGORIES
    with engine.begin() as conn:
        for order, name in enumerate(DEFAULT_CATEGORIES, start=1):
            conn.execute(text(
                "INSERT INTO categories (name, sort_order) VALUES (:name, :sort_order)"
            ), {"name": name, "sort_order": order})


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]
