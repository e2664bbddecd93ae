"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database to verify HTTP-level behavior.
"""
from __future__ import annotations

import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pitrack.db import seed_default_categories
from pitrack.framework import DEFAULT_CHECKLIST_ITEMS
from pitrack.models import Base, ItemDetail

TEMPLATE_SIZE = sum(len(v["analog"]) + len(v["digital"]) for v in DEFAULT_CHECKLIST_ITEMS.values())


@pytest.fixture()
def test_db():
    """Create a temporary SQLite in-memory database for testing.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_default_categories(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def client(test_db, tmp_path, monkeypatch):
    """FastAPI TestClient using in-memory database."""
    engine, TestSession = test_db
    # The app lifespan still opens a file database; keep it out of the package.
    monkeypatch.setenv("PITRACK_DB", str(tmp_path / "lifespan.db"))
    from pitrack.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, TestSession
    app.dependency_overrides.clear()


@pytest.fixture()
def seeded_client(client):
    """Client with one project created through the API."""
    c, TestSession = client
    resp = c.post("/api/projects", json={"name": "Riverside Park", "description": "Park redesign"})
    assert resp.status_code == 201
    return c, TestSession, resp.json()["id"]


def _first_item_id(c, project_id):
    return c.get(f"/api/projects/{project_id}").json()["items"][0]["id"]


class TestRoot:
    def test_root_html(self, client):
        c, _ = client
        resp = c.get("/")
        assert resp.status_code == 200
        assert "pitrack" in resp.text


class TestProjectEndpoints:
    def test_create_project(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.get("/api/projects")
        assert resp.status_code == 200
        data = resp.json()
        assert data[0]["id"] == pid
        assert data[0]["total_count"] == TEMPLATE_SIZE
        assert data[0]["completion_rate"] == 0

    def test_create_project_empty_name(self, client):
        c, _ = client
        resp = c.post("/api/projects", json={"name": "  "})
        assert resp.status_code == 400

    def test_create_project_bad_image(self, client):
        c, _ = client
        resp = c.post("/api/projects", json={"name": "P", "image_url": "ftp://x/y.png"})
        assert resp.status_code == 422

    def test_get_project(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.get(f"/api/projects/{pid}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Riverside Park"
        assert len(data["items"]) == TEMPLATE_SIZE
        item = data["items"][0]
        for key in ("id", "category", "item_type", "title", "is_completed", "complete", "detail"):
            assert key in item

    def test_get_project_404(self, client):
        c, _ = client
        assert c.get("/api/projects/99999").status_code == 404

    def test_update_project(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.put(f"/api/projects/{pid}", json={"name": "Updated", "image_url": "data:image/png;base64,AAAA"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Updated"
        assert resp.json()["image_url"].startswith("data:image/png")

        resp = c.put(f"/api/projects/{pid}", json={"clear_image": True})
        assert resp.json()["image_url"] is None
        assert resp.json()["name"] == "Updated"

    def test_delete_project(self, seeded_client):
        c, TestSession, pid = seeded_client
        item_id = _first_item_id(c, pid)
        c.put(f"/api/items/{item_id}/detail", json={"attend_fa": 2})
        resp = c.delete(f"/api/projects/{pid}")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert c.get(f"/api/projects/{pid}").status_code == 404
        session = TestSession()
        assert session.query(ItemDetail).count() == 0
        session.close()


class TestCategoryEndpoints:
    def test_list_categories(self, client):
        c, _ = client
        names = [cat["name"] for cat in c.get("/api/categories").json()]
        assert names == ["GOAL SETTING", "PROGRAMMING", "CO-PRODUCTION", "IMPLEMENTATION"]

    def test_create_and_duplicate(self, client):
        c, _ = client
        resp = c.post("/api/categories", json={"name": "monitoring"})
        assert resp.status_code == 201
        assert resp.json()["name"] == "MONITORING"
        assert "MONITORING" in [cat["name"] for cat in c.get("/api/categories").json()]
        assert c.post("/api/categories", json={"name": "Monitoring"}).status_code == 409

    def test_delete_category_for_project(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.delete(f"/api/projects/{pid}/categories/1")
        assert resp.status_code == 200
        assert resp.json()["category_deleted"] is True
        remaining = c.get(f"/api/projects/{pid}").json()["items"]
        assert all(i["category_id"] != 1 for i in remaining)

    def test_delete_missing_category(self, seeded_client):
        c, _, pid = seeded_client
        assert c.delete(f"/api/projects/{pid}/categories/999").status_code == 404


class TestItemEndpoints:
    def test_add_and_delete_item(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.post(f"/api/projects/{pid}/items",
                      json={"category_id": 2, "item_type": "digital", "title": "Online poll"})
        assert resp.status_code == 201
        item = resp.json()
        assert item["category"] == "PROGRAMMING"
        assert item["complete"] is False
        assert c.delete(f"/api/projects/{pid}/items/{item['id']}").status_code == 200
        assert c.delete(f"/api/projects/{pid}/items/{item['id']}").status_code == 404

    def test_add_item_bad_type(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.post(f"/api/projects/{pid}/items", json={"category_id": 1, "item_type": "hybrid", "title": "x"})
        assert resp.status_code == 422

    def test_add_item_unknown_category(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.post(f"/api/projects/{pid}/items", json={"category_id": 999, "title": "x"})
        assert resp.status_code == 404

    def test_toggle(self, seeded_client):
        c, _, pid = seeded_client
        item_id = _first_item_id(c, pid)
        resp = c.post(f"/api/projects/{pid}/items/{item_id}/toggle")
        assert resp.status_code == 200
        assert resp.json()["is_completed"] is True
        resp = c.post(f"/api/projects/{pid}/items/{item_id}/toggle")
        assert resp.json()["is_completed"] is False

    def test_detail_roundtrip(self, seeded_client):
        c, _, pid = seeded_client
        item_id = _first_item_id(c, pid)
        assert c.get(f"/api/items/{item_id}/detail").status_code == 404

        body = {
            "activity": "Street survey", "attend_fa": 10, "involve_fi": 10,
            "data_collected_by": "Field team", "collection_date": "2024-06-01",
        }
        resp = c.put(f"/api/items/{item_id}/detail", json=body)
        assert resp.status_code == 200
        data = resp.json()
        assert data["calculated_pi"] == pytest.approx(0.4)
        assert data["pi_percent"] == 40.0
        assert data["total_participation_n"] == 20

        assert c.get(f"/api/items/{item_id}/detail").json()["activity"] == "Street survey"
        item = next(i for i in c.get(f"/api/projects/{pid}").json()["items"] if i["id"] == item_id)
        assert item["complete"] is True

    def test_negative_count_rejected(self, seeded_client):
        c, _, pid = seeded_client
        item_id = _first_item_id(c, pid)
        resp = c.put(f"/api/items/{item_id}/detail", json={"attend_fa": -1})
        assert resp.status_code == 422

    def test_method_item_get_or_create(self, seeded_client):
        c, _, pid = seeded_client
        url = f"/api/projects/{pid}/stages/3/methods/1/c"
        first = c.post(url)
        assert first.status_code == 200
        assert first.json()["title"] == "(C) Focus Group Discussions"
        assert first.json()["stage_number"] == 3
        assert c.post(url).json()["id"] == first.json()["id"]

    def test_method_item_invalid(self, seeded_client):
        c, _, pid = seeded_client
        assert c.post(f"/api/projects/{pid}/stages/9/methods/1/A").status_code == 400
        assert c.post(f"/api/projects/{pid}/stages/1/methods/3/D").status_code == 400


class TestRollupEndpoints:
    def test_stages(self, seeded_client):
        c, _, pid = seeded_client
        item_id = c.post(f"/api/projects/{pid}/stages/2/methods/4/B").json()["id"]
        c.post(f"/api/projects/{pid}/items/{item_id}/toggle")
        stages = c.get(f"/api/projects/{pid}/stages").json()
        assert len(stages) == 6
        assert stages[1]["total"] == 1
        assert stages[1]["completion_rate"] == 100

    def test_stage_breakdown(self, seeded_client):
        c, _, pid = seeded_client
        item_id = c.post(f"/api/projects/{pid}/stages/5/methods/2/A").json()["id"]
        c.put(f"/api/items/{item_id}/detail", json={"empower_femp": 4})
        data = c.get(f"/api/projects/{pid}/stages/5").json()
        assert data["total_methods"] == 13
        charrettes = data["categories"][1]["methods"][0]
        assert charrettes["code"] == "2A"
        assert charrettes["avg_pi"] == 100.0
        assert charrettes["entries"][0]["empower_femp"] == 4

    def test_stage_breakdown_unknown(self, seeded_client):
        c, _, pid = seeded_client
        assert c.get(f"/api/projects/{pid}/stages/8").status_code == 404

    def test_category_summary(self, seeded_client):
        c, _, pid = seeded_client
        data = c.get(f"/api/projects/{pid}/categories/summary").json()
        assert sum(row["total"] for row in data) == TEMPLATE_SIZE

    def test_analytics(self, seeded_client):
        c, _, pid = seeded_client
        item_id = _first_item_id(c, pid)
        c.put(f"/api/items/{item_id}/detail", json={"consult_fc": 5})
        data = c.get(f"/api/projects/{pid}/analytics").json()
        assert data["coverage"] == {"with_pi_data": 1, "without_pi_data": TEMPLATE_SIZE - 1}
        assert data["average_pi"] == pytest.approx(40.0)
        assert len(data["methods"]) == 6

    def test_export(self, seeded_client):
        c, _, pid = seeded_client
        resp = c.get(f"/api/projects/{pid}/export.xlsx")
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]
        wb = load_workbook(io.BytesIO(resp.content))
        assert wb.sheetnames == ["Checklist", "Stages"]
        assert wb["Checklist"].max_row == TEMPLATE_SIZE + 1


class TestFrameworkEndpoints:
    def test_framework(self, client):
        c, _ = client
        data = c.get("/api/framework").json()
        assert len(data["stages"]) == 6
        assert data["total_methods"] == 13
        assert data["pi_weights"]["empower_femp"] == 1.0

    def test_compute(self, client):
        c, _ = client
        resp = c.post("/api/pi/compute", json={"attend_fa": 1, "empower_femp": 1})
        assert resp.json() == {"total_participation_n": 2.0, "pi": pytest.approx(0.6), "pi_percent": 60.0}

    def test_compute_no_data(self, client):
        c, _ = client
        resp = c.post("/api/pi/compute", json={})
        assert resp.status_code == 200
        assert resp.json()["pi"] is None

    def test_compute_negative(self, client):
        c, _ = client
        assert c.post("/api/pi/compute", json={"consult_fc": -3}).status_code == 400

    def test_recalculate(self, seeded_client):
        c, TestSession, pid = seeded_client
        item_id = _first_item_id(c, pid)
        c.put(f"/api/items/{item_id}/detail", json={"attend_fa": 1})
        session = TestSession()
        detail = session.query(ItemDetail).first()
        detail.calculated_pi = 0.5
        session.commit()
        session.close()
        assert c.post("/api/admin/recalculate-pi").json() == {"updated": 1}
        assert c.get(f"/api/items/{item_id}/detail").json()["calculated_pi"] == pytest.approx(0.2)
