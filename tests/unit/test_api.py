"""
API tests -- FastAPI endpoints via TestClient (no live server needed).
"""
import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.engine.service import get_query_engine

WINDOW = {"start_date": "2025-06-01", "end_date": "2025-06-30"}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_query_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── /ask ─────────────────────────────────────────────────

def test_ask_fan_out(client):
    resp = client.post("/ask", json={
        "question": "average cost for drawer systems and cargoglides by origin state", **WINDOW,
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["success"] is True
    assert data["is_multi_dimension"] is True
    assert [r["primaryGroup"] for r in data["rows"]] == ["Drawer System", "CargoGlide"]
    assert data["secondary_groups"] == ["CA", "TX"]
    assert data["chart"]["chart_type"] == "grouped_bar"
    assert data["date_range"] == {"start": "2025-06-01", "end": "2025-06-30"}
    assert len(data["requests"]) == 2
    assert data["profile"]["row_count"] == 2


def test_ask_selection_required(client):
    resp = client.post("/ask", json={"question": "average weight", **WINDOW})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "selection_required"
    assert data["success"] is False
    assert data["chart"] is None
    assert data["unresolved"] == ["group_by:"]


def test_ask_scope(client):
    resp = client.post("/ask", json={"question": "total cost by state", "customer_id": 2, **WINDOW})
    assert resp.json()["rows"] == [{"label": "TX", "value": 340.0}]


def test_ask_validation_error(client):
    assert client.post("/ask", json={"question": "hi"}).status_code == 422
    assert client.post("/ask", json={"question": "cost by state", "mode": "gemini"}).status_code == 422


def test_ask_engine_error_is_500(client, monkeypatch):
    import src.engine.llm_client as llm_client
    from src.core.config import Settings

    monkeypatch.setattr(llm_client, "get_settings", lambda: Settings(openai_api_key=""))
    resp = client.post("/ask", json={"question": "cost by state", "mode": "openai", **WINDOW})
    assert resp.status_code == 500
    assert "OPENAI_API_KEY" in resp.json()["detail"]


# ── /ask/parse ───────────────────────────────────────────

def test_parse_dry_run(client, backend):
    resp = client.post("/ask/parse", json={"question": "total cost for drawers and cargoglides by carrier"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["parsed"]["terms"] == ["Drawer", "CargoGlide"]
    assert data["needs_selection"] is False
    assert [r["term"] for r in data["requests"]] == ["Drawer", "CargoGlide"]
    assert data["requests"][0]["group_by_fields"] == ["description", "carrier_name"]
    assert backend.calls == []


# ── /ask/manual ──────────────────────────────────────────

def test_manual(client):
    resp = client.post("/ask/manual", json={
        "selection": {"group_by": "carrier", "metric": "retail", "aggregation": "sum"}, **WINDOW,
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert {r["label"] for r in data["rows"]} == {"Saia", "Estes Express"}


# ── Catalog ──────────────────────────────────────────────

def test_catalog_hides_restricted_columns(client):
    ids = {c["id"] for c in client.get("/catalog").json()["columns"]}
    assert "retail" in ids
    assert "cost" not in ids
    admin_ids = {c["id"] for c in client.get("/catalog", params={"is_admin": True}).json()["columns"]}
    assert "cost" in admin_ids


def test_catalog_metrics_and_terms(client):
    data = client.get("/catalog").json()
    assert "Drawer System" in data["terms"]
    assert {m["name"] for m in data["metrics"]} >= {"cost", "shipments"}
    assert data["tables"]["item"] == "shipment_item"


def test_suggest(client):
    data = client.get("/catalog/suggest", params={"q": "carier"}).json()
    assert data["suggestions"][0]["id"] == "carrier_name"
    assert client.get("/catalog/suggest").json()["suggestions"] == []


# ── Cache admin ──────────────────────────────────────────

def test_cache_endpoints(client):
    stats = client.get("/ask/cache/stats").json()
    assert {"size", "hits", "misses", "hit_rate"} <= set(stats)
    assert "cleared" in client.post("/ask/cache/clear").json()
