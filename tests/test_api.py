# tests/test_api.py
import pytest
from fastapi.testclient import TestClient

from conftest import FakeSource
from liveness import crud
from liveness.api import routes
from liveness.db import SessionLocal, configure_engine, init_db
from liveness.main import app
from liveness.source import OwnerRef
from liveness.retry import NotPresent

DEALER = OwnerRef(id="1", name="Garage One", source_url="https://example.test/dealer/1")


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr("liveness.db._engine", None)
    for key in ("RECONCILE_MODE", "LOG_FILE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RETRY_DELAY_MS", "0")
    monkeypatch.setenv("INTER_BATCH_DELAY_MS", "0")
    engine = configure_engine(f"sqlite:///{tmp_path / 'api.db'}")
    init_db(engine)
    yield TestClient(app)
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def seeded(client):
    with SessionLocal() as db:
        crud.upsert_listing(db, {"external_id": "A", "owner_id": "1", "price": 5000, "location": "Brussels"})
        crud.upsert_listing(db, {"external_id": "B", "owner_id": "1", "price": 15000, "location": "Ghent"})
    return client


def use_source(source):
    app.dependency_overrides[routes.get_source] = lambda: source


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_list_and_filter_listings(seeded):
    r = seeded.get("/listings")
    assert r.status_code == 200
    assert [item["external_id"] for item in r.json()] == ["A", "B"]
    r = seeded.get("/listings", params={"min_price": 10000})
    assert [item["external_id"] for item in r.json()] == ["B"]


def test_get_listing(seeded):
    assert seeded.get("/listings/A").json()["location"] == "Brussels"
    assert seeded.get("/listings/nope").status_code == 404


def test_post_session_runs_a_pass(seeded):
    source = FakeSource(owners=[DEALER], listings={"1": ["A"]}, details={"B": [NotPresent("HTTP 404")]})
    use_source(source)

    r = seeded.post("/sessions", params={"outcomes": "true"})

    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "COMPLETE"
    assert body["mode"] == "crawl"
    assert body["summary"]["success"] == 1
    assert body["summary"]["deactivated"] == 1
    assert {o["external_id"]: o["status"] for o in body["outcomes"]} == {"A": "success", "B": "deactivated"}
    assert seeded.get("/listings/B").json()["active"] is False

    sessions = seeded.get("/sessions").json()
    assert [s["id"] for s in sessions] == [body["session"]["id"]]

    inventory = seeded.get("/owners/1/inventory").json()
    assert inventory["count"] == 1
    assert inventory["session_id"] == body["session"]["id"]
    assert seeded.get("/owners/2/inventory").status_code == 404


def test_post_session_reports_failed_pass(seeded):
    use_source(FakeSource(owners_error=RuntimeError("owners API down")))
    r = seeded.post("/sessions")
    assert r.status_code == 200
    assert r.json()["state"] == "FAILED"
    assert r.json()["outcomes"] == []


def test_post_session_rejects_unknown_mode(client):
    use_source(FakeSource())
    r = client.post("/sessions", params={"mode": "purge"})
    assert r.status_code == 422
