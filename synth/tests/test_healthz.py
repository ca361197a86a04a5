from fastapi.testclient import TestClient

import synth.api.health as health_api
from synth.main import app

client = TestClient(app)


def test_healthz_always_ok():
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_database():
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "db": "ok"}


def test_readyz_handles_db_down(monkeypatch):
    monkeypatch.setattr(health_api, "check_connection", lambda: False)

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json() == {"status": "degraded", "db": "unavailable"}
