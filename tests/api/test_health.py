from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # In tests there is no DATABASE_URL, and the artifact store is in-memory
    assert data["checks"]["database"] == "not_configured"
    assert data["checks"]["artifact_store"] == "ok"


def test_ready_returns_200(client: TestClient) -> None:
    resp = client.get("/ready")
    assert resp.status_code == 200
