from __future__ import annotations

import asyncio
import dataclasses
import uuid

import pytest
from fastapi.testclient import TestClient

from cert_service.api import verification
from cert_service.services import registry
from tests.conftest import identity_headers

ADMIN = uuid.uuid4()


def _issued(client: TestClient, **overrides) -> dict:
    issuer = uuid.uuid4()
    headers = identity_headers(issuer, "issuer")
    body = {"course_name": "Intro to Security", "issue_date": "2026-01-15"}
    body.update(overrides)
    cert = client.post("/v1/certificates", json=body, headers=headers).json()
    client.post(f"/v1/certificates/{cert['id']}/issue", headers=headers)
    return cert


def test_verify_needs_no_identity(client: TestClient) -> None:
    cert = _issued(client)
    resp = client.get(f"/v1/verify/{cert['verification_code']}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["valid"] is True
    assert data["reason"] is None
    assert data["certificate"]["certificate_number"] == cert["certificate_number"]
    assert data["certificate"]["course_name"] == "Intro to Security"
    assert data["certificate"]["status"] == "issued"


def test_verify_unknown_code(client: TestClient) -> None:
    resp = client.get("/v1/verify/no-such-code")
    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "reason": "not_found", "certificate": None}


def test_verify_revoked(client: TestClient) -> None:
    cert = _issued(client)
    client.post(f"/v1/certificates/{cert['id']}/revoke", headers=identity_headers(ADMIN, "admin"))

    data = client.get(f"/v1/verify/{cert['verification_code']}").json()
    assert data["valid"] is False
    assert data["reason"] == "revoked"
    assert data["certificate"]["status"] == "revoked"


def test_verify_expired(client: TestClient) -> None:
    cert = _issued(client, issue_date="2020-01-01", expiration_date="2021-01-01")
    data = client.get(f"/v1/verify/{cert['verification_code']}").json()
    assert data["valid"] is False
    assert data["reason"] == "expired"
    assert data["certificate"]["status"] == "expired"


def test_verify_does_not_leak_internal_ids(client: TestClient) -> None:
    cert = _issued(client)
    data = client.get(f"/v1/verify/{cert['verification_code']}").json()
    assert "id" not in data["certificate"]
    assert "issuer_id" not in data["certificate"]
    assert "verification_code" not in data["certificate"]


def test_verify_reports_unavailable_on_timeout(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def slow_verify(code: str):
        await asyncio.sleep(1)

    monkeypatch.setattr(registry.certificate_service, "verify", slow_verify)
    monkeypatch.setattr(
        verification,
        "SETTINGS",
        dataclasses.replace(verification.SETTINGS, read_timeout_seconds=0.01),
    )

    resp = client.get("/v1/verify/anything")
    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "reason": "unavailable", "certificate": None}
