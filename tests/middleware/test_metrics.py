"""Prometheus metrics middleware and domain counters.

Counters in the default registry cannot be reset between tests, so every
assertion compares a value before and after the action.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import identity_headers


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_endpoint_label_uses_route_template(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/v1/verify/{code}", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get(f"/v1/verify/{uuid.uuid4()}")
    client.get(f"/v1/verify/{uuid.uuid4()}")
    assert _get_sample("http_requests_total", labels) - before == 2


def test_verification_outcomes_are_counted(client: TestClient) -> None:
    before = _get_sample("certificate_verifications_total", {"result": "not_found"})
    client.get("/v1/verify/unknown-code")
    assert _get_sample("certificate_verifications_total", {"result": "not_found"}) - before == 1


def test_issuance_counter_increments(client: TestClient) -> None:
    issuer = uuid.uuid4()
    headers = identity_headers(issuer, "issuer")
    cert = client.post(
        "/v1/certificates",
        json={"course_name": "Intro to Security", "issue_date": "2026-01-15"},
        headers=headers,
    ).json()

    before = _get_sample("certificates_issued_total", {"persisted": "yes"})
    client.post(f"/v1/certificates/{cert['id']}/issue", headers=headers)
    assert _get_sample("certificates_issued_total", {"persisted": "yes"}) - before == 1


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "http_request_duration_seconds" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
