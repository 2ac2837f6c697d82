"""Request correlation: X-Request-ID round trip and the completion log line."""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from cert_service.core.logging import RequestContextFilter, request_id_var, user_id_var
from tests.conftest import identity_headers, seed_person

MIDDLEWARE_LOGGER = "cert_service.middleware.request_context"


def _completion_records(caplog: pytest.LogCaptureFixture, path: str) -> list[logging.LogRecord]:
    return [
        r for r in caplog.records if r.name == MIDDLEWARE_LOGGER and getattr(r, "path", None) == path
    ]


def test_request_id_generated_or_echoed(client: TestClient) -> None:
    generated = client.get("/health").headers.get("x-request-id")
    assert generated is not None
    uuid.UUID(generated)

    resp = client.get("/health", headers={"X-Request-ID": "gateway-req-0042"})
    assert resp.headers.get("x-request-id") == "gateway-req-0042"


def test_request_id_present_on_rejected_requests(client: TestClient) -> None:
    resp = client.get("/v1/certificates/mine")  # no identity headers -> 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_completion_line_names_caller_and_certificate(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    issuer = seed_person("Ada Issuer")
    headers = identity_headers(issuer.id, "issuer")
    cert = client.post(
        "/v1/certificates",
        json={"course_name": "Intro to Security", "issue_date": "2026-01-15"},
        headers=headers,
    ).json()
    path = f"/v1/certificates/{cert['id']}"

    caplog.set_level(logging.INFO, logger=MIDDLEWARE_LOGGER)
    client.get(path, headers={**headers, "X-Request-ID": "req-7"})

    [record] = _completion_records(caplog, path)
    assert record.levelno == logging.INFO
    assert record.request_id == "req-7"
    assert record.user_id == str(issuer.id)
    assert record.certificate_id == cert["id"]
    assert record.status_code == 200


def test_completion_line_without_identity_or_certificate(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger=MIDDLEWARE_LOGGER)
    client.get("/v1/certificates/mine", headers={"X-User-Id": "not-a-uuid"})

    [record] = _completion_records(caplog, "/v1/certificates/mine")
    assert record.user_id is None
    assert record.certificate_id is None
    assert record.status_code == 401


def test_health_checks_log_below_info(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger=MIDDLEWARE_LOGGER)
    client.get("/health")
    assert _completion_records(caplog, "/health") == []


def test_context_filter_stamps_records_outside_the_middleware() -> None:
    record = logging.LogRecord("httpx", logging.INFO, "client.py", 1, "POST /token", (), None)
    req_token = request_id_var.set("req-9")
    user_token = user_id_var.set("4f1c")
    try:
        assert RequestContextFilter().filter(record) is True
    finally:
        request_id_var.reset(req_token)
        user_id_var.reset(user_token)
    assert record.request_id == "req-9"
    assert record.user_id == "4f1c"


def test_context_filter_keeps_explicit_values() -> None:
    record = logging.LogRecord("x", logging.INFO, "x.py", 1, "msg", (), None)
    record.user_id = "explicit"
    RequestContextFilter().filter(record)
    assert record.user_id == "explicit"
    assert record.request_id == "-"
