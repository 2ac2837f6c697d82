"""JSON log output: the aggregation pipeline filters on these keys."""

from __future__ import annotations

import json
import logging
import sys

from cert_service.core.logging import _ContainerFormatter, _JsonFormatter


def _record(msg: str, *, level: int = logging.INFO, args: tuple = (), exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="cert_service.services.certificate_service",
        level=level,
        pathname="certificate_service.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


def test_json_formatter_produces_valid_json() -> None:
    output = _JsonFormatter().format(_record("Issued certificate %s", args=("CERT-0A1B2C3D",)))
    parsed = json.loads(output)
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "cert_service.services.certificate_service"
    assert parsed["message"] == "Issued certificate CERT-0A1B2C3D"
    assert "timestamp" in parsed


def test_json_formatter_lifts_request_and_domain_fields() -> None:
    record = _record("Issued certificate")
    record.request_id = "abc-123"  # type: ignore[attr-defined]
    record.method = "POST"  # type: ignore[attr-defined]
    record.duration_ms = 12.5  # type: ignore[attr-defined]
    record.certificate_id = "7f0c"  # type: ignore[attr-defined]
    record.artifact_id = "file-1"  # type: ignore[attr-defined]
    record.owner_id = "42"  # type: ignore[attr-defined]

    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "abc-123"
    assert parsed["method"] == "POST"
    assert parsed["duration_ms"] == 12.5
    assert parsed["certificate_id"] == "7f0c"
    assert parsed["artifact_id"] == "file-1"
    assert parsed["owner_id"] == "42"


def test_json_formatter_skips_unset_fields() -> None:
    parsed = json.loads(_JsonFormatter().format(_record("plain")))
    assert "certificate_id" not in parsed
    assert "artifact_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("upload rejected")
    except ValueError:
        output = _JsonFormatter().format(
            _record("Something failed", level=logging.ERROR, exc_info=sys.exc_info())
        )

    parsed = json.loads(output)
    assert "ValueError: upload rejected" in parsed["exception"]


def test_container_formatter_is_plain_text() -> None:
    output = _ContainerFormatter().format(_record("server started"))
    assert "INFO" in output
    assert "cert_service.services.certificate_service" in output
    assert "server started" in output
    try:
        json.loads(output)
        raise AssertionError("Container format should not be valid JSON")
    except json.JSONDecodeError:
        pass
