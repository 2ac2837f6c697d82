"""Application metrics (Prometheus client).

Single inventory of everything the service measures.  Modules import the
metric they own and increment it at the point of action; /metrics
exposes the lot.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Certificate metrics
# ---------------------------------------------------------------------------

CERTIFICATES_ISSUED = Counter(
    "certificates_issued_total",
    "Certificates moved to issued, by whether an artifact was persisted",
    ["persisted"],  # "yes" or "no" (degraded mode or upload failure)
)

RENDERS = Counter(
    "certificate_renders_total",
    "Rendered certificate documents by strategy",
    ["strategy"],  # "template" or "fallback"
)

RENDER_DURATION = Histogram(
    "certificate_render_duration_seconds",
    "Time spent rendering one certificate document",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

SIGNING_OUTCOMES = Counter(
    "document_signing_total",
    "Signing attempts by outcome",
    ["result"],  # "signed", "no_credential", "error"
)

ARTIFACT_OPERATIONS = Counter(
    "artifact_store_operations_total",
    "Artifact store calls by operation and result",
    ["operation", "result"],  # upload|exists|download|delete x ok|miss|error
)

VERIFICATIONS = Counter(
    "certificate_verifications_total",
    "Public verification lookups by result",
    ["result"],  # "valid", "not_found", "revoked", "expired", "unavailable"
)
