"""Request correlation for certificate traffic.

Sets the logging context for the duration of a request: the request id
(X-Request-ID from the gateway, else a fresh UUID) and the calling user
(X-User-Id, when it is a well-formed UUID).  The id is echoed back in
X-Request-ID.

One completion line is logged per request.  It names the certificate the
route addressed, so a download or issuance can be traced from the access
log alone.  Health checks and metric scrapes log at DEBUG; server errors
at WARNING.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cert_service.core.logging import request_id_var, user_id_var

logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/health", "/metrics"})


def _caller(request: Request) -> str | None:
    raw = request.headers.get("x-user-id")
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return None


def _certificate_id(request: Request) -> str | None:
    # Filled in by the router once the route has matched.
    value = request.scope.get("path_params", {}).get("certificate_id")
    return str(value) if value is not None else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        user_id = _caller(request)
        req_token = request_id_var.set(req_id)
        user_token = user_id_var.set(user_id)

        try:
            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)

            if request.url.path in QUIET_PATHS:
                level = logging.DEBUG
            elif response.status_code >= 500:
                level = logging.WARNING
            else:
                level = logging.INFO
            logger.log(
                level,
                "%s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "request_id": req_id,
                    "user_id": user_id,
                    "certificate_id": _certificate_id(request),
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        finally:
            request_id_var.reset(req_token)
            user_id_var.reset(user_token)

        response.headers["X-Request-ID"] = req_id
        return response
