"""Proxy-generated HTTP response builders.

SpecGate only ever fabricates two kinds of response itself:

  build_upstream_unavailable_response():
      HTTP 502 — the upstream could not be reached, or its response body could
      not be read in full. This is a transport failure, NEVER reported as a
      validation failure.

  build_not_ready_response():
      HTTP 503 — a request arrived before the lifespan finished starting up.

The strict-mode validation rewrite is not built here: it mutates the
intercepted upstream response in place (see ``specgate.policy``).
"""

from __future__ import annotations

from fastapi.responses import JSONResponse


def build_upstream_unavailable_response(
    request_id: str,
    reason: str = "",
) -> JSONResponse:
    """Build the HTTP 502 response for upstream connectivity failures.

    Args:
        request_id: ULID for this request, for log correlation.
        reason:     Short reason for the failure (e.g. ``"ConnectError"``).
                    MUST NOT contain upstream response content.

    Returns:
        JSONResponse with status_code=502 and ``X-SpecGate-Request-ID``.
    """
    response = JSONResponse(
        status_code=502,
        content={
            "error": {
                "message": "Upstream API unavailable",
                "code": "upstream_unavailable",
                "detail": reason if reason else None,
            }
        },
    )
    response.headers["X-SpecGate-Request-ID"] = request_id
    return response


def build_not_ready_response() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "status": "starting",
                "message": "SpecGate is starting up. Contract loading...",
            }
        },
    )
