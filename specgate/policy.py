"""Mode resolution and enforcement policy.

``parse_mode()`` turns the configured mode string into a ``Mode``;
``enforce()`` applies the outcome table to an intercepted response:

  | Outcome               | strict             | warn               | report             |
  |-----------------------|--------------------|--------------------|--------------------|
  | Passed                | pass through       | pass through       | pass through       |
  | Skipped(undocumented) | WARN, pass through | WARN, pass through | WARN, pass through |
  | Skipped(other)        | pass through       | pass through       | pass through       |
  | Failed(detail)        | ERROR, rewrite 500 | ERROR, pass through| ERROR, pass through|

The rewrite is the only path in SpecGate that changes what the client
receives, and it is reachable only from a Failed outcome in strict mode.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import httpx

from specgate.constants import VALIDATION_FAILED_LABEL
from specgate.errors import InvalidModeError
from specgate.models.exchange import InterceptedResponse
from specgate.models.outcome import SkipReason, ValidationOutcome


class Mode(str, Enum):
    STRICT = "strict"
    WARN = "warn"
    REPORT = "report"


class Action(str, Enum):
    """What enforcement did to the response."""

    PASS_THROUGH = "pass_through"
    REWRITE = "rewrite"


# Headers that describe the original upstream body and are wrong for the
# synthetic error body.
STALE_BODY_HEADERS: tuple[str, ...] = (
    "Content-Encoding",
    "Transfer-Encoding",
    "ETag",
    "Last-Modified",
)


def parse_mode(mode: str) -> Mode:
    """Case-insensitive match against strict, warn, report.

    Raises:
        InvalidModeError: any other value, including the empty string.
    """
    try:
        return Mode(mode.lower())
    except (ValueError, AttributeError):
        raise InvalidModeError(mode) from None


def build_failure_body(detail: str) -> bytes:
    """Compact JSON body for a strict-mode rewrite.

    ``field 'id' required`` becomes
    ``{"error":"Response validation failed","details":"field 'id' required"}``.
    """
    return json.dumps(
        {"error": VALIDATION_FAILED_LABEL, "details": detail},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def rewrite_as_failure(response: InterceptedResponse, detail: str) -> None:
    """Turn ``response`` into a 500 validation-failure response.

    The replacement header set is built completely before anything on the
    response is touched, then status, headers and body are swapped together.
    """
    body = build_failure_body(detail)

    headers = httpx.Headers(response.headers)
    for name in STALE_BODY_HEADERS:
        if name in headers:
            del headers[name]
    headers["Content-Type"] = "application/json"
    headers["Content-Length"] = str(len(body))

    response.status_code = 500
    response.headers = headers
    response.set_body(body)


def enforce(
    outcome: ValidationOutcome,
    mode: Mode,
    response: InterceptedResponse,
    logger: Any,
) -> Action:
    """Apply the policy for ``outcome`` under ``mode`` to ``response``."""
    request = response.request

    if outcome.is_passed:
        return Action.PASS_THROUGH

    if outcome.is_skipped:
        if outcome.reason is SkipReason.UNDOCUMENTED:
            logger.warning(
                "Undocumented endpoint",
                method=request.method,
                path=request.path,
            )
        # TODO: record a skip metric in report mode once a metrics sink exists.
        return Action.PASS_THROUGH

    logger.error(
        "Response validation failed",
        error=outcome.detail,
        method=request.method,
        path=request.path,
        status=response.status_code,
    )

    if mode is Mode.STRICT:
        rewrite_as_failure(response, outcome.detail or "")
        return Action.REWRITE

    return Action.PASS_THROUGH
