"""HTTP header processing for the SpecGate proxy.

Implements the header rules for upstream-bound requests and client-facing
responses:

  - build_upstream_headers(): strips hop-by-hop headers, forwards everything
    else unchanged (Host and Content-Length are recomputed by httpx).

  - build_client_response_headers(): strips hop-by-hop headers from the
    (possibly rewritten) upstream response, forwards everything else
    unchanged, including repeated headers such as Set-Cookie and the
    upstream Content-Length of a streamed body.

RFC 7230 §6.1 — hop-by-hop headers MUST NOT be forwarded by intermediaries.
"""

from __future__ import annotations

from typing import Iterable

# ─── Constants ────────────────────────────────────────────────────────────────

# Hop-by-hop headers MUST be stripped before forwarding (RFC 7230 §6.1).
# host is derived from the upstream URL; the client-facing host is never forwarded.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
    }
)

# httpx recomputes the length of the forwarded request body.
RECOMPUTED_REQUEST_HEADERS: frozenset[str] = frozenset({"content-length"})

# ─── Public API ───────────────────────────────────────────────────────────────


def _connection_tokens(headers: list[tuple[str, str]]) -> set[str]:
    """Header names listed in Connection are hop-by-hop for this message too."""
    tokens: set[str] = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(token.strip().lower() for token in value.split(",") if token.strip())
    return tokens


def _strip_hop_by_hop(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    pairs = list(headers)
    extra = _connection_tokens(pairs)
    return [
        (name, value)
        for name, value in pairs
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in extra
    ]


def build_upstream_headers(
    request_headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Build the header list to send to the upstream API.

    Args:
        request_headers: (name, value) pairs from the incoming request.
                         Typically ``request.headers.items()``.

    Returns:
        Header pairs in their original order, hop-by-hop headers and
        Content-Length removed.
    """
    return [
        (name, value)
        for name, value in _strip_hop_by_hop(request_headers)
        if name.lower() not in RECOMPUTED_REQUEST_HEADERS
    ]


def build_client_response_headers(
    response_headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Build the header list returned to the client.

    Args:
        response_headers: (name, value) pairs of the intercepted response,
                          typically ``httpx.Headers.multi_items()``.

    Returns:
        Header pairs in their original order, hop-by-hop headers removed.
    """
    return _strip_hop_by_hop(response_headers)
