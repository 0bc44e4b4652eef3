"""Shared constants for SpecGate.

All size limits and numeric caps used across modules are defined here.
No magic numbers in other modules — import from here.
"""

# ─── Response Size Limits ────────────────────────────────────────────────────

# Ceiling for buffering an upstream response body for validation.
# Declared Content-Length above this → skipped without reading the body.
# Otherwise at most MAX_RESPONSE_BODY_BYTES + 1 bytes are read; more than the
# ceiling → skipped. Exactly the ceiling is still validated (strictly ">").
MAX_RESPONSE_BODY_BYTES: int = 10 * 1024 * 1024  # 10 MiB = 10,485,760 bytes

# ─── Upstream Connection Pool ────────────────────────────────────────────────

# Pool size matches uvicorn --limit-concurrency (see run.py).
POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 100
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds
PROXY_TIMEOUT: float = 30.0  # total upstream request timeout, seconds

# ─── Validation ──────────────────────────────────────────────────────────────

# How often the pipeline checks whether the client has gone away while a
# validation is in flight (seconds).
DISCONNECT_POLL_INTERVAL_S: float = 0.05

# Fixed label used in the body of a strict-mode rewrite.
VALIDATION_FAILED_LABEL: str = "Response validation failed"
