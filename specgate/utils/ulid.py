"""ULID generation for SpecGate.

Every intercepted response gets a ULID ``request_id`` bound to the logger for
that response cycle, so all log lines of one cycle can be correlated. It is
also returned to the client as ``X-SpecGate-Request-ID`` on gateway errors.

Uses the ``python-ulid`` library — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: Crockford Base32, charset ``[0-9A-HJKMNP-TV-Z]``, exactly 26 chars.
    """
    return str(ULID())
