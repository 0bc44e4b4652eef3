"""Validation outcome contract for the interception pipeline.

Every response that passes through the hook ends in exactly one outcome:

  - Passed          — validated against the contract, no violations.
  - Failed(detail)  — validated, ``detail`` describes every violation.
  - Skipped(reason) — not validated; ``reason`` says why, ``size`` is set for
                      size skips (declared or actually-read byte count).

Skipped outcomes never change what the client receives, in any mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OutcomeKind(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    NOT_JSON = "not JSON"
    TOO_LARGE = "too large"
    UNDOCUMENTED = "undocumented"
    UNSUPPORTED_ENCODING = "unsupported encoding"
    # HEAD requests and 1xx/204/304 responses never carry a body.
    NO_BODY = "no body"


@dataclass(frozen=True)
class ValidationOutcome:
    kind: OutcomeKind
    detail: Optional[str] = None
    reason: Optional[SkipReason] = None
    size: Optional[int] = None

    @classmethod
    def passed(cls) -> "ValidationOutcome":
        return cls(kind=OutcomeKind.PASSED)

    @classmethod
    def failed(cls, detail: str) -> "ValidationOutcome":
        return cls(kind=OutcomeKind.FAILED, detail=detail)

    @classmethod
    def skipped(
        cls, reason: SkipReason, size: Optional[int] = None
    ) -> "ValidationOutcome":
        return cls(kind=OutcomeKind.SKIPPED, reason=reason, size=size)

    @property
    def is_passed(self) -> bool:
        return self.kind is OutcomeKind.PASSED

    @property
    def is_failed(self) -> bool:
        return self.kind is OutcomeKind.FAILED

    @property
    def is_skipped(self) -> bool:
        return self.kind is OutcomeKind.SKIPPED
