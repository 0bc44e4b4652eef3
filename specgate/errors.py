"""Exception taxonomy for SpecGate.

  SpecGateError
  ├── ConfigError               bad mode, bad upstream URL, unreadable contract
  │   ├── InvalidModeError
  │   └── ContractError
  ├── TransportError            upstream unreachable / body read failure → 502
  ├── RouteNotFoundError        typed "undocumented endpoint" sentinel
  ├── ResolverError             resolver malfunction (not "undocumented")
  ├── ResponseValidationError   contract violation, carries ``detail``
  └── ValidationCancelled       client went away / deadline elapsed

Only ``ResponseValidationError`` in strict mode may change what the client
receives; every other failure inside the interception hook is fail-open.
"""

from __future__ import annotations


class SpecGateError(Exception):
    """Base class for all SpecGate errors."""


class ConfigError(SpecGateError):
    """Invalid configuration detected at construction time. Fatal."""


class InvalidModeError(ConfigError, ValueError):
    """Mode string is not one of strict, warn, report."""

    def __init__(self, mode: str) -> None:
        self.mode = mode
        super().__init__(
            f"invalid mode '{mode}': must be one of 'strict', 'warn', or 'report'"
        )


class ContractError(ConfigError):
    """The API contract document could not be loaded or is malformed."""


class TransportError(SpecGateError):
    """Upstream I/O failed (connect, reset, truncated body, read timeout)."""


class RouteNotFoundError(SpecGateError):
    """The request does not match any documented operation."""


class ResolverError(SpecGateError):
    """The operation resolver failed for a reason other than "not documented"."""


class ResponseValidationError(SpecGateError):
    """The response violates the contract.

    ``detail`` is the human-readable description of every violation found.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationCancelled(SpecGateError):
    """Validation was abandoned before it finished."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
