"""Structured logging utilities for SpecGate.

Two layers live here:

  - ``ColoredHandler`` — the leveled, attributed console handler that every
    interception stage reports through. It is a frozen value: ``with_attrs()``
    returns a *new* handler, so a logger scoped to one response never leaks
    attributes into the base logger it was derived from. The handler doubles
    as the final structlog processor, which is how ``new_logger()`` turns it
    into a regular structlog bound logger.

  - ``configure_logging()`` / ``get_logger()`` — process-wide structlog setup
    for module-level loggers (startup, config and contract loading).

Line format (one line per emission)::

    <gray>15:04:05 <color>WARN<reset> Response too large, skipping validation size=20971520

Call-site attributes are rendered first, then the attributes bound on the
handler, each as ``key=value``.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import sys
import time
from dataclasses import dataclass
from typing import IO, Any, Iterable, Mapping, Optional, Union

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


class Level(enum.IntEnum):
    """Log levels, ordered. Values match the stdlib ``logging`` numbers."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR

    @classmethod
    def parse(cls, name: str) -> "Level":
        """Parse a level name (``debug``, ``INFO``, ``warning`` ...).

        Raises:
            ValueError: unknown level name.
        """
        normalized = name.strip().upper()
        if normalized == "WARNING":
            normalized = "WARN"
        try:
            return cls[normalized]
        except KeyError:
            raise ValueError(
                f"invalid log level '{name}': must be one of debug, info, warn, error"
            ) from None


# structlog method name → level. ``critical`` has no level of its own here.
_METHOD_LEVELS: dict[str, Level] = {
    "debug": Level.DEBUG,
    "info": Level.INFO,
    "msg": Level.INFO,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "error": Level.ERROR,
    "exception": Level.ERROR,
    "critical": Level.ERROR,
    "fatal": Level.ERROR,
}

# ─── ANSI colors ──────────────────────────────────────────────────────────────

COLOR_RESET = "\033[0m"
COLOR_RED = "\033[31m"
COLOR_YELLOW = "\033[33m"
COLOR_GREEN = "\033[32m"
COLOR_BLUE = "\033[34m"
COLOR_GRAY = "\033[90m"

LEVEL_COLORS: dict[Level, str] = {
    Level.DEBUG: COLOR_BLUE,
    Level.INFO: COLOR_GREEN,
    Level.WARN: COLOR_YELLOW,
    Level.ERROR: COLOR_RED,
}

Attrs = tuple[tuple[str, Any], ...]


@dataclass(frozen=True)
class LogRecord:
    """A single emission: rendered once, never stored."""

    timestamp: float
    level: Level
    message: str
    attrs: Attrs = ()


def _as_pairs(attrs: Union[Mapping[str, Any], Iterable[tuple[str, Any]]]) -> Attrs:
    if isinstance(attrs, Mapping):
        return tuple(attrs.items())
    return tuple(attrs)


@dataclass(frozen=True)
class ColoredHandler:
    """Colored console handler with immutable attribute binding.

    Instances are safe to share between concurrent requests: nothing on the
    handler ever changes after construction. Writes go straight to ``output``;
    interleaving between concurrent writers is tolerated.
    """

    # None writes to whatever sys.stderr is at the time of each emission.
    output: Optional[IO[str]] = None
    level: Level = Level.INFO
    attrs: Attrs = ()

    def enabled(self, level: Level) -> bool:
        return level >= self.level

    def render(self, record: LogRecord) -> str:
        """Render ``record`` as one line (without the trailing newline)."""
        color = LEVEL_COLORS.get(record.level, COLOR_RESET)
        parts = [
            COLOR_GRAY,
            time.strftime("%H:%M:%S", time.localtime(record.timestamp)),
            " ",
            color,
            record.level.name,
            COLOR_RESET,
            " ",
            record.message,
        ]
        for key, value in record.attrs:
            parts.append(f" {key}={value}")
        for key, value in self.attrs:
            parts.append(f" {key}={value}")
        return "".join(parts)

    def with_attrs(
        self, attrs: Union[Mapping[str, Any], Iterable[tuple[str, Any]]]
    ) -> "ColoredHandler":
        """Return a new handler carrying the existing attrs followed by ``attrs``."""
        return dataclasses.replace(self, attrs=self.attrs + _as_pairs(attrs))

    def with_group(self, name: str) -> "ColoredHandler":
        # Grouping is not supported; attributes stay flat.
        return self

    # ── structlog processor protocol ─────────────────────────────────────────

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> str:
        level = _METHOD_LEVELS.get(method_name, Level.INFO)
        if not self.enabled(level):
            raise structlog.DropEvent
        message = str(event_dict.pop("event", ""))
        record = LogRecord(
            timestamp=time.time(),
            level=level,
            message=message,
            attrs=tuple(event_dict.items()),
        )
        return self.render(record)


def stderr_logger_factory(*args: Any) -> structlog.PrintLogger:
    """structlog logger factory bound to the *current* ``sys.stderr``.

    Loggers are never cached, so a replaced ``sys.stderr`` (test capture,
    daemonisation) is picked up on the next emission instead of writing to
    a stream that has since been closed.
    """
    return structlog.PrintLogger(file=sys.stderr)


def new_logger(handler: ColoredHandler) -> Any:
    """Wrap ``handler`` in a structlog bound logger.

    The returned logger filters below ``handler.level`` before any processing
    happens and prints through structlog's ``PrintLogger``, which serialises
    writes to the handler's output stream.

    To scope a logger (e.g. to one response), derive a new handler with
    ``handler.with_attrs(...)`` and wrap that; the base logger is untouched.
    """
    return structlog.wrap_logger(
        structlog.PrintLogger(file=handler.output) if handler.output is not None else None,
        processors=[handler],
        wrapper_class=structlog.make_filtering_bound_logger(int(handler.level)),
        context_class=dict,
        logger_factory_args=(),
        cache_logger_on_first_use=False,
    )


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
) -> None:
    """Configure process-wide structlog for module-level loggers.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARN/WARNING, ERROR).
        json_output: If True, output JSON lines. If False, use ColoredHandler.
    """
    level = Level.parse(log_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.extend([
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.append(ColoredHandler(level=level))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(int(level)),
        context_class=dict,
        logger_factory=stderr_logger_factory,
        # Reconfigured by the lifespan once the config is loaded.
        cache_logger_on_first_use=False,
    )


def get_logger(name: Optional[str] = None) -> Any:
    """Get a module-level logger configured by ``configure_logging()``."""
    return structlog.get_logger(name)


# Sensible defaults until main.py reconfigures from the loaded config.
configure_logging()
