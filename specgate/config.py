"""Config loading for SpecGate.

Reads `.specgate/config.yaml` (or `~/.specgate/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. SPECGATE_CONFIG environment variable (if set)
  3. `.specgate/config.yaml` (working directory — for development)
  4. `~/.specgate/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file):
  SPECGATE_SPEC      — overrides spec
  SPECGATE_UPSTREAM  — overrides upstream
  SPECGATE_MODE      — overrides mode
  SPECGATE_PORT      — overrides proxy.port
  SPECGATE_LOG_LEVEL — overrides logging.level
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from specgate.constants import MAX_RESPONSE_BODY_BYTES
from specgate.errors import ConfigError, InvalidModeError
from specgate.policy import parse_mode
from specgate.proxy.engine import parse_upstream_url
from specgate.utils.logger import Level, get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# Default config search paths (SPECGATE_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".specgate/config.yaml",
    os.path.expanduser("~/.specgate/config.yaml"),
]

DEFAULT_SPEC = "openapi.yaml"
DEFAULT_UPSTREAM = "http://localhost:3000"
DEFAULT_MODE = "warn"


def _fail(msg: str) -> NoReturn:
    print(f"CONFIG ERROR: {msg}", file=sys.stderr)
    raise SystemExit(1)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ValidationConfig:
    """Response validation limits.

    max_body_bytes:  bodies above this are skipped, not validated.
    timeout_seconds: validations running longer are abandoned (None = no limit).
    """

    max_body_bytes: int = MAX_RESPONSE_BODY_BYTES
    timeout_seconds: Optional[float] = None


@dataclass
class ListenConfig:
    """Proxy binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class Config:
    """Root configuration object populated from .specgate/config.yaml.

    All fields have safe defaults — SpecGate can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    spec: str = DEFAULT_SPEC
    upstream: str = DEFAULT_UPSTREAM
    mode: str = DEFAULT_MODE
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    proxy: ListenConfig = field(default_factory=ListenConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict[str, Any], path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.
        Values are validated later by ``validate_config``.
        """
        validation_raw = raw.get("validation") or {}
        validation = ValidationConfig(
            max_body_bytes=validation_raw.get("max_body_bytes", MAX_RESPONSE_BODY_BYTES),
            timeout_seconds=validation_raw.get("timeout_seconds"),
        )

        proxy_raw = raw.get("proxy") or {}
        proxy = ListenConfig(
            host=proxy_raw.get("host", "127.0.0.1"),
            port=proxy_raw.get("port", 8080),
        )

        logging_raw = raw.get("logging") or {}
        logging_config = LoggingConfig(
            level=str(logging_raw.get("level", "INFO")),
            json=bool(logging_raw.get("json", False)),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            spec=str(raw.get("spec", DEFAULT_SPEC)),
            upstream=str(raw.get("upstream", DEFAULT_UPSTREAM)),
            mode=str(raw.get("mode", DEFAULT_MODE)),
            validation=validation,
            proxy=proxy,
            logging=logging_config,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate SpecGate configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases, then every value is checked.

    Raises:
        SystemExit(1): On YAML parse error, missing or unsupported ``version``,
                       invalid mode, port, upstream URL, log level or limits.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("SPECGATE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        validate_config(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"Failed to parse {found_path}: {exc}\n"
            "SpecGate refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    validate_config(config)

    if config.proxy.host == "0.0.0.0":
        logger.warning(
            "SpecGate is configured to bind on 0.0.0.0 (all interfaces). "
            "Recommended: use proxy.host: '127.0.0.1' for local-only access."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        mode=config.mode,
        upstream=config.upstream,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If SPECGATE_PORT is set but not a valid integer.
    """
    env_spec = os.environ.get("SPECGATE_SPEC")
    if env_spec:
        config.spec = env_spec

    env_upstream = os.environ.get("SPECGATE_UPSTREAM")
    if env_upstream:
        config.upstream = env_upstream

    env_mode = os.environ.get("SPECGATE_MODE")
    if env_mode:
        config.mode = env_mode

    env_level = os.environ.get("SPECGATE_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level

    env_port = os.environ.get("SPECGATE_PORT")
    if env_port is not None:
        try:
            config.proxy.port = int(env_port)
        except ValueError:
            _fail(f"SPECGATE_PORT environment variable is not a valid integer: '{env_port}'")


def validate_config(config: Config) -> None:
    """Check every value and normalise ``mode``; SystemExit(1) on the first error."""
    try:
        config.mode = parse_mode(config.mode).value
    except InvalidModeError as exc:
        _fail(str(exc))

    try:
        parse_upstream_url(config.upstream)
    except ConfigError as exc:
        _fail(str(exc))

    try:
        Level.parse(config.logging.level)
    except ValueError as exc:
        _fail(f"Invalid logging.level: {exc}")

    port = config.proxy.port
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        _fail(f"Invalid proxy.port: '{port}'. Must be an integer between 1 and 65535.")

    max_body = config.validation.max_body_bytes
    if isinstance(max_body, bool) or not isinstance(max_body, int) or max_body <= 0:
        _fail(f"Invalid validation.max_body_bytes: '{max_body}'. Must be a positive integer.")

    timeout = config.validation.timeout_seconds
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        _fail(f"Invalid validation.timeout_seconds: '{timeout}'. Must be a positive number.")
