"""Programmatic uvicorn entry point for SpecGate.

Reads host and port from the loaded config (127.0.0.1:8080 by default) and
starts uvicorn with hardened defaults:

  --limit-concurrency 100  Max 100 concurrent connections; HTTP 503 when exceeded
  --backlog 50             OS connection queue depth
  --timeout-keep-alive 5   Short keep-alive window for idle clients

Usage:
    python -m specgate.run     # reads .specgate/config.yaml
    specgate                   # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from specgate.config import load_config
from specgate.utils.logger import Level

# Must match httpx connection pool size (POOL_MAX_CONNECTIONS in constants.py).
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5

UVICORN_LOG_LEVELS: dict[Level, str] = {
    Level.DEBUG: "debug",
    Level.INFO: "info",
    Level.WARN: "warning",
    Level.ERROR: "error",
}


def main() -> None:
    """Start the SpecGate proxy server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "specgate.main:app",
        host=config.proxy.host,
        port=config.proxy.port,
        log_level=UVICORN_LOG_LEVELS[Level.parse(config.logging.level)],
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
