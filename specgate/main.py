"""SpecGate FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()           → app.state.config
  2. configure_logging()     → level / format from config
  3. load_contract()         → app.state.contract
  4. ValidatingProxy(...)    → app.state.proxy (validates mode + upstream)
  5. create_http_client()    → app.state.http_client
  6. app.state.ready = True  → log "SpecGate ready"

Shutdown sequence (reverse):
  app.state.ready = False → close shared HTTP client

Every path and method is handled by the catch-all proxy route; SpecGate has
no endpoints of its own, so nothing on the upstream API can be shadowed.

Uvicorn hardened defaults (see run.py):
  uvicorn specgate.main:app \\
    --host 127.0.0.1 \\
    --port 8080 \\
    --limit-concurrency 100 \\
    --backlog 50 \\
    --timeout-keep-alive 5
"""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from specgate.config import Config, load_config
from specgate.contract.loader import load_contract, spec_upstream_mismatch
from specgate.errors import ConfigError
from specgate.models.responses import build_not_ready_response
from specgate.proxy.engine import ValidatingProxy, create_http_client, router as engine_router
from specgate.utils.logger import ColoredHandler, Level, configure_logging, get_logger

logger = get_logger(__name__)


class NotReadyError(Exception):
    """Raised by require_ready before the lifespan has finished starting up."""


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: refuse proxy traffic until app.state.ready is True."""
    if not getattr(request.app.state, "ready", False):
        raise NotReadyError()


# ─── Lifespan ─────────────────────────────────────────────────────────────────


def build_proxy(config: Config) -> ValidatingProxy:
    """Load the contract and construct the proxy described by ``config``.

    Raises:
        SystemExit(1): contract unreadable, or mode / upstream rejected.
    """
    mismatch = spec_upstream_mismatch(config.spec, config.upstream)
    if mismatch:
        logger.warning(
            "Spec URL and upstream URL do not match",
            detail=mismatch,
            spec=config.spec,
            upstream=config.upstream,
        )

    try:
        contract = load_contract(config.spec)
        return ValidatingProxy(
            contract,
            config.upstream,
            config.mode,
            max_body_bytes=config.validation.max_body_bytes,
            validation_timeout=config.validation.timeout_seconds,
            log_handler=ColoredHandler(level=Level.parse(config.logging.level)),
        )
    except ConfigError as exc:
        print(f"STARTUP ERROR: {exc}", file=sys.stderr)
        raise SystemExit(1)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence.

    Any startup failure raises SystemExit before ready=True is ever set.
    """
    logger.info("SpecGate starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Logging ───────────────────────────────────────────────────────
    configure_logging(log_level=config.logging.level, json_output=config.logging.json)

    # ── Step 3 + 4: Contract and proxy ────────────────────────────────────────
    proxy = build_proxy(config)
    app.state.contract = proxy.config.contract
    app.state.proxy = proxy

    # ── Step 5: Shared HTTP client ────────────────────────────────────────────
    # NEVER instantiated per-request. Pool size matches --limit-concurrency 100.
    http_client: httpx.AsyncClient = create_http_client()
    app.state.http_client = http_client

    # ── Step 6: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info(
        "SpecGate ready",
        mode=proxy.mode.value,
        upstream=config.upstream,
        spec=config.spec,
        operations=len(proxy.config.contract.operations),
    )

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("SpecGate shutting down...")
    app.state.ready = False

    try:
        await http_client.aclose()
        logger.info("HTTP proxy client closed")
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP proxy client close error (non-fatal)", error=str(exc))

    logger.info("SpecGate shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the SpecGate FastAPI application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app()

    The module-level `app` is created at import time for uvicorn:
        uvicorn specgate.main:app --host 127.0.0.1 --port 8080
    """
    # No docs routes: every path belongs to the upstream API.
    application = FastAPI(
        title="SpecGate",
        description="OpenAPI response-validating reverse proxy",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Requests arriving before startup completes get a 503.
    application.state.ready = False

    application.include_router(engine_router, dependencies=[Depends(require_ready)])

    @application.exception_handler(NotReadyError)
    async def not_ready_handler(request: Request, exc: NotReadyError) -> JSONResponse:
        return build_not_ready_response()

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
