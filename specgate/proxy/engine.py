"""Validating reverse proxy for SpecGate.

Forwards every inbound request to the configured upstream unchanged (apart
from the host/scheme and hop-by-hop headers) and runs the response
interception hook on every upstream response before the client sees its body:

    Response Guard → Operation Resolver → Schema Validator → Enforcement Policy

The chain stops at the first Skipped outcome.

Key design properties:
  - Shared httpx.AsyncClient at app.state.http_client — never per-request
  - Upstream responses are sent with stream=True; only JSON bodies up to the
    ceiling are ever held in memory, everything else streams through
  - Validation runs in a worker thread and is raced against the client's
    disconnect signal and the optional validation deadline
  - Fail-open: the only way SpecGate changes what the client receives is a
    strict-mode rewrite after a genuine validation failure

Failure mode separation:
  - httpx.TransportError on send / body read → HTTP 502 (never a validation error)
  - Upstream HTTP 4xx/5xx → validated and passed through like any other status
  - Resolver malfunction → ERROR log, original response delivered
  - Client disconnect / deadline during validation → no enforcement
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from fastapi import APIRouter, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from specgate.constants import (
    DISCONNECT_POLL_INTERVAL_S,
    MAX_RESPONSE_BODY_BYTES,
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
    PROXY_TIMEOUT,
)
from specgate.contract.model import Contract
from specgate.contract.resolver import (
    OperationResolver,
    PathTemplateResolver,
    is_undocumented_endpoint,
)
from specgate.contract.validator import JSONSchemaValidator, SchemaValidator
from specgate.errors import (
    ConfigError,
    ResolverError,
    ResponseValidationError,
    TransportError,
    ValidationCancelled,
)
from specgate.models.exchange import InterceptedRequest, InterceptedResponse, ResolvedRoute
from specgate.models.outcome import SkipReason, ValidationOutcome
from specgate.models.responses import build_upstream_unavailable_response
from specgate.policy import Action, Mode, enforce, parse_mode
from specgate.proxy.guard import ResponseGuard
from specgate.proxy.headers import build_client_response_headers, build_upstream_headers
from specgate.utils.logger import ColoredHandler, Level, new_logger
from specgate.utils.ulid import generate_ulid

# ─── Router ───────────────────────────────────────────────────────────────────

router = APIRouter(tags=["proxy"])

PROXY_METHODS: list[str] = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"]

# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client() -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient with connection pooling configured.

    Created once at lifespan startup and stored in app.state.http_client.
    Redirects are not followed: 3xx responses pass through to the client.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(PROXY_TIMEOUT),
        follow_redirects=False,
    )


# ─── Configuration ────────────────────────────────────────────────────────────


def parse_upstream_url(upstream_url: str) -> httpx.URL:
    """Parse and sanity-check the upstream target.

    Raises:
        ConfigError: not an absolute http(s) URL with a host.
    """
    try:
        url = httpx.URL(upstream_url)
    except httpx.InvalidURL as exc:
        raise ConfigError(f"invalid upstream URL: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(
            f"invalid upstream URL '{upstream_url}': expected http(s)://host[:port]"
        )
    return url


@dataclass(frozen=True)
class ProxyConfig:
    """Everything the pipeline needs; fixed for the lifetime of the proxy."""

    upstream: httpx.URL
    mode: Mode
    contract: Contract
    resolver: OperationResolver
    validator: SchemaValidator
    max_body_bytes: int = MAX_RESPONSE_BODY_BYTES
    validation_timeout: Optional[float] = None


def _has_no_body(response: InterceptedResponse) -> bool:
    status = response.status_code
    return (
        response.request.method.upper() == "HEAD"
        or 100 <= status < 200
        or status in (204, 304)
    )


async def _wait_for_disconnect(probe: Callable[[], Awaitable[bool]]) -> None:
    while not await probe():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL_S)


# ─── Validating proxy ─────────────────────────────────────────────────────────


class ValidatingProxy:
    """Top-level orchestrator: owns the configuration and the response hook.

    Args:
        contract:           Loaded contract. Its server list is rewritten to
                            ``upstream_url``.
        upstream_url:       Where requests are forwarded (scheme + host).
        mode:               ``strict`` | ``warn`` | ``report`` (any case).
        resolver:           Operation resolver; defaults to PathTemplateResolver.
        validator:          Schema validator; defaults to JSONSchemaValidator.
        max_body_bytes:     Buffering ceiling for response bodies.
        validation_timeout: Seconds before an in-flight validation is abandoned.
        log_handler:        Handler all pipeline logs go through
                            (default: colored, INFO, stderr).

    Raises:
        InvalidModeError: unknown mode string.
        ConfigError:      unparseable upstream URL.
    """

    def __init__(
        self,
        contract: Contract,
        upstream_url: str,
        mode: str,
        *,
        resolver: Optional[OperationResolver] = None,
        validator: Optional[SchemaValidator] = None,
        max_body_bytes: int = MAX_RESPONSE_BODY_BYTES,
        validation_timeout: Optional[float] = None,
        log_handler: Optional[ColoredHandler] = None,
    ) -> None:
        valid_mode = parse_mode(mode)
        upstream = parse_upstream_url(upstream_url)

        # The validator's own location checks must agree with where traffic goes.
        contract.rewrite_servers(upstream_url)

        self.config = ProxyConfig(
            upstream=upstream,
            mode=valid_mode,
            contract=contract,
            resolver=resolver if resolver is not None else PathTemplateResolver(contract),
            validator=validator if validator is not None else JSONSchemaValidator(contract),
            max_body_bytes=max_body_bytes,
            validation_timeout=validation_timeout,
        )
        self.log_handler = (
            log_handler
            if log_handler is not None
            else ColoredHandler(level=Level.INFO)
        )
        self.logger = new_logger(self.log_handler)
        self.guard = ResponseGuard(max_body_bytes)

    @property
    def mode(self) -> Mode:
        return self.config.mode

    def logger_for(self, request_id: str) -> Any:
        """A logger whose every line carries ``request_id``."""
        return new_logger(self.log_handler.with_attrs({"request_id": request_id}))

    def upstream_url_for(self, raw_path: bytes, query_string: bytes = b"") -> httpx.URL:
        """Same path and query, upstream scheme and host."""
        target = raw_path or b"/"
        if query_string:
            target += b"?" + query_string
        return self.config.upstream.copy_with(raw_path=target)

    # ── Forwarding ───────────────────────────────────────────────────────────

    async def forward(self, request: Request, http_client: httpx.AsyncClient) -> Response:
        """Relay ``request`` upstream and return the (inspected) response."""
        request_id = generate_ulid()
        log = self.logger_for(request_id)

        raw_path: bytes = request.scope.get("raw_path") or request.url.path.encode("utf-8")
        upstream_url = self.upstream_url_for(raw_path, request.scope.get("query_string", b""))

        body: bytes = await request.body()
        upstream_request = http_client.build_request(
            method=request.method,
            url=upstream_url,
            headers=build_upstream_headers(request.headers.items()),
            content=body,
        )

        try:
            upstream_response = await http_client.send(upstream_request, stream=True)
        except httpx.TransportError as exc:
            log.warning(
                "Upstream unavailable",
                upstream=str(upstream_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return build_upstream_unavailable_response(request_id, type(exc).__name__)

        intercepted = InterceptedResponse.from_upstream(
            upstream_response,
            InterceptedRequest(
                method=request.method,
                path=request.url.path,
                query=request.url.query,
                headers=httpx.Headers(request.headers.items()),
                is_disconnected=request.is_disconnected,
            ),
        )

        try:
            await self.intercept(intercepted, log)
        except TransportError as exc:
            log.warning(
                "Upstream response body read failed",
                error=str(exc),
                method=request.method,
                path=request.url.path,
            )
            await intercepted.aclose()
            cause = exc.__cause__
            return build_upstream_unavailable_response(
                request_id, type(cause).__name__ if cause is not None else "TransportError"
            )
        except ResolverError as exc:
            log.error(
                "Error finding route",
                error=str(exc.__cause__ or exc),
                method=request.method,
                path=request.url.path,
            )
        except ValidationCancelled as exc:
            log.warning(
                "Validation abandoned",
                reason=exc.reason,
                method=request.method,
                path=request.url.path,
            )
        except Exception as exc:  # noqa: BLE001
            # Pipeline bugs must never withhold the upstream response.
            log.error(
                "Response interception failed",
                error=str(exc),
                error_type=type(exc).__name__,
                method=request.method,
                path=request.url.path,
            )

        log.debug(
            "Request proxied",
            method=request.method,
            path=request.url.path,
            upstream=str(upstream_url),
            status_code=intercepted.status_code,
        )
        return await self._deliver(intercepted)

    async def _deliver(self, response: InterceptedResponse) -> Response:
        headers = build_client_response_headers(response.headers.multi_items())

        client_response: Response
        if response.buffered:
            await response.aclose()
            # Starlette computes the length of the buffered (possibly rewritten) body.
            headers = [
                (name, value) for name, value in headers if name.lower() != "content-length"
            ]
            client_response = Response(content=response.body, status_code=response.status_code)
        else:
            # Streamed bytes are the upstream's wire bytes; its Content-Length still holds.
            client_response = StreamingResponse(
                response.iter_body(),
                status_code=response.status_code,
                background=BackgroundTask(response.aclose),
            )

        for name, value in headers:
            client_response.headers.append(name, value)

        return client_response

    # ── Response interception hook ───────────────────────────────────────────

    async def intercept(
        self, response: InterceptedResponse, logger: Optional[Any] = None
    ) -> ValidationOutcome:
        """Run the pipeline on ``response`` and apply the enforcement policy.

        Mutates ``response`` in place (buffering, strict-mode rewrite).

        Raises:
            TransportError:      body read failed; deliver a gateway error.
            ResolverError:       resolver malfunctioned; deliver as-is.
            ValidationCancelled: client gone or deadline hit; deliver as-is.
        """
        log = logger if logger is not None else self.logger
        outcome = await self._inspect(response, log)
        action = enforce(outcome, self.config.mode, response, log)
        if action is Action.REWRITE:
            log.debug("Response rewritten", status=response.status_code)
        return outcome

    async def _inspect(self, response: InterceptedResponse, log: Any) -> ValidationOutcome:
        if _has_no_body(response):
            return ValidationOutcome.skipped(SkipReason.NO_BODY)

        skipped = await self.guard.admit(response, log)
        if skipped is not None:
            return skipped

        request = response.request
        try:
            route = self.config.resolver.resolve(request.method, request.path, request.headers)
        except Exception as exc:  # noqa: BLE001
            if is_undocumented_endpoint(exc):
                return ValidationOutcome.skipped(SkipReason.UNDOCUMENTED)
            raise ResolverError(f"route finding error: {exc}") from exc

        return await self.validate(route, response)

    async def validate(
        self, route: ResolvedRoute, response: InterceptedResponse
    ) -> ValidationOutcome:
        """Validate a buffered response, honouring disconnects and the deadline.

        Raises:
            ValidationCancelled: validation was abandoned; nothing to enforce.
        """
        request = response.request
        task = asyncio.ensure_future(
            asyncio.to_thread(
                self.config.validator.validate,
                route,
                request,
                response.status_code,
                response.headers,
                response.content if response.content is not None else b"",
            )
        )
        watcher: Optional[asyncio.Future[None]] = None
        if request.is_disconnected is not None:
            watcher = asyncio.ensure_future(_wait_for_disconnect(request.is_disconnected))

        waiting = {task} if watcher is None else {task, watcher}
        try:
            done, _ = await asyncio.wait(
                waiting,
                timeout=self.config.validation_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if watcher is not None:
                watcher.cancel()
            if not task.done():
                task.cancel()

        if task not in done:
            if watcher is not None and watcher in done:
                raise ValidationCancelled("client disconnected")
            raise ValidationCancelled("validation deadline elapsed")

        try:
            task.result()
        except ResponseValidationError as exc:
            return ValidationOutcome.failed(exc.detail)
        return ValidationOutcome.passed()


# ─── Proxy handler ────────────────────────────────────────────────────────────


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_handler(request: Request) -> Response:
    """Catch-all handler: every path and method goes through the proxy."""
    proxy: ValidatingProxy = request.app.state.proxy
    http_client: httpx.AsyncClient = request.app.state.http_client
    return await proxy.forward(request, http_client)
