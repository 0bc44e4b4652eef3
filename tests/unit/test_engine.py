"""Unit tests for ValidatingProxy construction and the interception hook.

Covers:
  - Construction: mode checked before the upstream URL; server list rewritten
  - Pipeline order: guard skip short-circuits the resolver
  - Undocumented endpoint → Skipped + WARN, never ERROR
  - Resolver malfunction → ResolverError, response untouched (fail-open)
  - Strict rewrite only on a genuine validation failure
  - Client disconnect / validation deadline → ValidationCancelled, no enforcement
  - Each response cycle logs with its own request_id
"""

from __future__ import annotations

import io
import threading
from typing import Any, Callable

import httpx
import pytest

from specgate.contract.model import Contract
from specgate.errors import (
    ConfigError,
    InvalidModeError,
    ResolverError,
    ResponseValidationError,
    ValidationCancelled,
)
from specgate.models.exchange import InterceptedResponse, ResolvedRoute
from specgate.models.outcome import OutcomeKind, SkipReason
from specgate.policy import Mode
from specgate.proxy.engine import ValidatingProxy, parse_upstream_url
from specgate.utils.logger import ColoredHandler

UPSTREAM = "http://upstream.test"
VALID_PET = b'{"id": 1, "name": "Rex"}'
INVALID_PET = b'{"id": 1}'


class _RaisingResolver:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls = 0

    def resolve(self, method: str, path: str, headers: httpx.Headers) -> ResolvedRoute:
        self.calls += 1
        raise self.exc


class _BlockingValidator:
    """Holds the worker thread until released, then reports a violation."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def validate(self, *args: Any) -> None:
        self.started.set()
        self.release.wait(5)
        raise ResponseValidationError("too late to matter")


def _proxy(contract: Contract, log_handler: ColoredHandler, mode: str = "strict", **kwargs: Any) -> ValidatingProxy:
    return ValidatingProxy(contract, UPSTREAM, mode, log_handler=log_handler, **kwargs)


# ─── Construction ─────────────────────────────────────────────────────────────


class TestConstruction:
    def test_mode_parsed_case_insensitively(
        self, contract: Contract, log_handler: ColoredHandler
    ) -> None:
        assert _proxy(contract, log_handler, mode="WARN").mode is Mode.WARN

    def test_invalid_mode_reported_before_url(
        self, contract: Contract, log_handler: ColoredHandler
    ) -> None:
        with pytest.raises(InvalidModeError):
            ValidatingProxy(contract, "::not a url::", "invalid", log_handler=log_handler)

    @pytest.mark.parametrize("url", ["ftp://host", "not a url", "http://", ""])
    def test_invalid_upstream(
        self, contract: Contract, log_handler: ColoredHandler, url: str
    ) -> None:
        with pytest.raises(ConfigError):
            ValidatingProxy(contract, url, "warn", log_handler=log_handler)

    def test_servers_rewritten_to_upstream(
        self, contract: Contract, log_handler: ColoredHandler
    ) -> None:
        _proxy(contract, log_handler)
        assert contract.document["servers"] == [{"url": UPSTREAM}]

    def test_parse_upstream_url(self) -> None:
        url = parse_upstream_url("https://api.example.com:8443")
        assert url.host == "api.example.com"
        assert url.port == 8443

    def test_upstream_url_for_keeps_path_and_query(
        self, contract: Contract, log_handler: ColoredHandler
    ) -> None:
        proxy = _proxy(contract, log_handler)
        url = proxy.upstream_url_for(b"/pets/a%2Fb", b"limit=2&tag=x")
        assert str(url) == "http://upstream.test/pets/a%2Fb?limit=2&tag=x"


# ─── Pipeline ─────────────────────────────────────────────────────────────────


class TestIntercept:
    @pytest.mark.asyncio
    async def test_conforming_response_passes(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        response = make_response([VALID_PET])
        outcome = await _proxy(contract, log_handler).intercept(response)
        assert outcome.kind is OutcomeKind.PASSED
        assert response.status_code == 200
        assert response.body == VALID_PET

    @pytest.mark.asyncio
    async def test_strict_rewrites_violation(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        response = make_response([INVALID_PET])
        outcome = await _proxy(contract, log_handler).intercept(response)
        assert outcome.is_failed
        assert response.status_code == 500
        assert response.body == (
            b'{"error":"Response validation failed",'
            b'"details":"$: \'name\' is a required property"}'
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["warn", "report"])
    async def test_non_strict_passes_violation(
        self, contract: Contract, log_handler: ColoredHandler, log_output: io.StringIO,
        make_response: Callable[..., InterceptedResponse], mode: str,
    ) -> None:
        response = make_response([INVALID_PET])
        outcome = await _proxy(contract, log_handler, mode=mode).intercept(response)
        assert outcome.is_failed
        assert response.status_code == 200
        assert response.body == INVALID_PET
        assert "Response validation failed" in log_output.getvalue()

    @pytest.mark.asyncio
    async def test_guard_skip_short_circuits_resolver(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        resolver = _RaisingResolver(RuntimeError("must not be called"))
        response = make_response([b"plain"], headers={"content-type": "text/plain"})
        outcome = await _proxy(contract, log_handler, resolver=resolver).intercept(response)
        assert outcome.reason is SkipReason.NOT_JSON
        assert resolver.calls == 0

    @pytest.mark.asyncio
    async def test_no_body_statuses_skipped(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        response = make_response([], status_code=204, method="DELETE")
        outcome = await _proxy(contract, log_handler).intercept(response)
        assert outcome.reason is SkipReason.NO_BODY

    @pytest.mark.asyncio
    async def test_head_skipped(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        response = make_response([], method="HEAD")
        outcome = await _proxy(contract, log_handler).intercept(response)
        assert outcome.reason is SkipReason.NO_BODY
        assert response.status_code == 200


# ─── Resolver failures ────────────────────────────────────────────────────────


class TestResolverFailures:
    @pytest.mark.asyncio
    async def test_undocumented_endpoint_warns(
        self, contract: Contract, log_handler: ColoredHandler, log_output: io.StringIO,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        response = make_response([INVALID_PET], path="/owners/1")
        outcome = await _proxy(contract, log_handler).intercept(response)
        assert outcome.reason is SkipReason.UNDOCUMENTED
        assert response.status_code == 200
        logged = log_output.getvalue()
        assert "Undocumented endpoint method=GET path=/owners/1" in logged
        assert "ERROR" not in logged

    @pytest.mark.asyncio
    async def test_custom_resolver_message_classified(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        resolver = _RaisingResolver(LookupError("No route found for request"))
        outcome = await _proxy(contract, log_handler, resolver=resolver).intercept(
            make_response([INVALID_PET])
        )
        assert outcome.reason is SkipReason.UNDOCUMENTED

    @pytest.mark.asyncio
    async def test_resolver_malfunction_fails_open(
        self, contract: Contract, log_handler: ColoredHandler, log_output: io.StringIO,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        resolver = _RaisingResolver(RuntimeError("database connection failed"))
        response = make_response([INVALID_PET])
        with pytest.raises(ResolverError) as exc_info:
            await _proxy(contract, log_handler, resolver=resolver).intercept(response)
        assert "route finding error" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        # Original response is still intact and deliverable.
        assert response.status_code == 200
        assert response.body == INVALID_PET
        assert "Undocumented endpoint" not in log_output.getvalue()


# ─── Cancellation ─────────────────────────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_client_disconnect_abandons_validation(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        validator = _BlockingValidator()

        async def disconnected() -> bool:
            return validator.started.is_set()

        response = make_response([INVALID_PET])
        response.request.is_disconnected = disconnected
        proxy = _proxy(contract, log_handler, validator=validator)
        try:
            with pytest.raises(ValidationCancelled) as exc_info:
                await proxy.intercept(response)
            assert exc_info.value.reason == "client disconnected"
            assert response.status_code == 200
            assert response.body == INVALID_PET
        finally:
            validator.release.set()

    @pytest.mark.asyncio
    async def test_deadline_abandons_validation(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        validator = _BlockingValidator()
        response = make_response([INVALID_PET])
        proxy = _proxy(contract, log_handler, validator=validator, validation_timeout=0.05)
        try:
            with pytest.raises(ValidationCancelled, match="deadline"):
                await proxy.intercept(response)
            assert response.status_code == 200
        finally:
            validator.release.set()

    @pytest.mark.asyncio
    async def test_connected_client_waits_for_result(
        self, contract: Contract, log_handler: ColoredHandler,
        make_response: Callable[..., InterceptedResponse],
    ) -> None:
        async def connected() -> bool:
            return False

        response = make_response([VALID_PET])
        response.request.is_disconnected = connected
        outcome = await _proxy(contract, log_handler).intercept(response)
        assert outcome.is_passed


# ─── Logging ──────────────────────────────────────────────────────────────────


class TestRequestScopedLogging:
    def test_request_id_on_every_line(
        self, contract: Contract, log_handler: ColoredHandler, log_output: io.StringIO
    ) -> None:
        proxy = _proxy(contract, log_handler)
        proxy.logger_for("01AAA").info("one")
        proxy.logger_for("01BBB").info("two")
        proxy.logger.info("three")
        lines = log_output.getvalue().splitlines()
        assert lines[0].endswith("one request_id=01AAA")
        assert lines[1].endswith("two request_id=01BBB")
        assert lines[2].endswith("three")
