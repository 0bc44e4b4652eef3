"""Unit tests for application startup and shutdown.

Covers:
  - build_proxy(): contract loaded, proxy configured from Config
  - Startup refusal (SystemExit(1)) on unreadable contract or bad upstream
  - Spec URL / upstream mismatch is a warning, not a failure
  - Lifespan: ready flag, shared client created and closed
"""

from __future__ import annotations

import pathlib
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from specgate.config import Config
from specgate.main import build_proxy, create_app, lifespan
from specgate.policy import Mode
from specgate.utils.logger import configure_logging


# ─── build_proxy ──────────────────────────────────────────────────────────────


class TestBuildProxy:
    def test_from_config(self, petstore_file: pathlib.Path) -> None:
        config = Config(spec=str(petstore_file), upstream="http://backend:5000", mode="report")
        config.validation.timeout_seconds = 1.5
        proxy = build_proxy(config)
        assert proxy.mode is Mode.REPORT
        assert proxy.config.validation_timeout == 1.5
        assert proxy.config.contract.document["servers"] == [{"url": "http://backend:5000"}]

    def test_missing_contract(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = Config(spec=str(tmp_path / "missing.yaml"))
        with pytest.raises(SystemExit) as exc_info:
            build_proxy(config)
        assert exc_info.value.code == 1
        assert "STARTUP ERROR" in capsys.readouterr().err

    def test_bad_upstream(
        self, petstore_file: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        config = Config(spec=str(petstore_file), upstream="ftp://nope")
        with pytest.raises(SystemExit):
            build_proxy(config)
        assert "invalid upstream URL" in capsys.readouterr().err

    def test_spec_upstream_mismatch_warns(
        self,
        monkeypatch: pytest.MonkeyPatch,
        petstore_document: dict[str, Any],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        def fake_get(url: str, **kwargs: Any) -> httpx.Response:
            return httpx.Response(200, json=petstore_document, request=httpx.Request("GET", url))

        monkeypatch.setattr("specgate.contract.loader.httpx.get", fake_get)
        configure_logging()
        config = Config(
            spec="https://docs.example.com/openapi.json", upstream="http://localhost:3000"
        )
        build_proxy(config)
        assert "Spec URL and upstream URL do not match" in capsys.readouterr().err


# ─── Lifespan ─────────────────────────────────────────────────────────────────


class TestLifespan:
    def test_initial_state_not_ready(self) -> None:
        assert create_app().state.ready is False

    @pytest.mark.asyncio
    async def test_startup_and_shutdown(
        self, monkeypatch: pytest.MonkeyPatch, petstore_file: pathlib.Path
    ) -> None:
        config = Config(spec=str(petstore_file), upstream="http://upstream.test", mode="strict")
        monkeypatch.setattr("specgate.main.load_config", lambda: config)

        app = FastAPI()
        app.state.ready = False
        async with lifespan(app):
            assert app.state.ready is True
            assert app.state.config is config
            assert app.state.proxy.mode is Mode.STRICT
            client = app.state.http_client
            assert isinstance(client, httpx.AsyncClient)
            assert not client.is_closed
        assert app.state.ready is False
        assert client.is_closed
