"""Root test configuration for SpecGate.

Every test runs in its own temporary working directory with all SPECGATE_*
environment variables cleared, so a developer's real `.specgate/config.yaml`
or environment can never leak into the suite.

Shared fixtures:
  - petstore_document / contract: a small OpenAPI 3.0 contract
  - log_output / log_handler:     a DEBUG-level ColoredHandler writing to StringIO
  - make_response:                builds InterceptedResponse objects over an
                                  async chunk stream
"""

from __future__ import annotations

import copy
import io
import pathlib
from typing import Any, AsyncIterator, Callable, Iterable, Iterator, Optional

import httpx
import pytest
import yaml

from specgate.contract.model import Contract
from specgate.models.exchange import InterceptedRequest, InterceptedResponse
from specgate.utils.logger import ColoredHandler, Level, configure_logging

SPECGATE_ENV_VARS = (
    "SPECGATE_CONFIG",
    "SPECGATE_SPEC",
    "SPECGATE_UPSTREAM",
    "SPECGATE_MODE",
    "SPECGATE_PORT",
    "SPECGATE_LOG_LEVEL",
)

PETSTORE: dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Petstore", "version": "1.0.0"},
    "servers": [{"url": "https://petstore.example.com"}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "responses": {
                    "200": {
                        "description": "A list of pets",
                        "content": {
                            "application/json": {
                                "schema": {
                                    "type": "array",
                                    "items": {"$ref": "#/components/schemas/Pet"},
                                }
                            }
                        },
                    }
                },
            },
            "post": {
                "operationId": "createPet",
                "responses": {
                    "201": {
                        "description": "Created",
                        "content": {
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/Pet"}
                            }
                        },
                    },
                    "4XX": {"$ref": "#/components/responses/Problem"},
                },
            },
        },
        "/pets/mine": {
            "get": {
                "operationId": "listMyPets",
                "responses": {
                    "200": {
                        "description": "My pets",
                        "content": {
                            "application/json": {
                                "schema": {"type": "array", "items": {"type": "object"}}
                            }
                        },
                    }
                },
            }
        },
        "/pets/{petId}": {
            "get": {
                "operationId": "getPet",
                "responses": {
                    "200": {
                        "description": "A pet",
                        "content": {
                            "application/json": {
                                "schema": {"$ref": "#/components/schemas/Pet"}
                            }
                        },
                    },
                    "default": {"$ref": "#/components/responses/Problem"},
                },
            },
            "delete": {
                "responses": {"204": {"description": "Deleted"}},
            },
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "required": ["id", "name"],
                "properties": {
                    "id": {"type": "integer"},
                    "name": {"type": "string"},
                    "tag": {"type": "string", "nullable": True},
                },
            },
            "Error": {
                "type": "object",
                "required": ["message"],
                "properties": {"message": {"type": "string"}},
            },
        },
        "responses": {
            "Problem": {
                "description": "Error",
                "content": {
                    "application/json": {"schema": {"$ref": "#/components/schemas/Error"}}
                },
            }
        },
    },
}


@pytest.fixture(autouse=True)
def isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path
) -> Iterator[pathlib.Path]:
    """Clear SPECGATE_* env vars and run each test in an empty directory."""
    for name in SPECGATE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("specgate.config.DEFAULT_CONFIG_PATHS", [".specgate/config.yaml"])
    yield tmp_path
    # Tests that reconfigure logging under capsys must not leave it pointing
    # at a closed capture stream.
    configure_logging()


@pytest.fixture
def petstore_document() -> dict[str, Any]:
    return copy.deepcopy(PETSTORE)


@pytest.fixture
def petstore_file(tmp_path: pathlib.Path, petstore_document: dict[str, Any]) -> pathlib.Path:
    path = tmp_path / "openapi.yaml"
    path.write_text(yaml.safe_dump(petstore_document))
    return path


@pytest.fixture
def contract(petstore_document: dict[str, Any]) -> Contract:
    return Contract.from_document(petstore_document, source="petstore.yaml")


@pytest.fixture
def log_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def log_handler(log_output: io.StringIO) -> ColoredHandler:
    return ColoredHandler(output=log_output, level=Level.DEBUG)


async def chunk_stream(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


@pytest.fixture
def make_response() -> Callable[..., InterceptedResponse]:
    """Factory for InterceptedResponse objects backed by an async stream."""

    def _make(
        chunks: Iterable[bytes] = (b'{"id": 1, "name": "Rex"}',),
        *,
        status_code: int = 200,
        headers: Optional[dict[str, str]] = None,
        method: str = "GET",
        path: str = "/pets/1",
        stream: Optional[AsyncIterator[bytes]] = None,
    ) -> InterceptedResponse:
        return InterceptedResponse(
            status_code=status_code,
            headers=httpx.Headers(
                headers if headers is not None else {"content-type": "application/json"}
            ),
            request=InterceptedRequest(method=method, path=path),
            stream=stream if stream is not None else chunk_stream(list(chunks)),
        )

    return _make


async def collect(response: InterceptedResponse) -> bytes:
    """Drain the body the way delivery would."""
    return b"".join([chunk async for chunk in response.iter_body()])


@pytest.fixture
def drain() -> Callable[[InterceptedResponse], Any]:
    return collect


@pytest.fixture
def stream_of() -> Callable[[Iterable[bytes]], AsyncIterator[bytes]]:
    return chunk_stream
