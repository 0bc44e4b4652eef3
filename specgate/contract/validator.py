"""Default schema validator: JSON Schema checks of response bodies.

``SchemaValidator`` is the seam the proxy depends on. The bundled
``JSONSchemaValidator`` covers the part of OpenAPI response validation that
matters for a JSON API: pick the documented response for the status code,
pick the media type for the Content-Type, and validate the decoded body
against its schema with jsonschema (Draft 2020-12). ``$ref`` pointers into
``#/components/...`` resolve against the contract document.

Selection rules:
  - response: exact status ("200") → range ("2XX") → "default";
    an undocumented status passes.
  - media type: exact → ``type/*`` → ``*/*``; a response with no ``content``
    (or no schema) passes; declared content that does not include the
    response's media type fails.

All violations found are reported in one detail string, ``; ``-separated.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Mapping, Optional, Protocol

import httpx
from jsonschema import Draft202012Validator

from specgate.contract.model import Contract, Operation
from specgate.errors import ResponseValidationError
from specgate.models.exchange import InterceptedRequest, ResolvedRoute


class SchemaValidator(Protocol):
    def validate(
        self,
        route: ResolvedRoute,
        request: InterceptedRequest,
        status_code: int,
        headers: httpx.Headers,
        body: bytes,
    ) -> None:
        """Return if the response conforms; raise ResponseValidationError if not."""
        ...


def _to_json_schema(node: Any) -> Any:
    """Translate OpenAPI 3.0 ``nullable`` into JSON Schema type unions."""
    if isinstance(node, dict):
        converted = {key: _to_json_schema(value) for key, value in node.items()}
        if converted.pop("nullable", False) is True:
            schema_type = converted.get("type")
            if isinstance(schema_type, str):
                converted["type"] = [schema_type, "null"]
            elif isinstance(schema_type, list) and "null" not in schema_type:
                converted["type"] = schema_type + ["null"]
        return converted
    if isinstance(node, list):
        return [_to_json_schema(item) for item in node]
    return node


def _media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def select_response(responses: Mapping[Any, Any], status_code: int) -> Optional[Any]:
    by_key = {str(key).upper(): value for key, value in responses.items()}
    exact = by_key.get(str(status_code))
    if exact is not None:
        return exact
    ranged = by_key.get(f"{status_code // 100}XX")
    if ranged is not None:
        return ranged
    return by_key.get("DEFAULT")


def select_media(content: Mapping[str, Any], content_type: Optional[str]) -> Optional[Any]:
    media = _media_type(content_type)
    lowered = {str(key).lower(): value for key, value in content.items()}
    if media in lowered:
        return lowered[media]
    wildcard = media.split("/", 1)[0] + "/*"
    if wildcard in lowered:
        return lowered[wildcard]
    return lowered.get("*/*")


class JSONSchemaValidator:
    """Validate response bodies against the contract's response schemas."""

    def __init__(self, contract: Contract) -> None:
        self._contract = contract
        self._components = _to_json_schema(copy.deepcopy(contract.document.get("components") or {}))
        # Read-only once built.
        self._validators: dict[int, Draft202012Validator] = {
            id(schema): self._compile(schema) for schema in self._response_schemas()
        }

    def validate(
        self,
        route: ResolvedRoute,
        request: InterceptedRequest,
        status_code: int,
        headers: httpx.Headers,
        body: bytes,
    ) -> None:
        operation = route.operation
        if not isinstance(operation, Operation):
            raise TypeError(
                f"route {route.operation_id!r} carries no contract operation to validate against"
            )

        responses = operation.spec.get("responses") or {}
        response_spec = self._deref(select_response(responses, status_code))
        if not isinstance(response_spec, dict):
            return

        content = response_spec.get("content")
        if not content:
            return

        media = select_media(content, headers.get("content-type"))
        if media is None:
            raise ResponseValidationError(
                f"response header Content-Type has unexpected value: "
                f"{headers.get('content-type')!r}"
            )
        schema = media.get("schema") if isinstance(media, dict) else None
        if not schema:
            return

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise ResponseValidationError(f"response body is not valid JSON: {exc}") from None

        validator = self._validator_for(schema)
        errors = sorted(validator.iter_errors(data), key=lambda e: (e.json_path, e.message))
        if errors:
            raise ResponseValidationError(
                "; ".join(f"{error.json_path}: {error.message}" for error in errors)
            )

    def _response_schemas(self) -> list[Mapping[str, Any]]:
        """Every response body schema the contract's operations declare."""
        schemas: list[Mapping[str, Any]] = []
        for operation in self._contract.operations.values():
            for response in (operation.spec.get("responses") or {}).values():
                response_spec = self._deref(response)
                if not isinstance(response_spec, dict):
                    continue
                for media in (response_spec.get("content") or {}).values():
                    schema = media.get("schema") if isinstance(media, dict) else None
                    if schema:
                        schemas.append(schema)
        return schemas

    def _compile(self, schema: Mapping[str, Any]) -> Draft202012Validator:
        root = dict(_to_json_schema(schema))
        root["components"] = self._components
        return Draft202012Validator(root, format_checker=Draft202012Validator.FORMAT_CHECKER)

    def _validator_for(self, schema: Mapping[str, Any]) -> Draft202012Validator:
        validator = self._validators.get(id(schema))
        if validator is None:
            # Operation supplied by a custom resolver, outside the contract.
            validator = self._compile(schema)
        return validator

    def _deref(self, node: Any) -> Any:
        """Follow local ``$ref`` pointers on response objects."""
        seen: set[str] = set()
        while isinstance(node, dict) and isinstance(node.get("$ref"), str):
            ref = node["$ref"]
            if not ref.startswith("#/") or ref in seen:
                return node
            seen.add(ref)
            target: Any = self._contract.document
            for part in ref[2:].split("/"):
                part = part.replace("~1", "/").replace("~0", "~")
                if not isinstance(target, dict) or part not in target:
                    return None
                target = target[part]
            node = target
        return node
