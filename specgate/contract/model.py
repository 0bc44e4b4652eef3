"""In-memory handle on an OpenAPI contract document.

The pipeline needs very little from a contract: the documented operations,
keyed by ``(METHOD, path-template)``, and the mutable list of declared server
locations (rewritten to the upstream target when the proxy is built).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from specgate.errors import ContractError

HTTP_METHODS: tuple[str, ...] = (
    "get",
    "put",
    "post",
    "delete",
    "options",
    "head",
    "patch",
    "trace",
)


@dataclass(frozen=True)
class Operation:
    operation_id: str
    method: str
    path_template: str
    spec: Mapping[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class Contract:
    document: dict[str, Any]
    operations: dict[tuple[str, str], Operation]
    servers: list[dict[str, Any]]
    source: Optional[str] = None

    @classmethod
    def from_document(cls, document: Any, source: Optional[str] = None) -> "Contract":
        """Index the operations of a parsed OpenAPI document.

        Raises:
            ContractError: the document is not a mapping with a ``paths`` mapping.
        """
        where = source or "contract"
        if not isinstance(document, dict):
            raise ContractError(f"{where} is not a valid OpenAPI document (expected a mapping)")
        paths = document.get("paths")
        if not isinstance(paths, dict):
            raise ContractError(f"{where} has no 'paths' mapping")

        operations: dict[tuple[str, str], Operation] = {}
        for template, path_item in paths.items():
            if not isinstance(path_item, dict):
                continue
            for method in HTTP_METHODS:
                op_spec = path_item.get(method)
                if not isinstance(op_spec, dict):
                    continue
                upper = method.upper()
                operations[(upper, str(template))] = Operation(
                    operation_id=op_spec.get("operationId") or f"{upper} {template}",
                    method=upper,
                    path_template=str(template),
                    spec=op_spec,
                )

        servers = document.get("servers")
        if not isinstance(servers, list):
            servers = []
            document["servers"] = servers

        return cls(document=document, operations=operations, servers=servers, source=source)

    def rewrite_servers(self, url: str) -> None:
        """Point the declared server list at ``url`` (in place)."""
        self.servers[:] = [{"url": url}]

    def base_path(self) -> str:
        """Path component of the first declared server, without trailing slash."""
        if not self.servers:
            return ""
        url = str(self.servers[0].get("url", ""))
        if "://" in url:
            url = url.split("://", 1)[1]
            slash = url.find("/")
            url = url[slash:] if slash >= 0 else ""
        return url.rstrip("/")
