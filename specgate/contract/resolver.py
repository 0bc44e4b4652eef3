"""Operation resolution and "undocumented endpoint" classification.

``OperationResolver`` is the seam: anything with a ``resolve()`` method that
returns a ``ResolvedRoute`` or raises can be plugged into the proxy. The
bundled ``PathTemplateResolver`` raises the typed ``RouteNotFoundError``.

Resolvers that cannot be changed to raise the typed error usually report
"not documented" through a plain message. ``is_undocumented_endpoint()``
recognises the common phrasings; anything it does not recognise is a real
resolver failure and must not be silently skipped.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol
from urllib.parse import unquote

import httpx

from specgate.contract.model import Contract, Operation
from specgate.errors import RouteNotFoundError
from specgate.models.exchange import ResolvedRoute

UNDOCUMENTED_PATTERNS: tuple[str, ...] = (
    "no matching operation",
    "path not found",
    "no route found",
    "operation not found",
    "no match found",
    "unknown path",
)

_PARAM_RE = re.compile(r"\{([^}/]+)\}")


class OperationResolver(Protocol):
    def resolve(self, method: str, path: str, headers: httpx.Headers) -> ResolvedRoute:
        ...


def is_undocumented_endpoint(exc: Optional[BaseException]) -> bool:
    """True if ``exc`` means "this endpoint is not in the contract"."""
    if exc is None:
        return False
    if isinstance(exc, RouteNotFoundError):
        return True

    message = str(exc).lower()
    return any(pattern in message for pattern in UNDOCUMENTED_PATTERNS)


class _CompiledTemplate:
    __slots__ = ("template", "regex", "names", "operations")

    def __init__(self, template: str) -> None:
        self.template = template
        self.names: list[str] = []
        self.operations: dict[str, Operation] = {}

        pattern = ["^"]
        position = 0
        for match in _PARAM_RE.finditer(template):
            pattern.append(re.escape(template[position:match.start()]))
            pattern.append(f"(?P<p{len(self.names)}>[^/]+)")
            self.names.append(match.group(1))
            position = match.end()
        pattern.append(re.escape(template[position:]))
        pattern.append("$")
        self.regex = re.compile("".join(pattern))

    @property
    def sort_key(self) -> tuple[int, int]:
        # Literal templates win over parameterised ones; longer before shorter.
        return (len(self.names), -len(self.template))


class PathTemplateResolver:
    """Match request paths against the contract's path templates."""

    def __init__(self, contract: Contract) -> None:
        self._contract = contract
        compiled: dict[str, _CompiledTemplate] = {}
        for (method, template), operation in contract.operations.items():
            entry = compiled.get(template)
            if entry is None:
                entry = compiled[template] = _CompiledTemplate(template)
            entry.operations[method] = operation
        self._templates = sorted(compiled.values(), key=lambda t: t.sort_key)

    def resolve(self, method: str, path: str, headers: httpx.Headers) -> ResolvedRoute:
        """Resolve ``method`` + ``path`` to a documented operation.

        Raises:
            RouteNotFoundError: no template matches, or none with this method.
        """
        relative = self._strip_base_path(path)
        if relative is None:
            raise RouteNotFoundError(f"no matching operation was found for {method} {path}")

        upper = method.upper()
        path_matched = False
        for entry in self._templates:
            match = entry.regex.match(relative)
            if match is None:
                continue
            path_matched = True
            operation = entry.operations.get(upper)
            if operation is None:
                continue
            params = tuple(
                (name, unquote(match.group(f"p{index}")))
                for index, name in enumerate(entry.names)
            )
            return ResolvedRoute(
                operation_id=operation.operation_id,
                path_params=params,
                operation=operation,
            )

        if path_matched:
            raise RouteNotFoundError(
                f"no matching operation was found for {method} {path}: method not documented"
            )
        raise RouteNotFoundError(f"no matching operation was found for {method} {path}")

    def _strip_base_path(self, path: str) -> Optional[str]:
        base = self._contract.base_path()
        if not base:
            return path
        if path == base:
            return "/"
        if path.startswith(base + "/"):
            return path[len(base):]
        return None
