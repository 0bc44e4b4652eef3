"""Request/response values that flow through the interception pipeline.

``InterceptedResponse`` is owned by the pipeline while the hook runs and then
handed back to the engine for delivery. Until the Response Guard buffers it,
the body is a one-shot async byte stream straight off the upstream
connection; after buffering, ``body`` holds the wire bytes and every consumer
(validator, client delivery) reads the same immutable ``bytes``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx

# Content-Encodings httpx always decodes when it reads a body.
_DECODED_ON_READ = frozenset({"gzip", "deflate", "identity"})


@dataclass
class InterceptedRequest:
    """The inbound request that produced the response under inspection."""

    method: str
    path: str
    query: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    # Async probe for client disconnect (Starlette's Request.is_disconnected).
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None


@dataclass(frozen=True)
class ResolvedRoute:
    """A request mapped to a documented operation.

    ``path_params`` keeps the order in which the template declares them.
    ``operation`` is whatever the validator needs to check the response
    (the default resolver puts the contract ``Operation`` here).
    """

    operation_id: str
    path_params: tuple[tuple[str, str], ...] = ()
    operation: Any = None

    @property
    def params(self) -> dict[str, str]:
        return dict(self.path_params)


async def _replay(prefix: bytes, rest: Optional[AsyncIterator[bytes]]) -> AsyncIterator[bytes]:
    if prefix:
        yield prefix
    if rest is not None:
        async for chunk in rest:
            yield chunk


@dataclass
class InterceptedResponse:
    status_code: int
    headers: httpx.Headers
    request: InterceptedRequest
    stream: Optional[AsyncIterator[bytes]] = None
    # Wire bytes once buffered. ``content`` is what the validator sees: the
    # same object for identity encoding, the decoded bytes otherwise.
    body: Optional[bytes] = None
    content: Optional[bytes] = None
    _close: Optional[Callable[[], Awaitable[None]]] = field(default=None, repr=False)

    @classmethod
    def from_upstream(
        cls, upstream: httpx.Response, request: InterceptedRequest
    ) -> "InterceptedResponse":
        """Wrap a streamed httpx response without touching its body.

        A transport may hand back a response it has already read. Its body is
        then only available as ``upstream.content``, which httpx has already
        decoded, so the headers are adjusted to describe those bytes.
        """
        headers = httpx.Headers(upstream.headers)
        if not upstream.is_stream_consumed:
            stream = upstream.aiter_raw()
        else:
            content = upstream.content
            encodings = {
                value.strip().lower()
                for value in headers.get_list("content-encoding", split_commas=True)
            }
            if encodings and encodings <= _DECODED_ON_READ:
                del headers["content-encoding"]
            headers["content-length"] = str(len(content))
            stream = _replay(content, None)
        return cls(
            status_code=upstream.status_code,
            headers=headers,
            request=request,
            stream=stream,
            _close=upstream.aclose,
        )

    @property
    def buffered(self) -> bool:
        return self.body is not None

    def set_body(self, body: bytes, content: Optional[bytes] = None) -> None:
        """Replace the stream with a materialised body."""
        self.body = body
        self.content = body if content is None else content
        self.stream = None

    def replay(self, prefix: bytes) -> None:
        """Put already-consumed bytes back in front of the remaining stream."""
        self.stream = _replay(prefix, self.stream)

    async def iter_body(self) -> AsyncIterator[bytes]:
        """Yield the body for client delivery, closing upstream afterwards."""
        try:
            if self.body is not None:
                yield self.body
            elif self.stream is not None:
                async for chunk in self.stream:
                    yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        close, self._close = self._close, None
        if close is not None:
            await close()
