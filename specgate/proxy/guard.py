"""Response Guard — eligibility and bounded buffering of upstream bodies.

The guard is the first stage of the interception hook. It decides whether a
response can be validated at all and, if so, materialises its body in memory
without ever holding more than ``max_body_bytes + 1`` bytes:

  1. Content-Type gate: only ``application/json`` proceeds.
     Anything else → Skipped("not JSON"), body untouched.
  2. Declared size gate: Content-Length > ceiling → Skipped("too large")
     without reading a single body byte.
  3. Actual size gate: read at most ceiling + 1 bytes. More than the ceiling
     (absent or lying Content-Length) → Skipped("too large"); the bytes
     already read are replayed ahead of the rest of the stream so the client
     still receives the complete, unmodified body.
  4. Content-Encoding: gzip / deflate bodies are decoded for validation only
     (bounded by the same ceiling); other encodings → Skipped.

Read failures below the ceiling raise ``TransportError`` — they are never
turned into validation outcomes.
"""

from __future__ import annotations

import zlib
from typing import Any, AsyncIterator, Optional

import httpx

from specgate.constants import MAX_RESPONSE_BODY_BYTES
from specgate.errors import TransportError
from specgate.models.exchange import InterceptedResponse
from specgate.models.outcome import SkipReason, ValidationOutcome

JSON_MEDIA_TYPE = "application/json"

# zlib wbits: 32 + MAX_WBITS auto-detects gzip and zlib headers.
_AUTO_WBITS = 32 + zlib.MAX_WBITS
_RAW_DEFLATE_WBITS = -zlib.MAX_WBITS

_IDENTITY_ENCODINGS = frozenset({"", "identity"})
_GZIP_ENCODINGS = frozenset({"gzip", "x-gzip", "deflate"})


def is_json_content(content_type: Optional[str]) -> bool:
    return content_type is not None and JSON_MEDIA_TYPE in content_type


def declared_content_length(headers: httpx.Headers) -> Optional[int]:
    """Parse Content-Length; ``None`` when absent or not an integer."""
    raw = headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


async def read_at_most(stream: AsyncIterator[bytes], limit: int) -> tuple[bytes, bytes]:
    """Read from ``stream`` until it ends or ``limit`` + 1 bytes arrived.

    Returns ``(head, remainder)``: ``head`` holds at most ``limit`` + 1 bytes,
    ``remainder`` is the unconsumed tail of the last chunk received. Callers
    compare ``len(head)`` against ``limit`` to detect oversize bodies.

    Raises:
        TransportError: the upstream connection failed mid-body.
    """
    chunks: list[bytes] = []
    total = 0
    remainder = b""
    try:
        async for chunk in stream:
            room = limit + 1 - total
            if len(chunk) >= room:
                chunks.append(chunk[:room])
                remainder = chunk[room:]
                break
            chunks.append(chunk)
            total += len(chunk)
    except httpx.TransportError as exc:
        raise TransportError(
            f"failed reading upstream response body: {type(exc).__name__}: {exc}"
        ) from exc
    return b"".join(chunks), remainder


def decode_for_validation(body: bytes, limit: int) -> Optional[bytes]:
    """Decode a gzip/deflate body, never producing more than ``limit`` + 1 bytes.

    Returns ``None`` if the body cannot be decoded.
    """
    for wbits in (_AUTO_WBITS, _RAW_DEFLATE_WBITS):
        decoder = zlib.decompressobj(wbits)
        try:
            decoded = decoder.decompress(body, limit + 1)
        except zlib.error:
            continue
        if len(decoded) <= limit and not decoder.eof:
            # Truncated or not actually compressed.
            continue
        return decoded
    return None


class ResponseGuard:
    """Stateless guard; one instance is shared by every request."""

    def __init__(self, max_body_bytes: int = MAX_RESPONSE_BODY_BYTES) -> None:
        self.max_body_bytes = max_body_bytes

    async def admit(
        self, response: InterceptedResponse, logger: Any
    ) -> Optional[ValidationOutcome]:
        """Buffer ``response`` for validation, or explain why not.

        Returns:
            ``None`` when the body is buffered and ready for the validator,
            otherwise a Skipped outcome (the response is left deliverable).

        Raises:
            TransportError: body read failed before the ceiling was reached.
        """
        if not is_json_content(response.headers.get("content-type")):
            logger.debug(
                "Non-JSON response, skipping validation",
                content_type=response.headers.get("content-type"),
            )
            return ValidationOutcome.skipped(SkipReason.NOT_JSON)

        declared = declared_content_length(response.headers)
        if declared is not None and declared > self.max_body_bytes:
            logger.warning("Response too large, skipping validation", size=declared)
            return ValidationOutcome.skipped(SkipReason.TOO_LARGE, size=declared)

        if response.stream is None:
            body, remainder = response.body or b"", b""
        else:
            body, remainder = await read_at_most(response.stream, self.max_body_bytes)

        if len(body) > self.max_body_bytes:
            logger.warning("Response too large, skipping validation", size=len(body))
            response.replay(body + remainder)
            return ValidationOutcome.skipped(SkipReason.TOO_LARGE, size=len(body))

        encoding = response.headers.get("content-encoding", "").strip().lower()
        if encoding in _IDENTITY_ENCODINGS:
            response.set_body(body)
            return None

        if encoding in _GZIP_ENCODINGS:
            decoded = decode_for_validation(body, self.max_body_bytes)
            if decoded is not None and len(decoded) <= self.max_body_bytes:
                response.set_body(body, content=decoded)
                return None
            response.set_body(body)
            if decoded is not None:
                logger.warning(
                    "Decoded response too large, skipping validation",
                    size=len(decoded),
                    encoding=encoding,
                )
                return ValidationOutcome.skipped(SkipReason.TOO_LARGE, size=len(decoded))
            logger.warning(
                "Undecodable response body, skipping validation",
                encoding=encoding,
            )
            return ValidationOutcome.skipped(SkipReason.UNSUPPORTED_ENCODING)

        response.set_body(body)
        logger.warning(
            "Unsupported Content-Encoding, skipping validation",
            encoding=encoding,
        )
        return ValidationOutcome.skipped(SkipReason.UNSUPPORTED_ENCODING)
