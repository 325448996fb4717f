"""Resource fetching for fonts and artwork sources.

A reference is either an ``http(s)://`` URL (fetched with the shared
``httpx.AsyncClient``), a ``file://`` URL, or a plain filesystem path (read
with ``anyio.Path``).  Downloads are capped at ``max_bytes``.

Errors propagate as ``httpx.HTTPError``, ``httpx.InvalidURL`` (a malformed
URL such as a non-numeric port), ``httpx.StreamError``, ``OSError`` or
``ValueError``; ``FETCH_ERRORS`` lists them for callers that translate
into domain errors.
"""

from __future__ import annotations

import logging
from urllib.parse import quote, unquote, urlparse

import anyio
import httpx

from lapis.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_MAX_SOURCE_BYTES

logger = logging.getLogger("lapis.fetch")


class ResourceTooLarge(ValueError):
    """The resource exceeded the configured byte limit."""


FETCH_ERRORS: tuple[type[Exception], ...] = (
    httpx.HTTPError,
    httpx.InvalidURL,
    httpx.StreamError,
    OSError,
    ValueError,
)


def is_url(ref: str) -> bool:
    return urlparse(ref).scheme in ("http", "https")


def join_location(base: str, name: str) -> str:
    """Join a base URL or directory with a file name."""
    if is_url(base):
        return f"{base.rstrip('/')}/{quote(name)}"
    return str(anyio.Path(base) / name)


class ResourceFetcher:
    """Fetches raw bytes for a reference.

    One instance is shared by the font and source caches.  When no client is
    injected, a short-lived client is opened per request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_SOURCE_BYTES,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def fetch(self, ref: str) -> bytes:
        if is_url(ref):
            return await self._fetch_http(ref)
        parsed = urlparse(ref)
        if parsed.scheme == "file":
            return await self._read_file(unquote(parsed.path))
        if parsed.scheme and len(parsed.scheme) > 1:
            raise ValueError(f"Unsupported scheme {parsed.scheme!r} in {ref!r}")
        return await self._read_file(ref)

    async def _fetch_http(self, url: str) -> bytes:
        if self._client is not None:
            return await self._stream(self._client, url)
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            return await self._stream(client, url)

    async def _stream(self, client: httpx.AsyncClient, url: str) -> bytes:
        logger.debug("GET %s", url)
        chunks: list[bytes] = []
        total = 0
        async with client.stream("GET", url, timeout=self.timeout) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes():
                total += len(chunk)
                if total > self.max_bytes:
                    raise ResourceTooLarge(f"{url} exceeds {self.max_bytes} bytes")
                chunks.append(chunk)
        return b"".join(chunks)

    async def _read_file(self, path: str) -> bytes:
        p = anyio.Path(path)
        stat = await p.stat()
        if stat.st_size > self.max_bytes:
            raise ResourceTooLarge(f"{path} exceeds {self.max_bytes} bytes")
        return await p.read_bytes()
