"""Byte sources for firmware images."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol, runtime_checkable

import httpx

from fanlink.exceptions import NetworkFetchFailed
from fanlink.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ByteSource(Protocol):
    """Fetch-by-identifier capability for binary images.

    Sources are async context managers; a flash run enters the source once
    and fetches every component inside that scope.
    """

    async def __aenter__(self) -> ByteSource:
        ...

    async def __aexit__(self, *args: object) -> None:
        ...

    async def fetch(self, identifier: str) -> bytes:
        ...


class HttpByteSource:
    """Fetch images relative to a base URL.

    Inside ``async with`` every fetch shares one ``httpx.AsyncClient``.
    A fetch outside that scope uses a client of its own.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def __aenter__(self) -> HttpByteSource:
        if self._client is None:
            self._client = self._new_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def fetch(self, identifier: str) -> bytes:
        logger.debug("http_fetch", base_url=self._base_url, path=identifier)
        try:
            if self._client is not None:
                response = await self._client.get(identifier)
            else:
                async with self._new_client() as client:
                    response = await client.get(identifier)
        except httpx.HTTPError as exc:
            raise NetworkFetchFailed(identifier, reason=str(exc)) from exc

        if not response.is_success:
            raise NetworkFetchFailed(identifier, response.status_code, response.reason_phrase)
        return response.content


class DirectoryByteSource:
    """Read images from a local directory.

    Failures carry HTTP-like status codes so callers treat both sources alike.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    async def __aenter__(self) -> DirectoryByteSource:
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    async def fetch(self, identifier: str) -> bytes:
        path = (self._root / identifier).resolve()
        if not path.is_relative_to(self._root):
            raise NetworkFetchFailed(identifier, 403, "Forbidden")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NetworkFetchFailed(identifier, 404, "Not Found") from exc
        except PermissionError as exc:
            raise NetworkFetchFailed(identifier, 403, "Forbidden") from exc
        except OSError as exc:
            raise NetworkFetchFailed(identifier, reason=str(exc)) from exc


def byte_source_for(location: str) -> ByteSource:
    """Build a source for an http(s) URL or a local directory."""
    if location.startswith(("http://", "https://")):
        return HttpByteSource(location)
    return DirectoryByteSource(location)
