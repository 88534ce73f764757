"""
Streamed repository archives.

An ArchiveStream wraps an open, status-checked httpx response. Chunks are
pulled from the connection only as the caller iterates, and the connection
is released as soon as the caller stops: on exhaustion, on ``aclose()``
or on leaving ``async with``. An abandoned iterator closes it when the
event loop finalizes the generator.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from types import TracebackType
from typing import Any

import httpx

from scmgate.logging_config import get_logger
from scmgate.scm.http import raise_for_status
from scmgate.scm.protocol import ProviderConnectionError, ScmError

logger = get_logger(__name__)


class ArchiveStream:
    """Single forward pass over an archive response body."""

    def __init__(self, response: httpx.Response, chunk_size: int = 64 * 1024) -> None:
        self._response = response
        self._chunk_size = chunk_size
        self._started = False

    @property
    def content_type(self) -> str:
        return self._response.headers.get("content-type", "application/zip")

    @property
    def content_disposition(self) -> str | None:
        return self._response.headers.get("content-disposition")

    @property
    def closed(self) -> bool:
        return self._response.is_closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise ScmError("Archive stream already consumed; open a new one to read again")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes(chunk_size=self._chunk_size):
                yield chunk
        except httpx.RequestError as e:
            raise ProviderConnectionError(f"Archive download interrupted: {e}") from e
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()
            logger.debug("Archive stream closed", url=str(self._response.url))

    async def __aenter__(self) -> ArchiveStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


async def open_archive(
    client: httpx.AsyncClient,
    url: str,
    what: str,
    chunk_size: int,
    **kwargs: Any,
) -> ArchiveStream:
    """Send a streamed GET and classify its status before any body is read.

    Archive endpoints answer with a redirect to a download host, so this is
    the one call that follows redirects. httpx drops the Authorization header
    when the redirect leaves the API origin.
    """
    req = client.build_request("GET", url, **kwargs)
    try:
        resp = await client.send(req, stream=True, follow_redirects=True)
    except httpx.RequestError as e:
        raise ProviderConnectionError(f"{what} failed: {e}") from e

    if resp.status_code >= 300:
        try:
            await resp.aread()
            raise_for_status(resp, what)
        finally:
            await resp.aclose()

    return ArchiveStream(resp, chunk_size=chunk_size)
