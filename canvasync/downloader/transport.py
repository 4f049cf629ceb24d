"""Streaming byte-range transport used by resumable transfers."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Dict, Optional

import httpx

from ..errors import TransientNetworkError


@dataclass
class TransferResponse:
    """Status code plus the body as an async stream of chunks."""
    status_code: int
    chunks: AsyncIterator[bytes]


class TransportBase(ABC):
    """Opens a GET for ``url`` starting at byte ``range_start``."""

    @abstractmethod
    def open(self, url: str, range_start: int) -> AsyncContextManager[TransferResponse]:
        """Return a context manager yielding the response.

        Implementations must raise ``TransientNetworkError`` for transport
        failures, both when opening and while the body is being consumed.
        """


def range_headers(range_start: int) -> Dict[str, str]:
    """Range header for a resumed request; empty for a fresh one."""
    if range_start > 0:
        return {'Range': f'bytes={range_start}-'}
    return {}


class HttpxTransport(TransportBase):
    """Transport backed by a shared ``httpx.AsyncClient``.

    Bodies are streamed raw and requested without content coding, so the
    bytes on disk are the bytes that ``Range`` offsets count.
    """

    def __init__(self, client: httpx.AsyncClient, chunk_size: int = 1024 * 1024,
                 headers: Optional[Dict[str, str]] = None):
        self.client = client
        self.chunk_size = chunk_size
        self.headers = headers or {}

    async def _iter_chunks(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_raw(self.chunk_size):
                yield chunk
        except httpx.RequestError as e:
            raise TransientNetworkError(f"Stream interrupted: {e!r}") from e

    @asynccontextmanager
    async def open(self, url: str, range_start: int) -> AsyncIterator[TransferResponse]:
        headers = {**self.headers, 'Accept-Encoding': 'identity', **range_headers(range_start)}
        try:
            async with self.client.stream('GET', url, headers=headers) as response:
                yield TransferResponse(response.status_code, self._iter_chunks(response))
        except httpx.RequestError as e:
            raise TransientNetworkError(f"Request failed: {e!r}") from e
