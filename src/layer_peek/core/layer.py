"""Random access to a remote layer blob over HTTP range requests."""

import asyncio
import logging
import re
from typing import Optional, Union

import aiohttp

from ..exceptions import (
    RangeNotSupportedError,
    RegistryConnectionError,
    ShortReadError,
    UnexpectedStatusError,
    UnsupportedResponseError,
)
from .redirect import resolve_redirect
from .transport import Transport
from .types import DEFAULT_PROBE_TIMEOUT, LayerDescriptor

logger = logging.getLogger(__name__)

CONTENT_RANGE_PATTERN = re.compile(r"^bytes\s+(\d+)-(\d+)/(\d+|\*)$")

Buffer = Union[bytearray, memoryview]


def _writable_view(buffer: Buffer) -> memoryview:
    view = memoryview(buffer)
    if view.readonly:
        raise TypeError("read_at() requires a writable buffer")
    return view.cast("B") if view.format != "B" or view.ndim != 1 else view


class RemoteLayer:
    """A layer blob addressed by digest and read with range requests.

    The effective URL is resolved once, when the layer is created, and used
    for every read of this layer afterwards. Each read is an independent
    request through the shared transport.
    """

    def __init__(
        self, descriptor: LayerDescriptor, effective_url: str, transport: Transport
    ) -> None:
        self.descriptor = descriptor
        self.effective_url = effective_url
        self.transport = transport

    @classmethod
    async def resolve(
        cls,
        descriptor: LayerDescriptor,
        transport: Transport,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> "RemoteLayer":
        """Create a layer handle after resolving the blob's redirect."""
        effective_url = await resolve_redirect(descriptor.url, transport, timeout)
        return cls(descriptor, effective_url, transport)

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    @property
    def size(self) -> int:
        return self.descriptor.size

    @property
    def url(self) -> str:
        return self.descriptor.url

    def __repr__(self) -> str:
        return f"RemoteLayer(digest={self.digest!r}, size={self.size})"

    async def read_at(self, buffer: Buffer, offset: int) -> int:
        """Fill ``buffer`` with layer bytes starting at ``offset``.

        The request is clamped to the declared layer size, so the count
        returned is ``min(len(buffer), size - offset)``. An empty buffer or
        an offset at or past the end reads nothing and issues no request.

        Args:
            buffer: Writable bytes-like destination
            offset: Absolute byte offset in the layer blob

        Returns:
            Number of bytes written into ``buffer``

        Raises:
            UnexpectedStatusError: If the response status is not 200 or 206
            UnsupportedResponseError: For multipart or mismatched responses
            RangeNotSupportedError: If the server ignored Range at offset > 0
            ShortReadError: If the response ends before the window is filled
            RegistryConnectionError: If the request fails in transit
        """
        if offset < 0:
            raise ValueError(f"Negative offset: {offset}")
        view = _writable_view(buffer)
        if len(view) == 0 or offset >= self.size:
            return 0

        length = min(len(view), self.size - offset)
        data = await self._fetch(offset, length)
        view[:length] = data
        return length

    async def read_range(self, offset: int, length: int) -> bytes:
        """Read up to ``length`` bytes at ``offset`` into a new bytes object."""
        buffer = bytearray(length)
        count = await self.read_at(buffer, offset)
        return bytes(buffer[:count])

    async def _fetch(self, offset: int, length: int) -> bytes:
        end = offset + length - 1
        headers = {
            "Range": f"bytes={offset}-{end}",
            # Range math is only valid against the stored byte layout
            "Accept-Encoding": "identity",
        }
        logger.debug("GET %s bytes=%d-%d", self.digest, offset, end)

        try:
            async with self.transport.get(self.effective_url, headers=headers) as resp:
                if resp.status == 200:
                    if offset != 0:
                        raise RangeNotSupportedError(
                            f"Server ignored Range for {self.digest} at offset {offset}"
                        )
                elif resp.status == 206:
                    self._check_partial_content(resp, offset)
                else:
                    raise UnexpectedStatusError(resp.status, self.effective_url)

                encoding = resp.headers.get("Content-Encoding", "identity").lower()
                if encoding not in ("", "identity"):
                    raise UnsupportedResponseError(
                        f"Encoded response ({encoding}) for {self.digest}"
                    )

                return await self._read_window(resp, length)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RegistryConnectionError(
                f"Failed to read {self.digest} bytes={offset}-{end}: "
                f"{str(e) or type(e).__name__}"
            ) from e

    @staticmethod
    async def _read_window(resp: aiohttp.ClientResponse, length: int) -> bytes:
        data = bytearray()
        try:
            while len(data) < length:
                chunk = await resp.content.read(length - len(data))
                if not chunk:
                    break
                data += chunk
        except aiohttp.ClientPayloadError as e:
            raise ShortReadError(length, len(data)) from e
        if len(data) < length:
            raise ShortReadError(length, len(data))
        return bytes(data)

    def _check_partial_content(
        self, resp: aiohttp.ClientResponse, offset: int
    ) -> None:
        if resp.content_type.startswith("multipart/"):
            raise UnsupportedResponseError(
                f"Multipart range response is not supported ({resp.content_type})"
            )

        content_range: Optional[str] = resp.headers.get("Content-Range")
        if content_range is None:
            return
        match = CONTENT_RANGE_PATTERN.match(content_range.strip())
        if match is None:
            raise UnsupportedResponseError(f"Invalid Content-Range: {content_range!r}")
        if int(match.group(1)) != offset:
            raise UnsupportedResponseError(
                f"Content-Range {content_range!r} does not start at {offset}"
            )


class LayerSection:
    """A size-bounded window over a remote layer.

    Reads past the section end are clamped exactly as reads past the layer
    end are.
    """

    def __init__(
        self, layer: RemoteLayer, offset: int = 0, size: Optional[int] = None
    ) -> None:
        if offset < 0:
            raise ValueError(f"Negative section offset: {offset}")
        self.layer = layer
        self.offset = offset
        self.size = layer.size - offset if size is None else size

    @property
    def digest(self) -> str:
        return self.layer.digest

    async def read_at(self, buffer: Buffer, offset: int) -> int:
        if offset < 0:
            raise ValueError(f"Negative offset: {offset}")
        view = _writable_view(buffer)
        if len(view) == 0 or offset >= self.size:
            return 0
        length = min(len(view), self.size - offset)
        return await self.layer.read_at(view[:length], self.offset + offset)

    async def read_range(self, offset: int, length: int) -> bytes:
        buffer = bytearray(length)
        count = await self.read_at(buffer, offset)
        return bytes(buffer[:count])
