from __future__ import annotations
"""Readable and seekable byte streams over worker object downloads."""
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
import io
import logging
from typing import AsyncIterator, Optional

import httpx

from .models import InvalidDataError
from .transport import ApiRequest, RenterdError, RenterdTransport, UnexpectedResponseError

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class NotSeekableError(RenterdError):
    """Raised when an offset or seek is requested on a non-seekable object."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"the object at '{path}' is not seekable")


class NotDownloadableObjectError(RenterdError):
    """Raised when a path does not denote something that can be downloaded."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"the resource at '{path}' is not a downloadable object")


def range_header(offset: int, length: int | None) -> str | None:
    """Return the ``Range`` header for reading from ``offset``.

    No header is sent for offset 0 so servers never see a ``bytes=0-`` range.
    """

    if offset < 0:
        raise ValueError("offset cannot be negative")
    if offset == 0:
        return None
    if length:
        return f"bytes={offset}-{length - 1}"
    return f"bytes={offset}-"


@dataclass
class DownloadableObject:
    """Metadata gathered from a HEAD request plus the means to fetch the content."""

    path: str
    bucket: Optional[str] = None
    length: Optional[int] = None
    content_type: Optional[str] = None
    seekable: bool = False
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    _transport: Optional[RenterdTransport] = field(default=None, repr=False, compare=False)
    _request: Optional[ApiRequest] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_headers(
        cls,
        path: str,
        bucket: str | None,
        headers: httpx.Headers,
        *,
        transport: RenterdTransport | None = None,
        request: ApiRequest | None = None,
    ) -> DownloadableObject:
        accept_ranges = headers.get("accept-ranges", "")
        length = _parse_content_length(headers.get("content-length"))
        return cls(
            path=path,
            bucket=bucket,
            length=length,
            content_type=headers.get("content-type") or None,
            seekable=accept_ranges.startswith("bytes") and bool(length),
            etag=headers.get("etag") or None,
            last_modified=_parse_last_modified(headers.get("last-modified")),
            _transport=transport,
            _request=request,
        )

    async def open_stream(self) -> ObjectStream:
        """Open the whole object from byte 0 with a single GET."""

        transport, request = self._require_transport()
        LOGGER.debug("Opening download stream for '%s'", self.path)
        response = await transport.open_response(request)
        return ObjectStream(response)

    async def open_seekable_stream(self, initial_offset: int | None = None) -> SeekableObjectStream:
        """Open a stream that can be repositioned with ``seek``.

        Every seek closes the live response and the next read issues a new
        ranged GET, so each reposition costs one round trip.
        """

        if not self.seekable:
            raise NotSeekableError(self.path)
        transport, request = self._require_transport()
        stream = SeekableObjectStream(transport, request, length=self.length, path=self.path)
        await stream.seek(initial_offset or 0)
        await stream.reopen()
        return stream

    def _require_transport(self) -> tuple[RenterdTransport, ApiRequest]:
        if self._transport is None or self._request is None:
            raise NotDownloadableObjectError(self.path)
        return self._transport, self._request


class ObjectStream:
    """Sequential reader over one streaming HTTP response."""

    def __init__(self, response: httpx.Response, *, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._response = response
        self._chunks = response.aiter_bytes(chunk_size)
        self._buffer = b""
        self._eof = False

    @property
    def closed(self) -> bool:
        return self._response.is_closed

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative."""

        if size == 0:
            return b""
        parts = [self._buffer]
        available = len(self._buffer)
        self._buffer = b""
        while (size < 0 or available < size) and not self._eof:
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._eof = True
                break
            parts.append(chunk)
            available += len(chunk)
        data = b"".join(parts)
        if size >= 0 and len(data) > size:
            data, self._buffer = data[:size], data[size:]
        return data

    async def aclose(self) -> None:
        await self._response.aclose()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read(DEFAULT_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    async def __aenter__(self) -> ObjectStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class SeekableObjectStream:
    """Random-access reader that re-issues ranged GETs on every seek."""

    def __init__(
        self,
        transport: RenterdTransport,
        request: ApiRequest,
        *,
        length: int | None,
        path: str = "",
    ):
        self._transport = transport
        self._request = request
        self._length = length
        self._path = path
        self._position = 0
        self._stream: ObjectStream | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def length(self) -> int | None:
        return self._length

    def tell(self) -> int:
        return self._position

    async def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._check_open()
        if whence == io.SEEK_SET:
            target = offset
        elif whence == io.SEEK_CUR:
            target = self._position + offset
        elif whence == io.SEEK_END:
            if self._length is None:
                raise NotSeekableError(self._path)
            target = self._length + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        if target < 0:
            raise ValueError("negative seek position")
        if target != self._position:
            await self._drop_stream()
        self._position = target
        return target

    async def reopen(self) -> None:
        """Issue the ranged GET for the current position if none is live."""

        self._check_open()
        if self._stream is not None or self._at_end():
            return
        request = self._request
        header = range_header(self._position, self._length)
        if header is not None:
            request = request.with_header("Range", header)
        LOGGER.debug("Opening '%s' at offset %d", self._path, self._position)
        response = await self._transport.open_response(request)
        if header is not None and response.status_code != 206:
            await response.aclose()
            raise UnexpectedResponseError(
                f"server ignored range request for '{self._path}' (status {response.status_code})"
            )
        self._stream = ObjectStream(response)

    async def read(self, size: int = -1) -> bytes:
        self._check_open()
        if size == 0 or self._at_end():
            return b""
        await self.reopen()
        assert self._stream is not None
        data = await self._stream.read(size)
        self._position += len(data)
        return data

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._drop_stream()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read(DEFAULT_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk

    async def __aenter__(self) -> SeekableObjectStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _at_end(self) -> bool:
        return self._length is not None and self._position >= self._length

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed stream")

    async def _drop_stream(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            await stream.aclose()


def _parse_content_length(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        length = int(value.strip())
    except ValueError as exc:
        raise InvalidDataError("invalid content length header") from exc
    if length < 0:
        raise InvalidDataError("invalid content length header")
    return length


def _parse_last_modified(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError) as exc:
        raise InvalidDataError("invalid last modified date header") from exc
