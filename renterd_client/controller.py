from __future__ import annotations
"""Controller layer coordinating profiles, settings and the renterd client."""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from .client import RenterdClient
from .downloads import DownloadableObject, ObjectStream, SeekableObjectStream
from .models import ObjectMetadata, ResolvedPath, State
from .profiles import ConnectionProfile, ProfileStorage
from .settings import AppSettings
from .transport import NotFoundError

LOGGER = logging.getLogger(__name__)


class NotConnectedError(RuntimeError):
    """Raised when a renterd operation is attempted before connecting."""


class TransferCancelledError(RuntimeError):
    """Raised when an upload or download is cancelled by the caller."""


class RenterdController:
    """Coordinates user actions with a :class:`RenterdClient`."""

    def __init__(
        self,
        client_factory: Callable[..., RenterdClient] | None = None,
        storage: ProfileStorage | None = None,
        settings: AppSettings | None = None,
    ):
        self._client_factory = client_factory or RenterdClient
        self._storage = storage or ProfileStorage()
        self._settings = settings or AppSettings()
        self._client: RenterdClient | None = None
        self._profiles: list[ConnectionProfile] = self._storage.load()
        self._selected_profile: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def selected_profile(self) -> str | None:
        return self._selected_profile

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def list_profiles(self) -> list[ConnectionProfile]:
        return list(self._profiles)

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        if original_name and original_name != profile.name:
            self._profiles = [p for p in self._profiles if p.name != original_name]
        self._upsert_profile(profile)
        self._persist_profiles()

    def delete_profile(self, name: str) -> None:
        before = len(self._profiles)
        self._profiles = [p for p in self._profiles if p.name != name]
        if len(self._profiles) == before:
            raise ValueError(f"Profile '{name}' does not exist")
        if self._selected_profile == name:
            self._selected_profile = None
        self._persist_profiles()

    def get_profile(self, name: str) -> ConnectionProfile:
        for profile in self._profiles:
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' does not exist")

    async def connect_with_profile(self, name: str) -> State:
        profile = self.get_profile(name)
        state = await self.connect(
            endpoint_url=profile.endpoint_url,
            password=profile.password,
            accept_invalid_certs=profile.accept_invalid_certs or self._settings.accept_invalid_certs,
        )
        self._selected_profile = name
        return state

    async def connect(self, *, endpoint_url: str, password: str, accept_invalid_certs: bool = False) -> State:
        """Create a client and verify the node answers before keeping it."""

        client = self._client_factory(
            endpoint_url,
            password,
            accept_invalid_certs=accept_invalid_certs,
            timeout=self._settings.request_timeout,
        )
        try:
            state = await client.bus.state()
        except Exception:
            await client.aclose()
            raise
        await self.disconnect()
        self._client = client
        LOGGER.debug("Connected to %s (%s, %s)", endpoint_url, state.network, state.version)
        return state

    async def disconnect(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    async def browse(
        self,
        path: str,
        *,
        bucket: str | None = None,
        marker: str | None = None,
        limit: int | None = None,
    ) -> ResolvedPath | None:
        client = self._require_connection()
        return await client.bus.objects.get(
            path,
            bucket=self._bucket(bucket),
            marker=marker,
            limit=limit,
        )

    async def iter_objects(self, *, prefix: str | None = None, bucket: str | None = None) -> AsyncIterator[ObjectMetadata]:
        client = self._require_connection()
        batches = client.bus.objects.list(self._settings.batch_size, prefix=prefix, bucket=self._bucket(bucket))
        async for batch in batches:
            for entry in batch:
                yield entry

    async def stat(self, path: str, *, bucket: str | None = None) -> DownloadableObject:
        client = self._require_connection()
        descriptor = await client.worker.objects.download(path, bucket=self._bucket(bucket))
        if descriptor is None:
            raise NotFoundError(path)
        return descriptor

    async def download_object(
        self,
        path: str,
        destination: str | Path,
        *,
        bucket: str | None = None,
        offset: int = 0,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> int:
        """Download an object to ``destination`` and return the bytes written.

        A positive ``offset`` resumes into an existing file by appending.
        """

        descriptor = await self.stat(path, bucket=bucket)
        callback = self._build_transfer_callback(progress_callback, cancel_requested)
        stream: ObjectStream | SeekableObjectStream
        if offset > 0:
            stream = await descriptor.open_seekable_stream(offset)
        else:
            stream = await descriptor.open_stream()
        written = 0
        mode = "ab" if offset > 0 else "wb"
        async with stream:
            handle = await asyncio.to_thread(open, destination, mode)
            try:
                while True:
                    chunk = await stream.read(self._settings.chunk_size)
                    if not chunk:
                        break
                    await asyncio.to_thread(handle.write, chunk)
                    written += len(chunk)
                    if callback:
                        callback(len(chunk))
            finally:
                await asyncio.to_thread(handle.close)
        LOGGER.debug("Downloaded %d bytes of '%s' to %s", written, path, destination)
        return written

    async def upload_object(
        self,
        source_path: str | Path,
        path: str,
        *,
        bucket: str | None = None,
        content_type: str | None = None,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> None:
        client = self._require_connection()
        callback = self._build_transfer_callback(progress_callback, cancel_requested)
        if content_type is None:
            content_type, _ = mimetypes.guess_type(str(source_path))
        await client.worker.objects.upload(
            path,
            self._read_chunks(Path(source_path), callback),
            content_type=content_type,
            bucket=self._bucket(bucket),
        )

    async def delete_object(self, path: str, *, bucket: str | None = None) -> None:
        client = self._require_connection()
        await client.worker.objects.delete(path, bucket=self._bucket(bucket))

    async def _read_chunks(
        self,
        source: Path,
        callback: Optional[Callable[[int], None]],
    ) -> AsyncIterator[bytes]:
        chunk_size = self._settings.chunk_size
        with source.open("rb") as handle:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    return
                if callback:
                    callback(len(chunk))
                yield chunk

    def _bucket(self, bucket: str | None) -> str | None:
        return bucket or self._settings.default_bucket or None

    def _require_connection(self) -> RenterdClient:
        if self._client is None:
            raise NotConnectedError("Not connected to renterd")
        return self._client

    def _upsert_profile(self, profile: ConnectionProfile) -> None:
        for idx, existing in enumerate(self._profiles):
            if existing.name == profile.name:
                self._profiles[idx] = profile
                break
        else:
            self._profiles.append(profile)

    def _persist_profiles(self) -> None:
        self._storage.save(self._profiles)

    def _build_transfer_callback(
        self,
        progress_callback: Optional[Callable[[int], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ):
        if not progress_callback and not cancel_requested:
            return None

        transferred = 0

        def _callback(bytes_amount: int) -> None:
            nonlocal transferred
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")
            transferred += bytes_amount
            if progress_callback:
                progress_callback(transferred)
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")

        return _callback
