from __future__ import annotations
"""Client for the renterd ``worker`` API: object content upload and download."""
import logging

from .bus import read_model
from .downloads import DownloadableObject
from .models import DownloadStats, UploadStats, WorkerMemory, WorkerState
from .transport import ApiRequest, RenterdTransport, RequestContent, build_params, encode_object_path

LOGGER = logging.getLogger(__name__)

OBJECTS_PREFIX = "worker/objects"


def download_head_request(path: str, *, bucket: str | None = None) -> ApiRequest:
    return ApiRequest("HEAD", encode_object_path(path, OBJECTS_PREFIX), params=build_params(("bucket", bucket)))


def download_get_request(path: str, *, bucket: str | None = None) -> ApiRequest:
    return ApiRequest("GET", encode_object_path(path, OBJECTS_PREFIX), params=build_params(("bucket", bucket)))


def upload_request(
    path: str,
    content: RequestContent,
    *,
    content_type: str | None = None,
    bucket: str | None = None,
) -> ApiRequest:
    return ApiRequest(
        "PUT",
        encode_object_path(path, OBJECTS_PREFIX),
        params=build_params(("bucket", bucket)),
        content=content,
        content_type=content_type,
    )


def delete_request(path: str, *, bucket: str | None = None, batch: bool = False) -> ApiRequest:
    params = build_params(("bucket", bucket), ("batch", batch))
    return ApiRequest("DELETE", encode_object_path(path, OBJECTS_PREFIX), params=params)


class WorkerObjectsApi:
    """Object content operations on the worker."""

    def __init__(self, transport: RenterdTransport):
        self._transport = transport

    async def download(self, path: str, *, bucket: str | None = None) -> DownloadableObject | None:
        """Look up ``path`` with a HEAD request and describe its content.

        Returns ``None`` when the object does not exist. No content is
        transferred until one of the ``open_*`` methods is awaited.
        """

        response = await self._transport.send_optional(download_head_request(path, bucket=bucket))
        if response is None:
            return None
        descriptor = DownloadableObject.from_headers(
            path,
            bucket,
            response.headers,
            transport=self._transport,
            request=download_get_request(path, bucket=bucket),
        )
        LOGGER.debug(
            "HEAD '%s': length=%s seekable=%s",
            path,
            descriptor.length,
            descriptor.seekable,
        )
        return descriptor

    async def upload(
        self,
        path: str,
        content: RequestContent,
        *,
        content_type: str | None = None,
        bucket: str | None = None,
    ) -> None:
        """Upload ``content`` (bytes or an async byte iterator) to ``path``."""

        await self._transport.send(upload_request(path, content, content_type=content_type, bucket=bucket))

    async def delete(self, path: str, *, bucket: str | None = None, batch: bool = False) -> None:
        await self._transport.send(delete_request(path, bucket=bucket, batch=batch))


class WorkerApi:
    """Entry point for the ``worker`` API group."""

    def __init__(self, transport: RenterdTransport):
        self._transport = transport
        self.objects = WorkerObjectsApi(transport)

    async def state(self) -> WorkerState:
        response = await self._transport.send(ApiRequest("GET", "worker/state"))
        return read_model(response, WorkerState)

    async def id(self) -> str:
        return read_model(await self._transport.send(ApiRequest("GET", "worker/id")), str)

    async def memory(self) -> WorkerMemory:
        """Memory available to in-flight downloads and uploads."""

        return read_model(await self._transport.send(ApiRequest("GET", "worker/memory")), WorkerMemory)

    async def download_stats(self) -> DownloadStats:
        response = await self._transport.send(ApiRequest("GET", "worker/stats/downloads"))
        return read_model(response, DownloadStats)

    async def upload_stats(self) -> UploadStats:
        response = await self._transport.send(ApiRequest("GET", "worker/stats/uploads"))
        return read_model(response, UploadStats)
