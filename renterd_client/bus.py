from __future__ import annotations
"""Client for the renterd ``bus`` API: object metadata, buckets, consensus, alerts and state."""
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from .models import (
    Alert,
    AlertPage,
    Bucket,
    BucketPolicy,
    ConsensusState,
    InvalidDataError,
    ObjectMetadata,
    PageRequest,
    PageResult,
    RenameMode,
    ResolvedPath,
    State,
    decode,
    parse_metadata_list,
    parse_resolved_path,
)
from .transport import ApiRequest, RenterdTransport, build_params, encode_object_path

LOGGER = logging.getLogger(__name__)

OBJECTS_PREFIX = "bus/objects"


def read_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidDataError(f"response from {response.request.url} is not valid JSON") from exc


def read_model(response: httpx.Response, target: Any) -> Any:
    """Decode a JSON body into ``target``; a shape mismatch raises :class:`InvalidDataError`."""

    return decode(target, read_json(response))


def get_object_request(
    path: str,
    *,
    bucket: str | None = None,
    prefix: str | None = None,
    offset: int | None = None,
    marker: str | None = None,
    limit: int | None = None,
) -> ApiRequest:
    params = build_params(
        ("bucket", bucket),
        ("prefix", prefix),
        ("offset", offset),
        ("marker", marker),
        ("limit", limit),
    )
    return ApiRequest("GET", encode_object_path(path, OBJECTS_PREFIX), params=params)


def list_objects_request(page: PageRequest) -> ApiRequest:
    return ApiRequest("POST", f"{OBJECTS_PREFIX}/list", json=page.to_json())


def delete_object_request(path: str, *, bucket: str | None = None, batch: bool = False) -> ApiRequest:
    params = build_params(("bucket", bucket), ("batch", batch))
    return ApiRequest("DELETE", encode_object_path(path, OBJECTS_PREFIX), params=params)


def copy_object_request(
    source_path: str,
    source_bucket: str,
    destination_path: str,
    destination_bucket: str,
) -> ApiRequest:
    body = {
        "sourceBucket": source_bucket,
        "sourcePath": source_path,
        "destinationBucket": destination_bucket,
        "destinationPath": destination_path,
    }
    return ApiRequest("POST", f"{OBJECTS_PREFIX}/copy", json=body)


def rename_object_request(
    from_path: str,
    to_path: str,
    *,
    bucket: str,
    force: bool = False,
    mode: RenameMode = RenameMode.SINGLE,
) -> ApiRequest:
    body = {
        "bucket": bucket,
        "force": force,
        "from": from_path,
        "to": to_path,
        "mode": RenameMode(mode).value,
    }
    return ApiRequest("POST", f"{OBJECTS_PREFIX}/rename", json=body)


def search_objects_request(
    *,
    key: str | None = None,
    bucket: str | None = None,
    offset: int | None = None,
    limit: int | None = None,
) -> ApiRequest:
    params = build_params(("key", key), ("bucket", bucket), ("offset", offset), ("limit", limit))
    return ApiRequest("GET", "bus/search/objects", params=params)


class ObjectsApi:
    """Object metadata operations on the bus."""

    def __init__(self, transport: RenterdTransport):
        self._transport = transport

    async def get(
        self,
        path: str,
        *,
        bucket: str | None = None,
        prefix: str | None = None,
        offset: int | None = None,
        marker: str | None = None,
        limit: int | None = None,
    ) -> ResolvedPath | None:
        """Resolve ``path`` to a file or a directory page.

        Returns ``None`` when the server reports the path as missing.
        """

        request = get_object_request(
            path,
            bucket=bucket,
            prefix=prefix,
            offset=offset,
            marker=marker,
            limit=limit,
        )
        response = await self._transport.send_optional(request)
        if response is None:
            LOGGER.debug("Object path '%s' not found", path)
            return None
        return parse_resolved_path(read_json(response))

    async def list_page(self, page: PageRequest) -> PageResult:
        """Fetch a single page from the listing endpoint."""

        response = await self._transport.send(list_objects_request(page))
        return read_model(response, PageResult)

    def list(
        self,
        batch_size: int,
        *,
        prefix: str | None = None,
        bucket: str | None = None,
    ) -> AsyncIterator[list[ObjectMetadata]]:
        """Iterate over every object under ``prefix``, one batch per page.

        The returned iterator is lazy: nothing is requested until the first
        batch is pulled. It cannot be restarted; call ``list`` again to
        start over.
        """

        # validated here so a bad size fails at the call, not at first pull
        PageRequest(limit=batch_size, prefix=prefix, bucket=bucket)
        return self._iter_batches(batch_size, prefix=prefix, bucket=bucket)

    async def _iter_batches(
        self,
        batch_size: int,
        *,
        prefix: str | None,
        bucket: str | None,
    ) -> AsyncIterator[list[ObjectMetadata]]:
        has_more = True
        marker: str | None = None
        page_number = 1
        while has_more:
            page = PageRequest(limit=batch_size, prefix=prefix, bucket=bucket, marker=marker)
            result = await self.list_page(page)
            has_more = result.has_more
            marker = result.next_marker
            if not result.entries:
                if has_more:
                    LOGGER.warning(
                        "Listing page %d under prefix %r was empty but the server reported more results; stopping",
                        page_number,
                        prefix,
                    )
                return
            LOGGER.debug("Listing page %d returned %d entries", page_number, len(result.entries))
            yield result.entries
            page_number += 1

    async def delete(self, path: str, *, bucket: str | None = None, batch: bool = False) -> None:
        await self._transport.send(delete_object_request(path, bucket=bucket, batch=batch))

    async def copy(
        self,
        *,
        source_path: str,
        source_bucket: str,
        destination_path: str,
        destination_bucket: str,
    ) -> None:
        await self._transport.send(
            copy_object_request(source_path, source_bucket, destination_path, destination_bucket)
        )

    async def rename(
        self,
        from_path: str,
        to_path: str,
        *,
        bucket: str,
        force: bool = False,
        mode: RenameMode = RenameMode.SINGLE,
    ) -> None:
        await self._transport.send(
            rename_object_request(from_path, to_path, bucket=bucket, force=force, mode=mode)
        )

    async def search(
        self,
        *,
        key: str | None = None,
        bucket: str | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> list[ObjectMetadata]:
        request = search_objects_request(key=key, bucket=bucket, offset=offset, limit=limit)
        response = await self._transport.send(request)
        return parse_metadata_list(read_json(response))


def list_buckets_request() -> ApiRequest:
    return ApiRequest("GET", "bus/buckets")


def get_bucket_request(name: str) -> ApiRequest:
    return ApiRequest("GET", f"bus/bucket/{name}")


def create_bucket_request(name: str, *, public_read_access: bool = False) -> ApiRequest:
    body = {"name": name, "policy": BucketPolicy(public_read_access=public_read_access).to_json()}
    return ApiRequest("POST", "bus/buckets", json=body)


def update_bucket_policy_request(name: str, *, public_read_access: bool) -> ApiRequest:
    body = {"policy": BucketPolicy(public_read_access=public_read_access).to_json()}
    return ApiRequest("PUT", f"bus/bucket/{name}/policy", json=body)


def delete_bucket_request(name: str) -> ApiRequest:
    return ApiRequest("DELETE", f"bus/bucket/{name}")


class BucketsApi:
    def __init__(self, transport: RenterdTransport):
        self._transport = transport

    async def list(self) -> list[Bucket]:
        return read_model(await self._transport.send(list_buckets_request()), list[Bucket])

    async def get(self, name: str) -> Optional[Bucket]:
        response = await self._transport.send_optional(get_bucket_request(name))
        if response is None:
            return None
        return read_model(response, Bucket)

    async def create(self, name: str, *, public_read_access: bool = False) -> None:
        await self._transport.send(create_bucket_request(name, public_read_access=public_read_access))

    async def update_policy(self, name: str, *, public_read_access: bool) -> None:
        await self._transport.send(update_bucket_policy_request(name, public_read_access=public_read_access))

    async def delete(self, name: str) -> None:
        await self._transport.send(delete_bucket_request(name))


def consensus_state_request() -> ApiRequest:
    return ApiRequest("GET", "bus/consensus/state")


class ConsensusApi:
    def __init__(self, transport: RenterdTransport):
        self._transport = transport

    async def state(self) -> ConsensusState:
        return read_model(await self._transport.send(consensus_state_request()), ConsensusState)


def list_alerts_request(*, offset: int | None = None, limit: int | None = None) -> ApiRequest:
    return ApiRequest("GET", "bus/alerts", params=build_params(("offset", offset), ("limit", limit)))


def dismiss_alerts_request(ids: list[str] | None = None) -> ApiRequest:
    """Dismiss the given alerts, or every alert when ``ids`` is empty."""

    if ids:
        return ApiRequest("POST", "bus/alerts/dismiss", json=list(ids))
    return ApiRequest("POST", "bus/alerts/dismiss", params=build_params(("all", True)))


def register_alert_request(alert: Alert) -> ApiRequest:
    return ApiRequest("POST", "bus/alerts/register", json=alert.to_json())


class AlertsApi:
    def __init__(self, transport: RenterdTransport):
        self._transport = transport

    async def get_all(self, *, offset: int | None = None, limit: int | None = None) -> AlertPage:
        response = await self._transport.send(list_alerts_request(offset=offset, limit=limit))
        return read_model(response, AlertPage)

    async def dismiss(self, ids: list[str] | None = None) -> None:
        LOGGER.debug("Dismissing %s", f"{len(ids)} alert(s)" if ids else "all alerts")
        await self._transport.send(dismiss_alerts_request(ids))

    async def register(self, alert: Alert) -> None:
        await self._transport.send(register_alert_request(alert))


class BusApi:
    """Entry point for the ``bus`` API group."""

    def __init__(self, transport: RenterdTransport):
        self._transport = transport
        self.objects = ObjectsApi(transport)
        self.buckets = BucketsApi(transport)
        self.consensus = ConsensusApi(transport)
        self.alerts = AlertsApi(transport)

    async def state(self) -> State:
        response = await self._transport.send(ApiRequest("GET", "bus/state"))
        return read_model(response, State)
