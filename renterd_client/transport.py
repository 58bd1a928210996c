from __future__ import annotations
"""HTTP plumbing shared by every renterd API group."""
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from typing import Any, AsyncIterable, AsyncIterator, Optional, Union
from urllib.parse import quote, urlsplit

import httpx

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
AUTH_USERNAME = "api"

Params = list[tuple[str, str]]
RequestContent = Union[bytes, AsyncIterable[bytes]]


class RenterdError(Exception):
    """Base class for errors raised by the renterd client."""


class ClientConfigError(RenterdError):
    """Raised when the client is constructed with unusable settings."""


class AuthenticationError(RenterdError):
    """Raised when the server rejects the API password."""

    def __init__(self) -> None:
        super().__init__("incorrect api password")


class NotFoundError(RenterdError):
    """Raised when a resource that must exist is reported missing."""

    def __init__(self, path: str = "") -> None:
        self.path = path
        super().__init__(f"server sent 404 not found for '{path}'" if path else "server sent 404 not found")


class HttpResponseError(RenterdError):
    """Raised for any other 4xx/5xx response."""

    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text
        super().__init__(f"http response error, status code: {status_code}, text: '{text}'")


class UnexpectedResponseError(RenterdError):
    """Raised when the server answers with something the client cannot use."""


@dataclass
class ApiRequest:
    """Everything needed to issue one API call, independent of the HTTP client."""

    method: str
    path: str
    params: Optional[Params] = None
    json: Any = None
    content: Optional[RequestContent] = None
    content_type: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)

    def with_header(self, name: str, value: str) -> ApiRequest:
        headers = dict(self.headers)
        headers[name] = value
        return ApiRequest(
            method=self.method,
            path=self.path,
            params=self.params,
            json=self.json,
            content=self.content,
            content_type=self.content_type,
            headers=headers,
        )


_DOT_SEGMENTS = {".": "%2E", "..": "%2E%2E"}


def encode_object_path(path: str, prefix: str) -> str:
    """Join an object path onto an endpoint prefix.

    The leading slash is dropped; everything except ``/`` is percent-encoded
    so names containing ``?``, ``#`` or ``%`` reach the server intact.
    ``.`` and ``..`` segments are escaped too, otherwise URL normalisation
    would resolve them and address a different object.
    """

    segments = path.lstrip("/").split("/")
    encoded = "/".join(_DOT_SEGMENTS.get(segment) or quote(segment, safe="") for segment in segments)
    return f"{prefix}/{encoded}"


def build_params(*pairs: tuple[str, Any]) -> Optional[Params]:
    """Collect query parameters, skipping the ones whose value is ``None``."""

    params = [(name, _param_value(value)) for name, value in pairs if value is not None]
    return params or None


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def validate_endpoint_url(api_endpoint_url: str | None) -> str:
    if not api_endpoint_url:
        raise ClientConfigError(
            "api endpoint is missing, you need to specify a valid url before building the client"
        )
    try:
        parts = urlsplit(api_endpoint_url)
    except ValueError as exc:
        raise ClientConfigError(f"api endpoint '{api_endpoint_url}' is invalid") from exc
    if parts.scheme.lower() not in {"http", "https"} or not parts.hostname:
        raise ClientConfigError(f"api endpoint '{api_endpoint_url}' is invalid")
    return api_endpoint_url


class RenterdTransport:
    """Sends :class:`ApiRequest` objects through one shared ``httpx.AsyncClient``.

    The transport keeps no per-call state, so a single instance is shared by
    every API group and by every stream or listing opened from them.
    """

    def __init__(
        self,
        api_endpoint_url: str | None,
        api_password: str | None,
        *,
        accept_invalid_certs: bool = False,
        verbose_logging: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        base_url = validate_endpoint_url(api_endpoint_url)
        if api_password is None:
            raise ClientConfigError(
                "api password is missing, you need to specify a password before building the client"
            )
        event_hooks = {}
        if verbose_logging:
            event_hooks = {"request": [_log_request], "response": [_log_response]}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=httpx.BasicAuth(AUTH_USERNAME, api_password),
            verify=not accept_invalid_certs,
            timeout=timeout,
            transport=http_transport,
            event_hooks=event_hooks,
        )

    @property
    def base_url(self) -> httpx.URL:
        return self._client.base_url

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    def build_request(self, request: ApiRequest) -> httpx.Request:
        headers = dict(request.headers)
        if request.content is not None and request.content_type:
            headers["Content-Type"] = request.content_type
        kwargs: dict[str, Any] = {"params": request.params, "headers": headers}
        if request.json is not None:
            kwargs["json"] = request.json
        elif request.content is not None:
            kwargs["content"] = request.content
        return self._client.build_request(request.method, request.path, **kwargs)

    async def send(self, request: ApiRequest) -> httpx.Response:
        """Send a request whose target must exist; 404 raises :class:`NotFoundError`."""

        response = await self.send_optional(request)
        if response is None:
            raise NotFoundError(request.path)
        return response

    async def send_optional(self, request: ApiRequest) -> httpx.Response | None:
        """Send a lookup request; 404 is reported as ``None``."""

        return await self._dispatch(request, stream=False)

    @asynccontextmanager
    async def open_stream(self, request: ApiRequest) -> AsyncIterator[httpx.Response]:
        """Open a response whose body is read lazily; it is closed on exit."""

        response = await self.open_response(request)
        try:
            yield response
        finally:
            await response.aclose()

    async def open_response(self, request: ApiRequest) -> httpx.Response:
        """Open a streaming response. The caller owns it and must ``aclose()`` it."""

        response = await self._dispatch(request, stream=True)
        if response is None:
            raise NotFoundError(request.path)
        return response

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RenterdTransport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _dispatch(self, request: ApiRequest, *, stream: bool) -> httpx.Response | None:
        http_request = self.build_request(request)
        LOGGER.debug("%s %s", request.method, http_request.url)
        response = await self._client.send(http_request, stream=stream)
        status = response.status_code
        if status == 401:
            await response.aclose()
            raise AuthenticationError()
        if status == 404:
            await response.aclose()
            return None
        if status >= 400:
            if stream:
                await response.aread()
                await response.aclose()
            raise HttpResponseError(status, _response_text(response))
        return response


def _response_text(response: httpx.Response) -> str:
    try:
        return response.content.decode("utf-8", errors="replace").strip()
    except httpx.ResponseNotRead:
        return ""


async def _log_request(request: httpx.Request) -> None:
    LOGGER.debug("request: %s %s headers=%s", request.method, request.url, list(request.headers.keys()))


async def _log_response(response: httpx.Response) -> None:
    LOGGER.debug(
        "response: %s %s -> %d",
        response.request.method,
        response.request.url,
        response.status_code,
    )
