from __future__ import annotations
"""Top-level client bundling the bus, worker and autopilot APIs."""
import httpx

from .autopilot import AutopilotApi
from .bus import BusApi
from .transport import DEFAULT_TIMEOUT, RenterdTransport
from .worker import WorkerApi


class RenterdClient:
    """Typed client for a renterd node.

    Every API group shares one :class:`RenterdTransport`, and with it one
    connection pool. Close the client (or use it as an async context
    manager) when done.
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
        self._transport = RenterdTransport(
            api_endpoint_url,
            api_password,
            accept_invalid_certs=accept_invalid_certs,
            verbose_logging=verbose_logging,
            timeout=timeout,
            http_transport=http_transport,
        )
        self.bus = BusApi(self._transport)
        self.worker = WorkerApi(self._transport)
        self.autopilot = AutopilotApi(self._transport)

    @property
    def transport(self) -> RenterdTransport:
        return self._transport

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> RenterdClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
