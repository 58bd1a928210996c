from __future__ import annotations
"""Client for the renterd ``autopilot`` API: loop state, configuration and triggers."""
import logging

from .bus import read_model
from .models import AutopilotConfig, AutopilotState, TriggerResponse
from .transport import ApiRequest, RenterdTransport

LOGGER = logging.getLogger(__name__)


def state_request() -> ApiRequest:
    return ApiRequest("GET", "autopilot/state")


def config_request() -> ApiRequest:
    return ApiRequest("GET", "autopilot/config")


def update_config_request(config: AutopilotConfig) -> ApiRequest:
    return ApiRequest("PUT", "autopilot/config", json=config.to_json())


def trigger_request(force_scan: bool = False) -> ApiRequest:
    return ApiRequest("POST", "autopilot/trigger", json={"forceScan": force_scan})


class AutopilotApi:
    """Entry point for the ``autopilot`` API group."""

    def __init__(self, transport: RenterdTransport):
        self._transport = transport

    async def state(self) -> AutopilotState:
        return read_model(await self._transport.send(state_request()), AutopilotState)

    async def config(self) -> AutopilotConfig:
        return read_model(await self._transport.send(config_request()), AutopilotConfig)

    async def update_config(self, config: AutopilotConfig) -> None:
        await self._transport.send(update_config_request(config))

    async def trigger(self, *, force_scan: bool = False) -> bool:
        """Wake the autopilot loop. Returns whether a new iteration was started."""

        response = await self._transport.send(trigger_request(force_scan))
        triggered = read_model(response, TriggerResponse).triggered
        LOGGER.debug("Autopilot trigger (force_scan=%s) -> %s", force_scan, triggered)
        return triggered
