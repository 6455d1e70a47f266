"""
Device handler module for the supported device families.
Provides one handler per family behind a common async interface:
simulated devices, Philips Hue bridge lights, and placeholders for
families without a working integration yet.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from homecontrol.errors import ConnectivityError, HandlerError, NotImplementedHandlerError
from homecontrol.merge import merge
from homecontrol.models import Capabilities, Device, DeviceFamily, DeviceState

logger = logging.getLogger(__name__)

# Hue bridge brightness range
HUE_MIN_BRI = 1
HUE_MAX_BRI = 254

# Every field of a partial update is forwarded as-is by the simulated handler
ALL_CAPABILITIES = Capabilities(brightness=True, color=True, temperature=True)


def percent_to_bri(percent: int) -> int:
    """Convert 0-100 brightness to the bridge's 1-254 scale."""
    bri = round(percent * HUE_MAX_BRI / 100)
    return max(HUE_MIN_BRI, min(HUE_MAX_BRI, bri))


def bri_to_percent(bri: Optional[int]) -> Optional[int]:
    """Convert bridge brightness (1-254) to 0-100."""
    if bri is None:
        return None
    return max(0, min(100, round(bri * 100 / HUE_MAX_BRI)))


class DeviceHandler(ABC):
    """Abstract base class for device handlers."""

    family: Optional[DeviceFamily] = None

    @abstractmethod
    async def toggle(self, device_id: str) -> DeviceState:
        """Flip the power state of a device and return the new state."""

    @abstractmethod
    async def set_state(self, device_id: str, partial: DeviceState) -> DeviceState:
        """Apply an (already capability-filtered) partial update."""

    @abstractmethod
    async def get_state(self, device_id: str) -> DeviceState:
        """Get current state of a device."""

    async def close(self) -> None:
        """Release any resources held by the handler."""


class SimulatedHandler(DeviceHandler):
    """Handler for devices that only exist in the local store.

    Never fails. Each call sleeps briefly to model hardware latency.
    """

    family = DeviceFamily.MOCK

    def __init__(self, store, delay: float = 0.1):
        self.store = store
        self.delay = delay

    def _stored_state(self, device_id: str) -> DeviceState:
        state = self.store.state
        device = state.find_device(device_id) if state else None
        return device.state if device else DeviceState()

    async def toggle(self, device_id: str) -> DeviceState:
        logger.info(f"[Simulated] Toggling device {device_id}")
        await asyncio.sleep(self.delay)
        # Unknown power counts as off
        return DeviceState(is_on=not bool(self._stored_state(device_id).is_on))

    async def set_state(self, device_id: str, partial: DeviceState) -> DeviceState:
        logger.info(f"[Simulated] Setting state for device {device_id}: {partial.to_dict()}")
        await asyncio.sleep(self.delay)
        return merge(self._stored_state(device_id), ALL_CAPABILITIES, partial)

    async def get_state(self, device_id: str) -> DeviceState:
        logger.debug(f"[Simulated] Getting state for device {device_id}")
        await asyncio.sleep(self.delay / 2)
        return merge(self._stored_state(device_id), ALL_CAPABILITIES, DeviceState())


class UnimplementedHandler(DeviceHandler):
    """Placeholder for a device family whose integration is not built yet."""

    def __init__(self, family: DeviceFamily):
        self.family = family

    def _fail(self):
        raise NotImplementedHandlerError(f"{self.family.value} integration not yet implemented")

    async def toggle(self, device_id: str) -> DeviceState:
        self._fail()

    async def set_state(self, device_id: str, partial: DeviceState) -> DeviceState:
        self._fail()

    async def get_state(self, device_id: str) -> DeviceState:
        self._fail()


class HueBridgeConnection:
    """Thin client for the Hue bridge REST API (v1)."""

    def __init__(self, bridge_ip: str, username: str, timeout: float = 5.0):
        self.base_url = f"http://{bridge_ip}/api/{username}"
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Open the HTTP session and verify the username is accepted."""
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        await self.request("GET", "/lights")

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Send a request to the bridge.

        Raises:
            ConnectivityError: if the bridge cannot be reached or its reply is not JSON
            HandlerError: if the bridge rejects the request
        """
        if self.session is None:
            raise ConnectivityError("Hue bridge session is not open")
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, json=payload) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ConnectivityError(f"Hue bridge request {method} {path} failed: {e}") from e
        except ValueError as e:
            raise ConnectivityError(f"Hue bridge returned an unreadable response to {method} {path}: {e}") from e

        # The bridge reports errors as [{"error": {...}}] with a 200 status
        if isinstance(data, list):
            errors = [item["error"] for item in data if isinstance(item, dict) and "error" in item]
            if errors:
                description = errors[0].get("description", "unknown error")
                raise HandlerError(f"Hue bridge rejected {method} {path}: {description}")
        return data

    async def get_lights(self) -> Dict[str, Dict[str, Any]]:
        return await self.request("GET", "/lights")

    async def get_light(self, light_id: str) -> Dict[str, Any]:
        return await self.request("GET", f"/lights/{light_id}")

    async def set_light_state(self, light_id: str, body: Dict[str, Any]) -> Any:
        return await self.request("PUT", f"/lights/{light_id}/state", body)


class HueHandler(DeviceHandler):
    """Handler for lights behind a Philips Hue bridge.

    The bridge connection is created on first use and cached. A failed
    connection attempt clears the cache so the next call retries.
    """

    family = DeviceFamily.HUE

    def __init__(
        self,
        bridge_ip: Optional[str],
        username: Optional[str],
        connection_factory: Optional[Callable[[str, str], HueBridgeConnection]] = None,
    ):
        self.bridge_ip = bridge_ip
        self.username = username
        self._connection_factory = connection_factory or HueBridgeConnection
        self._connection: Optional[HueBridgeConnection] = None

        if not self.configured:
            logger.warning("[Hue] Bridge IP or username missing. Hue device operations will fail.")

    @property
    def configured(self) -> bool:
        return bool(self.bridge_ip and self.username)

    async def get_connection(self) -> HueBridgeConnection:
        """Return the cached bridge connection, establishing it if needed."""
        if self._connection is not None:
            return self._connection

        if not self.configured:
            raise ConnectivityError("Cannot connect to Hue bridge: bridge IP or username not set")

        logger.info(f"[Hue] Connecting to bridge at {self.bridge_ip}")
        connection = self._connection_factory(self.bridge_ip, self.username)
        try:
            await connection.connect()
        except HandlerError as e:
            self._connection = None
            await connection.close()
            logger.error(f"[Hue] Failed to connect to bridge: {e}")
            raise ConnectivityError(f"Failed to connect to Hue bridge: {e}") from e

        self._connection = connection
        logger.info("[Hue] Connected to bridge")
        return connection

    async def invalidate(self) -> None:
        """Drop the cached connection so the next call reconnects."""
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()

    async def _call(self, operation, *args):
        connection = await self.get_connection()
        try:
            return await operation(connection, *args)
        except ConnectivityError:
            await self.invalidate()
            raise

    @staticmethod
    def _state_from_light(light: Dict[str, Any]) -> DeviceState:
        if not isinstance(light, dict) or not isinstance(light.get("state", {}), dict):
            raise HandlerError(f"Unexpected light record from Hue bridge: {light!r}")
        light_state = light.get("state", {})
        on = light_state.get("on")
        return DeviceState(
            is_on=bool(on) if on is not None else None,
            brightness=bri_to_percent(light_state.get("bri")),
        )

    async def list_devices(self) -> List[Device]:
        """List all lights on the bridge. Failures yield an empty list."""
        if not self.configured:
            return []
        try:
            lights = await self._call(lambda c: c.get_lights())
            if not isinstance(lights, dict):
                raise HandlerError(f"Unexpected light list from Hue bridge: {lights!r}")
            devices = []
            for light_id, light in lights.items():
                devices.append(Device(
                    id=str(light_id),
                    name=light.get("name") if isinstance(light, dict) else None,
                    type=DeviceFamily.HUE,
                    capabilities=Capabilities(brightness=True, color=True, temperature=True),
                    state=self._state_from_light(light),
                ))
        except HandlerError as e:
            logger.warning(f"[Hue] Failed to fetch lights: {e}")
            return []
        return devices

    async def toggle(self, device_id: str) -> DeviceState:
        async def _toggle(connection: HueBridgeConnection) -> DeviceState:
            light = await connection.get_light(device_id)
            current = self._state_from_light(light)
            new_on = not bool(current.is_on)
            await connection.set_light_state(device_id, {"on": new_on})
            return DeviceState(is_on=new_on, brightness=current.brightness)

        try:
            return await self._call(_toggle)
        except HandlerError as e:
            logger.error(f"[Hue] Failed to toggle light {device_id}: {e}")
            raise

    async def set_state(self, device_id: str, partial: DeviceState) -> DeviceState:
        # Only power and brightness are mapped; color and temperature are ignored
        body: Dict[str, Any] = {}
        if partial.is_on is not None:
            body["on"] = partial.is_on
        if partial.brightness is not None:
            body["bri"] = percent_to_bri(partial.brightness)

        async def _set(connection: HueBridgeConnection) -> DeviceState:
            if body:
                await connection.set_light_state(device_id, body)
            return self._state_from_light(await connection.get_light(device_id))

        try:
            return await self._call(_set)
        except HandlerError as e:
            logger.error(f"[Hue] Failed to set state for light {device_id}: {e}")
            raise

    async def get_state(self, device_id: str) -> DeviceState:
        async def _get(connection: HueBridgeConnection) -> DeviceState:
            return self._state_from_light(await connection.get_light(device_id))

        try:
            return await self._call(_get)
        except HandlerError as e:
            logger.error(f"[Hue] Failed to get state for light {device_id}: {e}")
            raise

    async def close(self) -> None:
        await self.invalidate()


class HandlerFactory:
    """Factory for building the family -> handler table."""

    @staticmethod
    def create_table(
        simulated: DeviceHandler,
        bridge: DeviceHandler,
        nanoleaf_native: bool = False,
    ) -> Dict[DeviceFamily, DeviceHandler]:
        """Map every device family to the handler that owns it.

        Nanoleaf panels are simulated until the native integration exists;
        ``nanoleaf_native`` routes them to the placeholder instead.
        """
        nanoleaf = UnimplementedHandler(DeviceFamily.NANOLEAF) if nanoleaf_native else simulated
        return {
            DeviceFamily.HUE: bridge,
            DeviceFamily.NANOLEAF: nanoleaf,
            DeviceFamily.MOCK: simulated,
        }
