"""Resolves device ids to handlers across live bridge and stored devices."""

import logging
from typing import Dict, List, Tuple

from homecontrol.errors import DeviceNotFoundError
from homecontrol.handlers import DeviceHandler
from homecontrol.models import Device, DeviceFamily

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Merges the bridge's live device list with the persisted device list.

    Precedence: a device id reported live by the bridge always resolves to the
    bridge handler, shadowing a stored device with the same id.
    """

    def __init__(self, store, bridge, handlers: Dict[DeviceFamily, DeviceHandler]):
        """Initialize the registry.

        Args:
            store: StateStore holding the persisted devices
            bridge: Bridge handler exposing ``list_devices()``
            handlers: Family -> handler table for stored devices
        """
        self.store = store
        self.bridge = bridge
        self.handlers = handlers

    def _stored_devices(self) -> List[Device]:
        return self.store.state.devices if self.store.state else []

    async def lookup(self, device_id: str) -> Tuple[Device, DeviceHandler]:
        """Find a device record and the handler that owns it.

        Raises:
            DeviceNotFoundError: if neither the bridge nor the store knows the id
        """
        device_id = str(device_id)

        for device in await self.bridge.list_devices():
            if device.id == device_id:
                return device, self.bridge

        for device in self._stored_devices():
            if device.id == device_id:
                handler = self.handlers.get(device.type)
                if handler is not None:
                    return device, handler
                logger.warning(f"No handler registered for family {device.type.value} (device {device_id})")
                break

        logger.warning(f"Device {device_id} not found in bridge or stored devices")
        raise DeviceNotFoundError(device_id)

    async def resolve(self, device_id: str) -> DeviceHandler:
        """Return the handler that owns ``device_id``."""
        _, handler = await self.lookup(device_id)
        return handler

    async def list_all(self) -> List[Device]:
        """All known devices; bridge devices win on id collision."""
        bridge_devices = await self.bridge.list_devices()
        bridge_ids = {d.id for d in bridge_devices}
        stored_only = [d for d in self._stored_devices() if d.id not in bridge_ids]
        return stored_only + bridge_devices
