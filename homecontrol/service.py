"""Single-device operations: toggle, set state, get state.

Each mutation runs the same chain: resolve -> merge -> handler -> update the
stored record -> persist -> broadcast. A per-device lock keeps two writes to
the same device from interleaving while the handler call is in flight.
"""

import asyncio
import copy
import logging
from typing import Awaitable, Dict, List, Optional, TypeVar

from homecontrol.errors import HandlerTimeoutError
from homecontrol.handlers import DeviceHandler
from homecontrol.merge import filter_update, merge
from homecontrol.models import Device, DeviceState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DeviceService:
    """Routes device operations to the owning handler and records the result."""

    def __init__(self, store, registry, broadcaster, handler_timeout: Optional[float] = 10.0):
        self.store = store
        self.registry = registry
        self.broadcaster = broadcaster
        self.handler_timeout = handler_timeout
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    async def call_handler(self, device_id: str, call: Awaitable[T]) -> T:
        """Await a handler call, bounded by the configured timeout.

        Raises:
            HandlerTimeoutError: if the handler does not answer in time
        """
        if not self.handler_timeout or self.handler_timeout <= 0:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.handler_timeout)
        except asyncio.TimeoutError as e:
            raise HandlerTimeoutError(
                f"Device {device_id} did not respond within {self.handler_timeout}s"
            ) from e

    def _stored_device(self, device_id: str) -> Optional[Device]:
        return self.store.state.find_device(device_id) if self.store.state else None

    async def apply_update(self, device: Device, handler: DeviceHandler, partial: DeviceState) -> DeviceState:
        """Merge ``partial`` into ``device`` and push it through ``handler``.

        Updates the stored record in memory but does not persist or broadcast;
        callers do that once they are done.

        Returns:
            The merged state of the device
        """
        async with self._lock_for(device.id):
            accepted = filter_update(device.capabilities, partial)
            new_state = merge(device.state, device.capabilities, partial)
            await self.call_handler(device.id, handler.set_state(device.id, accepted))

            record = self._stored_device(device.id)
            if record is not None:
                record.state = merge(record.state, record.capabilities, partial)
            if record is not device:
                device.state = new_state
            logger.debug(f"Device {device.id} state set to {new_state.to_dict()}")
            return copy.deepcopy(new_state)

    async def publish(self) -> List[Device]:
        """Persist the snapshot and broadcast the current device list."""
        await self.store.save()
        devices = await self.registry.list_all()
        await self.broadcaster.broadcast(devices)
        return devices

    async def toggle_device(self, device_id: str) -> DeviceState:
        """Toggle a device on/off.

        Raises:
            DeviceNotFoundError: if the id does not resolve
            HandlerError: if the handler fails
            PersistenceError: if the snapshot cannot be written
        """
        device, handler = await self.registry.lookup(device_id)
        async with self._lock_for(device.id):
            result = await self.call_handler(device.id, handler.toggle(device.id))
            record = self._stored_device(device.id)
            if record is not None:
                record.state.is_on = result.is_on
        logger.info(f"Device {device_id} toggled successfully (isOn={result.is_on})")
        await self.publish()
        return result

    async def set_device_state(self, device_id: str, partial: DeviceState) -> DeviceState:
        """Apply a partial update to one device, then persist and broadcast."""
        device, handler = await self.registry.lookup(device_id)
        new_state = await self.apply_update(device, handler, partial)
        logger.info(f"Device {device_id} state set successfully")
        await self.publish()
        return new_state

    async def get_device(self, device_id: str) -> Device:
        """Return the device record with the handler-reported state overlaid."""
        device, handler = await self.registry.lookup(device_id)
        reported = await self.call_handler(device.id, handler.get_state(device.id))
        result = copy.deepcopy(device)
        result.state = merge(device.state, device.capabilities, reported)
        return result

    async def get_all_devices(self) -> List[Device]:
        return await self.registry.list_all()
