#!/usr/bin/env python3
"""Test suite for registry.py - device id resolution."""

from unittest.mock import MagicMock

import pytest

from fakes import FakeBridge, hue_device
from homecontrol.errors import DeviceNotFoundError
from homecontrol.handlers import HandlerFactory, SimulatedHandler
from homecontrol.models import DeviceFamily, default_state
from homecontrol.registry import DeviceRegistry


class TestDeviceRegistry:
    """Test cases for DeviceRegistry."""

    def setup_method(self):
        self.store = MagicMock()
        self.store.state = default_state()
        self.bridge = FakeBridge(devices=[hue_device("7", name="Porch")])
        self.simulated = SimulatedHandler(self.store, delay=0)
        self.handlers = HandlerFactory.create_table(self.simulated, self.bridge)
        self.registry = DeviceRegistry(self.store, self.bridge, self.handlers)

    @pytest.mark.asyncio
    async def test_live_bridge_device_resolves_to_bridge(self):
        assert await self.registry.resolve("7") is self.bridge

    @pytest.mark.asyncio
    async def test_stored_device_resolves_by_family(self):
        device, handler = await self.registry.lookup("nano1")

        assert device is self.store.state.find_device("nano1")
        assert handler is self.simulated

    @pytest.mark.asyncio
    async def test_stored_hue_device_routes_to_bridge_handler(self):
        """A stored Hue record not live on the bridge still belongs to the bridge."""
        assert await self.registry.resolve("hue1") is self.bridge

    @pytest.mark.asyncio
    async def test_unknown_device_not_found(self):
        with pytest.raises(DeviceNotFoundError) as exc_info:
            await self.registry.resolve("doesNotExist")
        assert exc_info.value.device_id == "doesNotExist"

    @pytest.mark.asyncio
    async def test_bridge_wins_on_id_collision(self):
        """A bridge device shadows a stored device that shares its id."""
        self.store.state.find_device("nano1").type = DeviceFamily.MOCK
        self.bridge.devices.append(hue_device("nano1", name="Bridge Panel"))

        device, handler = await self.registry.lookup("nano1")

        assert handler is self.bridge
        assert device.name == "Bridge Panel"

    @pytest.mark.asyncio
    async def test_list_all_deduplicates_with_bridge_precedence(self):
        self.bridge.devices.append(hue_device("hue1", name="Bridge Hue"))

        devices = await self.registry.list_all()

        assert [d.id for d in devices] == ["nano1", "7", "hue1"]
        assert [d.name for d in devices if d.id == "hue1"] == ["Bridge Hue"]

    @pytest.mark.asyncio
    async def test_list_all_without_bridge_devices(self):
        self.bridge.devices = []

        devices = await self.registry.list_all()

        assert [d.id for d in devices] == ["hue1", "nano1"]

    @pytest.mark.asyncio
    async def test_numeric_ids_are_compared_as_strings(self):
        assert await self.registry.resolve(7) is self.bridge
