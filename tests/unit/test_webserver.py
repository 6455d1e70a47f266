#!/usr/bin/env python3
"""Test suite for webserver.py - HTTP routes and the realtime feed."""

import json
import os
import shutil
import tempfile
from unittest.mock import AsyncMock, patch

from aiohttp.test_utils import AioHTTPTestCase

from fakes import FakeBridge
from homecontrol.config import Config
from homecontrol.webserver import HomeControlServer


class TestHomeControlServer(AioHTTPTestCase):
    """Test cases for HomeControlServer."""

    async def get_application(self):
        """Create test application."""
        self.test_dir = tempfile.mkdtemp()
        self.data_file = os.path.join(self.test_dir, "data.json")
        config = Config(data_file=self.data_file, simulated_delay=0)

        self.bridge = FakeBridge()
        self.hc_server = HomeControlServer(config, bridge=self.bridge)
        return self.hc_server.app

    def tearDown(self):
        """Clean up test environment."""
        super().tearDown()
        if hasattr(self, 'test_dir'):
            shutil.rmtree(self.test_dir, ignore_errors=True)

    def read_snapshot(self) -> str:
        with open(self.data_file) as f:
            return f.read()

    async def test_health_check(self):
        """Test health check endpoint."""
        resp = await self.client.request("GET", "/health")
        self.assertEqual(resp.status, 200)
        data = await resp.json()
        self.assertEqual(data["status"], "healthy")

    async def test_startup_seeds_snapshot(self):
        self.assertTrue(os.path.exists(self.data_file))
        data = json.loads(self.read_snapshot())
        self.assertEqual(len(data["devices"]), 2)

    async def test_get_state(self):
        resp = await self.client.request("GET", "/state")
        self.assertEqual(resp.status, 200)
        data = await resp.json()

        self.assertEqual([d["id"] for d in data["devices"]], ["hue1", "nano1"])
        self.assertEqual([s["name"] for s in data["scenes"]], ["Morning", "Evening"])
        self.assertEqual(data["devices"][0]["state"]["isOn"], True)

    async def test_get_scenes(self):
        resp = await self.client.request("GET", "/scenes")
        self.assertEqual(resp.status, 200)
        data = await resp.json()
        self.assertEqual(data["scenes"][1]["actions"][0],
                         {"deviceId": "hue1", "state": {"temperature": 2700}})

    async def test_toggle_device(self):
        resp = await self.client.request("POST", "/device/nano1/toggle")
        self.assertEqual(resp.status, 200)
        data = await resp.json()

        self.assertEqual(data, {"success": True, "state": {"isOn": False}})
        snapshot = json.loads(self.read_snapshot())
        nano1 = [d for d in snapshot["devices"] if d["id"] == "nano1"][0]
        self.assertEqual(nano1["state"]["isOn"], False)

    async def test_toggle_unknown_device(self):
        """Unknown ids are a server error with no broadcast and no write."""
        before = self.read_snapshot()
        with patch.object(self.hc_server.broadcaster, "broadcast", new_callable=AsyncMock) as broadcast:
            resp = await self.client.request("POST", "/device/doesNotExist/toggle")

        self.assertEqual(resp.status, 500)
        data = await resp.json()
        self.assertIn("doesNotExist", data["error"])
        broadcast.assert_not_awaited()
        self.assertEqual(self.read_snapshot(), before)

    async def test_toggle_bridge_failure(self):
        self.bridge.fail = True
        resp = await self.client.request("POST", "/device/hue1/toggle")
        self.assertEqual(resp.status, 500)
        data = await resp.json()
        self.assertIn("unreachable", data["error"])

    async def test_set_device_state(self):
        resp = await self.client.request(
            "POST", "/device/nano1/state",
            json={"state": {"brightness": 10, "temperature": 3000}},
        )
        self.assertEqual(resp.status, 200)
        data = await resp.json()

        self.assertEqual(data["state"]["brightness"], 10)
        self.assertNotIn("temperature", data["state"])

    async def test_set_device_state_invalid_json(self):
        resp = await self.client.request("POST", "/device/nano1/state", data="not json")
        self.assertEqual(resp.status, 400)

    async def test_set_device_state_invalid_values(self):
        for state in ({"brightness": 150}, {"isOn": "false"}, {"color": {"r": 300}}):
            resp = await self.client.request("POST", "/device/nano1/state", json={"state": state})
            self.assertEqual(resp.status, 400)
        self.assertEqual(self.hc_server.store.state.find_device("nano1").state.brightness, 60)

    async def test_unexpected_handler_failure_has_error_body(self):
        with patch.object(self.hc_server.service, "toggle_device",
                          new_callable=AsyncMock, side_effect=KeyError("boom")):
            resp = await self.client.request("POST", "/device/nano1/toggle")

        self.assertEqual(resp.status, 500)
        data = await resp.json()
        self.assertIn("boom", data["error"])

    async def test_get_device(self):
        resp = await self.client.request("GET", "/device/nano1")
        self.assertEqual(resp.status, 200)
        data = await resp.json()
        self.assertEqual(data["device"]["name"], "Bedroom Panels")

    async def test_get_unknown_device(self):
        resp = await self.client.request("GET", "/device/ghost")
        self.assertEqual(resp.status, 404)

    async def test_create_scene(self):
        scene = {"name": "Reading", "actions": [{"deviceId": "nano1", "state": {"brightness": 90}}]}
        resp = await self.client.request("POST", "/scene/create", json={"scene": scene})
        self.assertEqual(resp.status, 200)
        data = await resp.json()

        self.assertTrue(data["success"])
        self.assertEqual(len(data["scenes"]), 3)
        # Actions are enriched with the device family
        self.assertEqual(data["scenes"][2]["actions"][0]["type"], "Nanoleaf")
        snapshot = json.loads(self.read_snapshot())
        self.assertEqual(snapshot["scenes"][2]["name"], "Reading")

    async def test_create_scene_duplicate_name_is_appended(self):
        scene = {"name": "Evening", "actions": [{"deviceId": "hue1", "state": {"isOn": False}}]}
        resp = await self.client.request("POST", "/scene/create", json={"scene": scene})
        self.assertEqual(resp.status, 200)
        data = await resp.json()
        self.assertEqual([s["name"] for s in data["scenes"]], ["Morning", "Evening", "Evening"])

    async def test_create_scene_with_unknown_device(self):
        """Unknown devices reject the scene without touching the store."""
        before = self.read_snapshot()
        scene = {
            "name": "Broken",
            "actions": [
                {"deviceId": "hue1", "state": {"isOn": True}},
                {"deviceId": "ghost", "state": {"isOn": True}},
            ],
        }
        resp = await self.client.request("POST", "/scene/create", json={"scene": scene})
        self.assertEqual(resp.status, 400)
        data = await resp.json()

        self.assertEqual(data["invalidDevices"], ["ghost"])
        self.assertIn("ghost", data["error"])
        self.assertEqual(len(self.hc_server.store.state.scenes), 2)
        self.assertEqual(self.read_snapshot(), before)

    async def test_create_scene_invalid_body(self):
        resp = await self.client.request("POST", "/scene/create", json={"scene": {"name": "x"}})
        self.assertEqual(resp.status, 400)

        resp = await self.client.request("POST", "/scene/create", data="{oops")
        self.assertEqual(resp.status, 400)

    async def test_run_scene(self):
        scene = {
            "name": "Evening",
            "actions": [
                {"deviceId": "hue1", "state": {"temperature": 2700}},
                {"deviceId": "nano1", "state": {"color": {"r": 255, "g": 100, "b": 50}}},
            ],
        }
        resp = await self.client.request("POST", "/scene/run", json={"scene": scene})
        self.assertEqual(resp.status, 200)
        data = await resp.json()

        self.assertTrue(data["success"])
        self.assertEqual(data["result"], {"succeeded": 2, "failed": 0, "errors": {}})
        devices = {d["id"]: d for d in data["devices"]}
        self.assertEqual(devices["hue1"]["state"]["temperature"], 2700)
        self.assertEqual(devices["hue1"]["state"]["brightness"], 50)
        self.assertEqual(devices["nano1"]["state"]["color"], {"r": 255, "g": 100, "b": 50})

    async def test_run_scene_partial_failure_is_still_ok(self):
        scene = {
            "name": "Partial",
            "actions": [
                {"deviceId": "ghost", "state": {"isOn": True}},
                {"deviceId": "nano1", "state": {"brightness": 5}},
            ],
        }
        resp = await self.client.request("POST", "/scene/run", json={"scene": scene})
        self.assertEqual(resp.status, 200)
        data = await resp.json()

        self.assertEqual(data["result"]["succeeded"], 1)
        self.assertEqual(data["result"]["failed"], 1)
        self.assertEqual(list(data["result"]["errors"]), ["ghost"])

    async def test_run_scene_without_name(self):
        scene = {"actions": [{"deviceId": "nano1", "state": {"isOn": False}}]}
        resp = await self.client.request("POST", "/scene/run", json={"scene": scene})
        self.assertEqual(resp.status, 200)

    async def test_run_scene_invalid_body(self):
        resp = await self.client.request("POST", "/scene/run", json={"nothing": True})
        self.assertEqual(resp.status, 400)

    async def test_websocket_snapshot_on_connect_and_after_change(self):
        ws = await self.client.ws_connect("/ws")
        try:
            first = await ws.receive_json(timeout=2)
            self.assertEqual(first["type"], "state")
            self.assertEqual(len(first["data"]["devices"]), 2)

            resp = await self.client.request("POST", "/device/nano1/toggle")
            self.assertEqual(resp.status, 200)

            update = await ws.receive_json(timeout=2)
            nano1 = [d for d in update["data"]["devices"] if d["id"] == "nano1"][0]
            self.assertEqual(nano1["state"]["isOn"], False)
        finally:
            await ws.close()

    async def test_websocket_scene_run_broadcasts_once(self):
        ws = await self.client.ws_connect("/ws")
        try:
            await ws.receive_json(timeout=2)
            with patch.object(self.hc_server.broadcaster, "broadcast",
                              wraps=self.hc_server.broadcaster.broadcast) as broadcast:
                scene = {"name": "Evening", "actions": [{"deviceId": "hue1", "state": {"temperature": 2700}}]}
                resp = await self.client.request("POST", "/scene/run", json={"scene": scene})
                self.assertEqual(resp.status, 200)

            self.assertEqual(broadcast.call_count, 1)
            update = await ws.receive_json(timeout=2)
            hue1 = [d for d in update["data"]["devices"] if d["id"] == "hue1"][0]
            self.assertEqual(hue1["state"]["temperature"], 2700)
        finally:
            await ws.close()

    async def test_cors_preflight(self):
        resp = await self.client.request("OPTIONS", "/scene/run")
        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
