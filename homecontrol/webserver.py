#!/usr/bin/env python3
"""Web server for the home control API and realtime state feed."""

import asyncio
import json
import logging
from typing import Optional

from aiohttp import web, WSMsgType
from aiohttp.web import Request, Response

from homecontrol.broadcaster import ChangeBroadcaster
from homecontrol.config import Config, load_config
from homecontrol.errors import DeviceNotFoundError, HomeControlError, PersistenceError
from homecontrol.handlers import HandlerFactory, HueHandler, SimulatedHandler
from homecontrol.models import DeviceState, Scene
from homecontrol.registry import DeviceRegistry
from homecontrol.scenes import SceneExecutor
from homecontrol.service import DeviceService
from homecontrol.store import StateStore

logger = logging.getLogger(__name__)


@web.middleware
async def cors_middleware(request: Request, handler):
    """Allow the browser dashboard to call the API from another origin."""
    if request.method == "OPTIONS":
        response = web.Response()
    else:
        response = await handler(request)
    if not response.prepared:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


@web.middleware
async def error_middleware(request: Request, handler):
    """Turn unexpected failures into a JSON error body instead of a bare 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unhandled error in {request.method} {request.path}: {e}")
        return web.json_response({"error": f"Internal server error: {e}"}, status=500)


class HomeControlServer:
    """HTTP + websocket front end for the device and scene engine."""

    def __init__(self, config: Optional[Config] = None, store: Optional[StateStore] = None, bridge=None):
        self.config = config or Config()
        self.port = self.config.port

        self.store = store or StateStore(self.config.data_file)
        self.bridge = bridge or HueHandler(self.config.hue_bridge_ip, self.config.hue_username)
        self.simulated = SimulatedHandler(self.store, delay=self.config.simulated_delay)
        self.handlers = HandlerFactory.create_table(
            self.simulated, self.bridge, nanoleaf_native=self.config.nanoleaf_native
        )
        self.registry = DeviceRegistry(self.store, self.bridge, self.handlers)
        self.broadcaster = ChangeBroadcaster()
        self.service = DeviceService(
            self.store, self.registry, self.broadcaster, handler_timeout=self.config.handler_timeout
        )
        self.executor = SceneExecutor(self.registry, self.service)

        self.app = web.Application(middlewares=[cors_middleware, error_middleware])
        self.app.on_startup.append(self._on_startup)
        self.app.on_shutdown.append(self._on_shutdown)
        self.app.on_cleanup.append(self._on_cleanup)
        self.setup_routes()

    def setup_routes(self):
        """Set up web routes."""
        self.app.router.add_get('/health', self.health_check)
        self.app.router.add_get('/state', self.get_state)
        self.app.router.add_get('/scenes', self.get_scenes)
        self.app.router.add_get('/device/{id}', self.get_device)
        self.app.router.add_post('/device/{id}/toggle', self.toggle_device)
        self.app.router.add_post('/device/{id}/state', self.set_device_state)
        self.app.router.add_post('/scene/create', self.create_scene)
        self.app.router.add_post('/scene/run', self.run_scene)
        self.app.router.add_get('/ws', self.websocket_handler)

    async def _on_startup(self, app: web.Application):
        await self.store.load()

    async def _on_shutdown(self, app: web.Application):
        await self.broadcaster.close_all()

    async def _on_cleanup(self, app: web.Application):
        for handler in {id(h): h for h in self.handlers.values()}.values():
            await handler.close()

    @staticmethod
    async def _read_json(request: Request) -> dict:
        data = await request.json()
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data

    async def health_check(self, request: Request) -> Response:
        """Health check endpoint."""
        return web.json_response({"status": "healthy"})

    async def get_state(self, request: Request) -> Response:
        """Return every device and every scene."""
        try:
            devices = await self.service.get_all_devices()
            return web.json_response({
                "devices": [d.to_dict() for d in devices],
                "scenes": [s.to_dict() for s in self.store.state.scenes],
            })
        except Exception as e:
            logger.error(f"Failed to get devices: {e}")
            return web.json_response({"error": "Failed to retrieve device state"}, status=500)

    async def get_scenes(self, request: Request) -> Response:
        """Return the saved scenes."""
        return web.json_response({"scenes": [s.to_dict() for s in self.store.state.scenes]})

    async def get_device(self, request: Request) -> Response:
        """Return one device with its handler-reported state."""
        device_id = request.match_info["id"]
        try:
            device = await self.service.get_device(device_id)
            return web.json_response({"device": device.to_dict()})
        except DeviceNotFoundError as e:
            return web.json_response({"error": str(e)}, status=404)
        except HomeControlError as e:
            logger.error(f"Failed to get state for device {device_id}: {e}")
            return web.json_response({"error": str(e)}, status=500)

    async def toggle_device(self, request: Request) -> Response:
        """Toggle a device on/off."""
        device_id = request.match_info["id"]
        try:
            state = await self.service.toggle_device(device_id)
            return web.json_response({"success": True, "state": {"isOn": state.is_on}})
        except HomeControlError as e:
            logger.error(f"Failed to toggle device {device_id}: {e}")
            return web.json_response({"error": f"Failed to toggle device: {e}"}, status=500)

    async def set_device_state(self, request: Request) -> Response:
        """Apply a partial state update to one device."""
        device_id = request.match_info["id"]
        try:
            data = await self._read_json(request)
            partial = DeviceState.from_dict(data.get("state"))
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        except (ValueError, TypeError, AttributeError) as e:
            return web.json_response({"error": f"Invalid state object: {e}"}, status=400)

        try:
            state = await self.service.set_device_state(device_id, partial)
            return web.json_response({"success": True, "state": state.to_dict()})
        except HomeControlError as e:
            logger.error(f"Failed to set state for device {device_id}: {e}")
            return web.json_response({"error": f"Failed to set device state: {e}"}, status=500)

    async def create_scene(self, request: Request) -> Response:
        """Validate and save a new scene."""
        try:
            data = await self._read_json(request)
            scene = Scene.from_dict(data.get("scene"))
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        except (ValueError, TypeError, AttributeError):
            return web.json_response({"error": "Invalid scene object"}, status=400)

        try:
            devices = {d.id: d for d in await self.service.get_all_devices()}
            invalid_devices = [a.device_id for a in scene.actions if a.device_id not in devices]
            if invalid_devices:
                return web.json_response({
                    "error": f"Invalid device IDs in scene: {', '.join(invalid_devices)}",
                    "invalidDevices": invalid_devices,
                }, status=400)

            # Record each action's device family
            for action in scene.actions:
                action.type = devices[action.device_id].type

            scenes = self.store.state.scenes
            if any(s.name == scene.name for s in scenes):
                logger.warning(f"Scene '{scene.name}' already exists, adding another with the same name")
            scenes.append(scene)
            try:
                await self.store.save()
            except PersistenceError:
                scenes.remove(scene)
                raise

            logger.info(f"Scene '{scene.name}' created with {len(scene.actions)} actions")
            return web.json_response({
                "success": True,
                "message": f"Scene '{scene.name}' created",
                "scenes": [s.to_dict() for s in scenes],
            })
        except HomeControlError as e:
            logger.error(f"Failed to create scene: {e}")
            return web.json_response({"error": "Failed to create scene"}, status=500)

    async def run_scene(self, request: Request) -> Response:
        """Run a scene and report per-device results."""
        try:
            data = await self._read_json(request)
            raw_scene = data.get("scene")
            if isinstance(raw_scene, dict) and not raw_scene.get("name"):
                raw_scene = dict(raw_scene, name="Unnamed scene")
            scene = Scene.from_dict(raw_scene)
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        except (ValueError, TypeError, AttributeError):
            return web.json_response({"error": "Invalid scene object"}, status=400)

        try:
            result = await self.executor.run(scene)
        except HomeControlError as e:
            logger.error(f"Failed to run scene: {e}")
            return web.json_response({"error": "Failed to run scene"}, status=500)

        return web.json_response({
            "success": True,
            "message": f"Scene '{scene.name}' executed",
            "result": result.to_dict(),
            "devices": [d.to_dict() for d in result.devices],
        })

    async def websocket_handler(self, request: Request) -> web.WebSocketResponse:
        """Realtime feed: a snapshot on connect, then one per change."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        await self.broadcaster.register(ws, self.service.get_all_devices)
        try:
            # Publish-only channel; inbound frames are ignored
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning(f"Websocket closed with exception {ws.exception()}")
        finally:
            self.broadcaster.unregister(ws)
        return ws

    async def start(self):
        """Start the web server."""
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, self.config.host, self.port)
        await site.start()
        logger.info(f"Home control server running on http://{self.config.host}:{self.port}")

        # Keep the server running
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


async def serve(config: Config):
    server = HomeControlServer(config)
    await server.start()


def main():
    """Main entry point."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
