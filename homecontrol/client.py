#!/usr/bin/env python3
"""Reconnecting client for the realtime state feed."""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import aiohttp
import websockets

from homecontrol.config import load_config
from homecontrol.models import Device, Scene

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle of the event client."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class ReconnectingEventClient:
    """Keeps a subscription to the server's state feed alive.

    After a drop the client waits ``retry_delay`` seconds and connects again,
    forever, until ``close()`` is called. Broadcasts missed while disconnected
    are not replayed, so every (re)connect triggers one full state refetch.
    """

    def __init__(
        self,
        base_url: str,
        on_message: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_connect: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        retry_delay: float = 2.0,
    ):
        """Initialize the client.

        Args:
            base_url: HTTP base URL of the server, e.g. http://localhost:3000
            on_message: Called with every decoded feed message
            on_connect: Called after connecting and resyncing state
            on_error: Called with the exception when a connection attempt fails
            on_close: Called whenever a live or attempted connection ends
            retry_delay: Seconds to wait before reconnecting
        """
        self.base_url = base_url.rstrip("/")
        self.on_message = on_message
        self.on_connect = on_connect
        self.on_error = on_error
        self.on_close = on_close
        self.retry_delay = retry_delay

        self.state = ConnectionState.DISCONNECTED
        self.devices: List[Device] = []
        self.scenes: List[Scene] = []
        self.resync_count = 0

        self.websocket = None
        self._task: Optional[asyncio.Task] = None
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def websocket_url(self) -> str:
        """Get the WebSocket URL."""
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/ws"
        return self.base_url + "/ws"

    def _set_state(self, state: ConnectionState) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        logger.debug(f"Event client {self.state.value} -> {state.value}")
        self.state = state

    async def fetch_state(self) -> Dict[str, Any]:
        """GET /state from the server."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        async with self._session.get(f"{self.base_url}/state") as resp:
            resp.raise_for_status()
            return await resp.json()

    def _notify(self, callback: Optional[Callable[..., None]], *args) -> None:
        """Invoke an owner callback; its failure must not stop the reconnect loop."""
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.exception(f"Event client callback {getattr(callback, '__name__', callback)!r} failed: {e}")

    async def resync(self) -> None:
        """Replace the local view with a fresh snapshot from the server.

        A failed or malformed refetch keeps the previous view and is reported
        through ``on_error``.
        """
        self.resync_count += 1
        try:
            data = await self.fetch_state()
            if not isinstance(data, dict):
                raise ValueError(f"State payload must be an object, got {type(data).__name__}")
            devices = [Device.from_dict(d) for d in data.get("devices", [])]
            scenes = [Scene.from_dict(s) for s in data.get("scenes", [])]
        except (aiohttp.ClientError, asyncio.TimeoutError, TypeError, ValueError) as e:
            logger.error(f"Failed to refetch state after connect: {e}")
            self._notify(self.on_error, e)
            return
        self.devices = devices
        self.scenes = scenes
        logger.info(f"Resynced {len(self.devices)} devices and {len(self.scenes)} scenes")

    def handle_frame(self, frame) -> None:
        """Decode one feed frame and update the local view."""
        try:
            message = json.loads(frame)
        except (TypeError, ValueError):
            logger.error(f"Failed to parse websocket message: {frame!r}")
            return

        if isinstance(message, dict) and message.get("type") == "state":
            data = message.get("data")
            try:
                if not isinstance(data, dict):
                    raise ValueError("snapshot data must be an object")
                self.devices = [Device.from_dict(d) for d in data.get("devices", [])]
            except (TypeError, ValueError) as e:
                logger.error(f"Ignoring malformed state snapshot: {e}")
                return
        self._notify(self.on_message, message)

    async def listen(self) -> None:
        """Run one connection until it drops."""
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to {self.websocket_url}")
        try:
            async with websockets.connect(self.websocket_url) as websocket:
                self.websocket = websocket
                self._set_state(ConnectionState.CONNECTED)
                logger.info("Websocket connected")
                await self.resync()
                self._notify(self.on_connect)

                async for frame in websocket:
                    self.handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.warning(f"Websocket error: {e}")
            self._notify(self.on_error, e)
        finally:
            self.websocket = None
            self._set_state(ConnectionState.DISCONNECTED)
            self._notify(self.on_close)

    async def run(self) -> None:
        """Run the client with automatic reconnection until closed."""
        while self.state is not ConnectionState.CLOSED:
            await self.listen()
            if self.state is ConnectionState.CLOSED:
                break
            logger.info(f"Websocket closed, will retry in {self.retry_delay} seconds...")
            await asyncio.sleep(self.retry_delay)

    def start(self) -> asyncio.Task:
        """Start the reconnect loop in the background."""
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def close(self) -> None:
        """Stop reconnecting and tear down the live connection."""
        if self.state is ConnectionState.CLOSED:
            return
        logger.info("Closing event client")
        self.state = ConnectionState.CLOSED

        if self.websocket is not None:
            await self.websocket.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._session is not None:
            await self._session.close()
            self._session = None


async def watch(base_url: str, retry_delay: float):
    def log_snapshot(message):
        devices = (message.get("data") or {}).get("devices", [])
        for device in devices:
            logger.info(f"{device.get('id')} ({device.get('name') or 'unnamed'}): {device.get('state')}")

    client = ReconnectingEventClient(base_url, on_message=log_snapshot, retry_delay=retry_delay)
    try:
        await client.run()
    finally:
        await client.close()


def main():
    """Main entry point: log every state snapshot pushed by the server."""
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(watch(config.server_url, config.reconnect_delay))
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
