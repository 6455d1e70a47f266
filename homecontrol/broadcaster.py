"""Pushes full device-list snapshots to connected websocket observers."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Set

from aiohttp import web

from homecontrol.models import Device

logger = logging.getLogger(__name__)


def state_message(devices: List[Device]) -> Dict[str, Any]:
    """Build the snapshot message sent over the realtime channel."""
    return {"type": "state", "data": {"devices": [d.to_dict() for d in devices]}}


class ChangeBroadcaster:
    """Tracks connected observers and sends every one of them each snapshot.

    Snapshots are always complete; observers never receive deltas.
    """

    def __init__(self):
        self.observers: Set[web.WebSocketResponse] = set()
        self.broadcast_count = 0

    async def register(
        self,
        ws: web.WebSocketResponse,
        snapshot: Callable[[], Awaitable[List[Device]]],
    ) -> None:
        """Add an observer, then send it the current snapshot.

        The observer joins before the snapshot is read, so a broadcast that
        lands while ``snapshot()`` is pending still reaches it. The initial
        snapshot is then skipped so it never overwrites the newer broadcast.
        """
        self.observers.add(ws)
        logger.info(f"Client connected ({len(self.observers)} connected)")
        seen = self.broadcast_count
        devices = await snapshot()
        if self.broadcast_count == seen:
            await self._send(ws, state_message(devices))
        else:
            logger.debug("Skipping initial snapshot, a newer broadcast was already sent")

    def unregister(self, ws: web.WebSocketResponse) -> None:
        if ws in self.observers:
            self.observers.discard(ws)
            logger.info(f"Client disconnected ({len(self.observers)} connected)")

    async def broadcast(self, devices: List[Device]) -> None:
        """Send the full device list to every connected observer."""
        self.broadcast_count += 1
        message = state_message(devices)
        for ws in list(self.observers):
            await self._send(ws, message)

    async def _send(self, ws: web.WebSocketResponse, message: Dict[str, Any]) -> None:
        if ws.closed:
            self.unregister(ws)
            return
        try:
            await ws.send_json(message)
        except (ConnectionResetError, RuntimeError) as e:
            logger.warning(f"Dropping observer after failed send: {e}")
            self.unregister(ws)

    async def close_all(self) -> None:
        """Close every observer connection (server shutdown)."""
        for ws in list(self.observers):
            await ws.close()
            self.unregister(ws)
