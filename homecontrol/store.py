"""Snapshot persistence for the device and scene lists.

The whole application state lives in one JSON file:
- Loaded once at startup (seeded with defaults if missing or corrupt)
- Held in memory and mutated in place
- Rewritten wholesale after every mutation, via temp file + rename
"""

import json
import logging
import os
import tempfile
from typing import Optional

import aiofiles

from homecontrol.errors import PersistenceError
from homecontrol.models import AppState, default_state

logger = logging.getLogger(__name__)


class StateStore:
    """Owns the persisted snapshot and the in-memory copy of it."""

    def __init__(self, path: str):
        self.path = path
        self.state: Optional[AppState] = None

    async def load(self) -> AppState:
        """Load the snapshot, reseeding it if absent or unreadable.

        Returns:
            The loaded (or freshly seeded) state, also kept on ``self.state``
        """
        if not os.path.exists(self.path):
            logger.info(f"Creating {self.path} with default data")
            return await self._reseed()

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            state = AppState.from_dict(json.loads(content))
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error(f"Failed to read {self.path} ({e}), reinitializing with defaults")
            return await self._reseed()

        logger.info(f"Loaded {len(state.devices)} devices and {len(state.scenes)} scenes from {self.path}")
        self.state = state
        return state

    async def _reseed(self) -> AppState:
        state = default_state()
        await self.save(state)
        self.state = state
        return state

    async def save(self, state: Optional[AppState] = None) -> None:
        """Atomically overwrite the snapshot.

        Args:
            state: State to write; defaults to the in-memory state

        Raises:
            PersistenceError: if the snapshot could not be written
        """
        state = state if state is not None else self.state
        if state is None:
            raise PersistenceError("No state loaded, nothing to save")

        directory = os.path.dirname(os.path.abspath(self.path))
        payload = json.dumps(state.to_dict(), indent=2)
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=directory)
            os.close(fd)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            os.replace(tmp_path, self.path)
            tmp_path = None
            logger.debug(f"Saved state to {self.path}")
        except OSError as e:
            logger.error(f"Error writing {self.path}: {e}")
            raise PersistenceError(f"Failed to save application state: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
