"""Scene execution with per-device failure isolation."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from homecontrol.models import Action, Device, Scene

logger = logging.getLogger(__name__)


@dataclass
class SceneResult:
    """Outcome of a scene run."""
    succeeded: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)  # device id -> message
    devices: List[Device] = field(default_factory=list)  # device list after the run

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": dict(self.errors),
        }


class SceneExecutor:
    """Applies every action of a scene concurrently.

    One failing action (unknown device, handler error, timeout) is recorded
    against its device id and never stops the others. Once every action has
    settled, the snapshot is persisted and broadcast exactly once.
    """

    def __init__(self, registry, service):
        self.registry = registry
        self.service = service

    async def _run_action(self, action: Action) -> Tuple[str, Optional[str]]:
        device_id = action.device_id
        try:
            logger.info(f"Applying action to device {device_id}: {action.state.to_dict()}")
            device, handler = await self.registry.lookup(device_id)
            await self.service.apply_update(device, handler, action.state)
        except Exception as e:
            logger.error(f"Action failed for device {device_id}: {e}")
            return device_id, str(e) or e.__class__.__name__
        logger.info(f"Action succeeded for device {device_id}")
        return device_id, None

    async def run(self, scene: Scene) -> SceneResult:
        """Run a scene.

        Raises:
            PersistenceError: if the snapshot cannot be written afterwards
        """
        logger.info(f"Running scene '{scene.name}' with {len(scene.actions)} action(s)")

        outcomes = await asyncio.gather(*(self._run_action(a) for a in scene.actions))

        result = SceneResult()
        for device_id, error in outcomes:
            if error is None:
                result.succeeded += 1
            else:
                result.failed += 1
                result.errors[device_id] = error

        result.devices = await self.service.publish()
        logger.info(f"Scene '{scene.name}' completed: {result.to_dict()}")
        return result
