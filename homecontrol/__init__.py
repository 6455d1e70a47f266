from .models import (
    Action,
    AppState,
    Capabilities,
    Color,
    Device,
    DeviceFamily,
    DeviceState,
    Scene,
)
from .merge import merge
from .scenes import SceneExecutor, SceneResult

__all__ = [
    "Action",
    "AppState",
    "Capabilities",
    "Color",
    "Device",
    "DeviceFamily",
    "DeviceState",
    "Scene",
    "SceneExecutor",
    "SceneResult",
    "merge",
]
