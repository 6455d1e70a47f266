"""Data model for devices, scenes and the persisted application state.

Everything here serialises to the camelCase JSON shape used on the wire and
in the snapshot file (``isOn``, ``deviceId``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


def _require_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _bounded_int(name: str, value: Any, low: int, high: int) -> int:
    """Parse an integer field and check it lies in [low, high]."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    number = int(value)
    if not low <= number <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {number}")
    return number


class DeviceFamily(Enum):
    """Closed set of device families; each maps to one handler."""
    HUE = "Hue"
    NANOLEAF = "Nanoleaf"
    MOCK = "mock"


@dataclass
class Color:
    """RGB color, each channel 0-255."""
    r: int = 255
    g: int = 255
    b: int = 255

    def to_dict(self) -> Dict[str, int]:
        return {"r": self.r, "g": self.g, "b": self.b}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Color":
        """Create from dictionary. A missing channel is full intensity."""
        data = _require_dict(data, "color")
        return cls(
            r=_bounded_int("color.r", data.get("r", 255), 0, 255),
            g=_bounded_int("color.g", data.get("g", 255), 0, 255),
            b=_bounded_int("color.b", data.get("b", 255), 0, 255),
        )


@dataclass
class Capabilities:
    """Which optional state dimensions a device supports."""
    brightness: bool = False
    color: bool = False
    temperature: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "brightness": self.brightness,
            "color": self.color,
            "temperature": self.temperature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Capabilities":
        data = _require_dict(data, "capabilities")
        return cls(
            brightness=bool(data.get("brightness", False)),
            color=bool(data.get("color", False)),
            temperature=bool(data.get("temperature", False)),
        )


@dataclass
class DeviceState:
    """Device state record. Every field is optional (None = unknown/unset).

    Also used as a partial update, where None means "leave unchanged".
    """
    is_on: Optional[bool] = None
    brightness: Optional[int] = None  # 0-100
    color: Optional[Color] = None
    temperature: Optional[int] = None  # Kelvin

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting unset fields."""
        data: Dict[str, Any] = {}
        if self.is_on is not None:
            data["isOn"] = self.is_on
        if self.brightness is not None:
            data["brightness"] = self.brightness
        if self.color is not None:
            data["color"] = self.color.to_dict()
        if self.temperature is not None:
            data["temperature"] = self.temperature
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DeviceState":
        """Create from dictionary. Unknown keys are ignored.

        Raises:
            ValueError: if a field has the wrong type or is out of range
        """
        data = _require_dict(data if data is not None else {}, "state")
        color = data.get("color")
        brightness = data.get("brightness")
        temperature = data.get("temperature")
        is_on = data.get("isOn")
        if is_on is not None and not isinstance(is_on, bool):
            raise ValueError(f"isOn must be true or false, got {is_on!r}")
        if temperature is not None and isinstance(temperature, bool):
            raise ValueError(f"temperature must be a number, got {temperature!r}")
        return cls(
            is_on=is_on,
            brightness=_bounded_int("brightness", brightness, 0, 100) if brightness is not None else None,
            color=Color.from_dict(color) if color is not None else None,
            temperature=int(temperature) if temperature is not None else None,
        )


@dataclass
class Device:
    """A controllable device."""
    id: str
    type: DeviceFamily
    capabilities: Capabilities = field(default_factory=Capabilities)
    state: DeviceState = field(default_factory=DeviceState)
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        if self.name is not None:
            data["name"] = self.name
        data["type"] = self.type.value
        data["capabilities"] = self.capabilities.to_dict()
        data["state"] = self.state.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Device":
        """Create from dictionary.

        Raises:
            ValueError: if the id is missing, the family is not known or a
                field has the wrong shape
        """
        data = _require_dict(data, "device")
        device_id = data.get("id")
        if device_id is None or str(device_id) == "":
            raise ValueError("Device id is required")
        return cls(
            id=str(device_id),
            name=data.get("name"),
            type=DeviceFamily(data.get("type")),
            capabilities=Capabilities.from_dict(
                data["capabilities"] if data.get("capabilities") is not None else {}
            ),
            state=DeviceState.from_dict(data.get("state")),
        )


@dataclass
class Action:
    """A partial state update for one device within a scene."""
    device_id: str
    state: DeviceState = field(default_factory=DeviceState)
    type: Optional[DeviceFamily] = None  # recorded when the scene is created

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"deviceId": self.device_id}
        if self.type is not None:
            data["type"] = self.type.value
        data["state"] = self.state.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        data = _require_dict(data, "action")
        device_id = data.get("deviceId")
        if device_id is None:
            raise ValueError("Action deviceId is required")
        family = data.get("type")
        return cls(
            device_id=str(device_id),
            state=DeviceState.from_dict(data.get("state")),
            type=DeviceFamily(family) if family else None,
        )


@dataclass
class Scene:
    """A named, ordered batch of actions."""
    name: str
    actions: List[Action] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "actions": [a.to_dict() for a in self.actions],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Scene":
        """Create from dictionary.

        Raises:
            ValueError: if the payload is not a scene object
        """
        if not isinstance(data, dict):
            raise ValueError("Scene must be an object")
        name = data.get("name")
        actions = data.get("actions")
        if not name or not isinstance(actions, list):
            raise ValueError("Scene requires a name and a list of actions")
        return cls(
            name=str(name),
            actions=[Action.from_dict(a) for a in actions],
        )


@dataclass
class AppState:
    """Root object of the snapshot: every device and every scene."""
    devices: List[Device] = field(default_factory=list)
    scenes: List[Scene] = field(default_factory=list)

    def find_device(self, device_id: str) -> Optional[Device]:
        for device in self.devices:
            if device.id == str(device_id):
                return device
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "devices": [d.to_dict() for d in self.devices],
            "scenes": [s.to_dict() for s in self.scenes],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "AppState":
        if not isinstance(data, dict):
            raise ValueError("State snapshot must be an object")
        devices = data.get("devices")
        scenes = data.get("scenes")
        if not isinstance(devices, list) or not isinstance(scenes, list):
            raise ValueError("State snapshot requires devices and scenes lists")
        return cls(
            devices=[Device.from_dict(d) for d in devices],
            scenes=[Scene.from_dict(s) for s in scenes],
        )


def default_state() -> AppState:
    """Seed state written when no usable snapshot exists."""
    return AppState(
        devices=[
            Device(
                id="hue1",
                name="Living Room Light",
                type=DeviceFamily.HUE,
                capabilities=Capabilities(brightness=True, color=True, temperature=True),
                state=DeviceState(is_on=True, brightness=50, color=Color(255, 255, 255), temperature=4000),
            ),
            Device(
                id="nano1",
                name="Bedroom Panels",
                type=DeviceFamily.NANOLEAF,
                capabilities=Capabilities(brightness=True, color=True, temperature=False),
                state=DeviceState(is_on=True, brightness=60, color=Color(0, 255, 0)),
            ),
        ],
        scenes=[
            Scene(
                name="Morning",
                actions=[
                    Action("hue1", DeviceState(brightness=80, color=Color(255, 255, 255))),
                    Action("nano1", DeviceState(brightness=70)),
                ],
            ),
            Scene(
                name="Evening",
                actions=[
                    Action("hue1", DeviceState(temperature=2700)),
                    Action("nano1", DeviceState(color=Color(255, 100, 50))),
                ],
            ),
        ],
    )
