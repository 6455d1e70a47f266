"""Capability-aware merging of partial state updates.

Both the single-device path and the scene executor go through these two
functions so the capability rules cannot drift apart.
"""

import copy

from homecontrol.models import Capabilities, DeviceState


def filter_update(capabilities: Capabilities, partial: DeviceState) -> DeviceState:
    """Drop every field of ``partial`` the device cannot represent.

    Power is not gated by a capability. Rejected fields are ignored silently.
    """
    return DeviceState(
        is_on=partial.is_on,
        brightness=partial.brightness if capabilities.brightness else None,
        color=copy.copy(partial.color) if capabilities.color else None,
        temperature=partial.temperature if capabilities.temperature else None,
    )


def merge(current: DeviceState, capabilities: Capabilities, partial: DeviceState) -> DeviceState:
    """Return the state that results from applying ``partial`` to ``current``.

    A field is overwritten only if ``partial`` supplies it and the capability
    permits it; every other field keeps its previous value. Neither argument
    is modified.
    """
    accepted = filter_update(capabilities, partial)
    merged = copy.deepcopy(current)
    if accepted.is_on is not None:
        merged.is_on = accepted.is_on
    if accepted.brightness is not None:
        merged.brightness = accepted.brightness
    if accepted.color is not None:
        merged.color = accepted.color
    if accepted.temperature is not None:
        merged.temperature = accepted.temperature
    return merged
