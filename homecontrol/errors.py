"""Exception types raised by the device and scene engine."""


class HomeControlError(Exception):
    """Base class for all homecontrol errors."""


class DeviceNotFoundError(HomeControlError):
    """Raised when a device id cannot be resolved to a handler."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device {device_id} not found")


class HandlerError(HomeControlError):
    """A device handler failed to carry out an operation."""


class ConnectivityError(HandlerError):
    """The external bridge could not be reached."""


class NotImplementedHandlerError(HandlerError):
    """The device family has no working integration yet."""


class HandlerTimeoutError(HandlerError):
    """A handler call did not complete within the configured timeout."""


class PersistenceError(HomeControlError):
    """The state snapshot could not be read or written."""
