"""Domain-specific errors for blectl."""


class BlectlError(Exception):
    """Base error for blectl."""


class ConfigLoadError(BlectlError):
    """Raised when the configuration file cannot be read."""


class ConfigValidationError(BlectlError):
    """Raised when the configuration file does not conform to schema."""


class RadioUnavailableError(BlectlError):
    """Raised when the host Bluetooth radio is not powered on."""


class DeviceNotFoundError(BlectlError):
    """Raised when a connect target is absent from the discovery set."""


class ConnectTimeoutError(BlectlError):
    """Raised when the peripheral does not connect within the timeout."""


class ConnectFailedError(BlectlError):
    """Raised when the host controller reports a failed connection attempt."""


class NotConnectedError(BlectlError):
    """Raised when an operation needs a live session but none exists."""


class CharacteristicNotFoundError(BlectlError):
    """Raised for characteristic identifiers not in the discovered catalog."""


class ReadTimeoutError(BlectlError):
    """Raised when a characteristic read gets no value in time."""


class WriteFailedError(BlectlError):
    """Raised when a write with response is rejected or never confirmed."""


class ToolError(BlectlError):
    """Raised for unknown tools or tool-level failures."""


class ToolArgumentError(ToolError):
    """Raised when tool arguments do not match the tool input schema."""


class SessionNotStartedError(BlectlError):
    """Raised when a session operation runs before ``start``."""
