"""Domain-specific errors for am43ctl."""


class Am43Error(Exception):
    """Base error for am43ctl."""


class ConfigValidationError(Am43Error):
    """Raised when a config file does not conform to schema or semantics."""


class ConfigLoadError(Am43Error):
    """Raised when reading the config file fails."""


class DeviceSelectionError(Am43Error):
    """Raised when a requested device id is unknown or malformed."""


class DeviceDiscoveryError(Am43Error):
    """Raised when BLE scanning does not find the requested devices."""


class InvalidPositionError(Am43Error):
    """Raised when a target position is outside 0..100."""


class CommandParseError(Am43Error):
    """Raised when an inbound command payload cannot be understood."""


class TransportError(Am43Error):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on BLE connect failures."""


class TransportSendError(TransportError):
    """Raised when a GATT write or subscription fails."""


class TransportTimeoutError(TransportError):
    """Raised when an expected notification does not arrive in time."""
