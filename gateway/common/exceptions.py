"""
Custom Exception Classes for the Modbus Gateway

Hierarchical exception structure shared by the registry, the connection
manager, the poll scheduler and the HTTP API.
"""


class GatewayError(Exception):
    """Base exception for all gateway errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(GatewayError):
    """Gateway configuration or device store could not be loaded"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class ValidationError(GatewayError):
    """Malformed device or tag definition"""

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(f"Validation Error: {'; '.join(self.errors)}", recoverable=True)


class NotFoundError(GatewayError):
    """Operation referenced an unknown device or tag"""

    def __init__(self, device_id: str, tag_name: str | None = None):
        self.device_id = device_id
        self.tag_name = tag_name
        if tag_name is None:
            message = f"Device not found: {device_id}"
        else:
            message = f"Tag not found: {device_id}.{tag_name}"
        super().__init__(message, recoverable=True)


class DeviceError(GatewayError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        device_name: str | None = None,
        recoverable: bool = True,
    ):
        self.device_id = device_id
        self.device_name = device_name
        super().__init__(f"Device Error: {message}", recoverable)


class DeviceConnectionError(DeviceError):
    """Transport could not be opened (TCP connect or serial open)"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        device_name: str | None = None,
        endpoint: str | None = None,
    ):
        self.endpoint = endpoint
        super().__init__(message, device_id, device_name, recoverable=True)


class ReadError(DeviceError):
    """Register or coil read failed mid-cycle"""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        device_name: str | None = None,
        tag_name: str | None = None,
        address: int | None = None,
    ):
        self.tag_name = tag_name
        self.address = address
        super().__init__(message, device_id, device_name, recoverable=True)
