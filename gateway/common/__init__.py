"""
Common Utilities

Shared modules used across all gateway components:
- config.py - Device/tag and gateway configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Fixed-interval loops with an in-flight guard
"""

from .config import (
    Device,
    Tag,
    TagValue,
    DataType,
    RegisterKind,
    TransportKind,
    ConnectionState,
    GatewayConfig,
    OpcUaSettings,
    ApiSettings,
    ModbusSettings,
    StoreSettings,
    LoggingSettings,
    MIN_POLL_INTERVAL_MS,
    DEFAULT_POLL_INTERVAL_MS,
    load_gateway_config,
)
from .exceptions import (
    GatewayError,
    ConfigError,
    ValidationError,
    NotFoundError,
    DeviceError,
    DeviceConnectionError,
    ReadError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    configure_from_settings,
    log_tag_read,
    log_connection_state,
)
from .scheduler import ScheduledLoop, SchedulerGroup

__all__ = [
    # Config
    "Device",
    "Tag",
    "TagValue",
    "DataType",
    "RegisterKind",
    "TransportKind",
    "ConnectionState",
    "GatewayConfig",
    "OpcUaSettings",
    "ApiSettings",
    "ModbusSettings",
    "StoreSettings",
    "LoggingSettings",
    "MIN_POLL_INTERVAL_MS",
    "DEFAULT_POLL_INTERVAL_MS",
    "load_gateway_config",
    # Exceptions
    "GatewayError",
    "ConfigError",
    "ValidationError",
    "NotFoundError",
    "DeviceError",
    "DeviceConnectionError",
    "ReadError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "configure_from_settings",
    "log_tag_read",
    "log_connection_state",
    # Scheduling
    "ScheduledLoop",
    "SchedulerGroup",
]
