"""
Device Layer - Modbus Polling Core

Responsibilities:
- Validate and register devices and their tags
- Maintain one Modbus connection per device (TCP or RTU)
- Poll each device at its own interval, one cycle in flight at a time
- Decode register words into typed tag values
- Persist device configuration records
"""

from .connection_manager import ConnectionManager
from .poll_scheduler import PollScheduler
from .registry import DeviceRegistry
from .store import DeviceStore
from .validator import DeviceValidator, parse_device_record

__all__ = [
    "ConnectionManager",
    "DeviceRegistry",
    "DeviceStore",
    "DeviceValidator",
    "PollScheduler",
    "parse_device_record",
]
