"""
Device Store

Persists device configuration records as a JSON array (devices.json).
Only configuration is stored; connection state and tag values are live
data owned by the registry.
"""

import json
import threading
from pathlib import Path
from typing import Any

from gateway.common.config import Device
from gateway.common.exceptions import ConfigError
from gateway.common.logging_setup import get_service_logger

logger = get_service_logger("device.store")


class DeviceStore:
    """
    JSON file of device records.

    Writes go to a temp file that is then renamed over the store, so a
    crash never leaves a half-written file behind.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_records(self) -> list[dict[str, Any]]:
        """
        Read all stored device records.

        Returns:
            List of records; empty when the file does not exist yet

        Raises:
            ConfigError: unreadable file or not a JSON array
        """
        with self._lock:
            return self._read()

    def _read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            logger.info(f"Device store {self.path} not found, starting empty")
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in device store {self.path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read device store {self.path}: {e}") from e

        if not isinstance(data, list):
            raise ConfigError(f"Device store {self.path} must contain a JSON array")

        return data

    def save_records(self, records: list[dict[str, Any]]) -> None:
        """Replace the store contents"""
        with self._lock:
            self._write(records)

    def _write(self, records: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
            temp_path.replace(self.path)
        except OSError as e:
            logger.error(f"Failed to write device store {self.path}: {e}", exc_info=True)
            raise

        logger.debug(f"Device store saved ({len(records)} devices)")

    def add_device(self, device: Device) -> None:
        """Append one device's configuration record"""
        with self._lock:
            records = self._read()
            records.append(device.to_record())
            self._write(records)

    def remove_device(self, device_id: str) -> bool:
        """
        Drop a device's record.

        Returns:
            True if a record was removed
        """
        with self._lock:
            records = self._read()
            kept = [r for r in records if not (isinstance(r, dict) and r.get("id") == device_id)]
            if len(kept) == len(records):
                return False
            self._write(kept)
            return True
