"""
Device Registry

Authoritative in-memory collection of devices and their tags.

All storage is owned by the registry and guarded by a lock. Readers get
deep-copied snapshots; the Poll Scheduler and Connection Manager write
through update_tag_value() and set_connection_state() only.
"""

import copy
import itertools
import threading
from datetime import datetime
from typing import Any, Callable

from gateway.common.config import ConnectionState, Device, TagValue
from gateway.common.exceptions import NotFoundError, ValidationError
from gateway.common.logging_setup import get_service_logger
from gateway.services.exposition.sink import ExpositionSink, notify_sink
from .validator import DeviceValidator

logger = get_service_logger("device.registry")

AddedListener = Callable[[Device], None]
RemovedListener = Callable[[str], None]


class DeviceRegistry:
    """
    Concurrency-safe CRUD over Device entities.

    Lifecycle events:
    - add() fires added listeners (Poll Scheduler) and sink.on_device_added
    - remove() fires removed listeners (Poll Scheduler, Connection Manager)
      and exactly one sink.on_device_removed
    """

    def __init__(self, sink: ExpositionSink | None = None):
        self._devices: dict[str, Device] = {}
        self._lock = threading.RLock()
        self._validator = DeviceValidator()
        self._sink = sink or ExpositionSink()
        self._added_listeners: list[AddedListener] = []
        self._removed_listeners: list[RemovedListener] = []
        self._serials = itertools.count(1)

    def subscribe(
        self,
        on_added: AddedListener | None = None,
        on_removed: RemovedListener | None = None,
    ) -> None:
        """Register lifecycle callbacks"""
        if on_added:
            self._added_listeners.append(on_added)
        if on_removed:
            self._removed_listeners.append(on_removed)

    def check_new(self, device: Device) -> None:
        """
        Validate a device for registration without adding it.

        Raises:
            ValidationError: invalid definition or id already registered
        """
        errors = self._validator.validate_device(device)
        with self._lock:
            if device.id in self._devices:
                errors.append(f"Device id already exists: {device.id}")
        if errors:
            raise ValidationError(errors)

    def add(self, device: Device) -> Device:
        """
        Register a device and its tags.

        Returns:
            Snapshot of the registered device

        Raises:
            ValidationError: invalid definition or duplicate id; the registry
                is left unchanged
        """
        errors = self._validator.validate_device(device)
        if errors:
            raise ValidationError(errors)

        with self._lock:
            if device.id in self._devices:
                raise ValidationError(f"Device id already exists: {device.id}")

            stored = copy.deepcopy(device)
            stored.connection_state = ConnectionState.DISCONNECTED
            stored.registration = next(self._serials)
            self._devices[device.id] = stored
            snapshot = copy.deepcopy(stored)

        logger.info(
            f"Registered device: {snapshot.name} ({snapshot.id}) "
            f"{snapshot.transport.value} {snapshot.endpoint} unit={snapshot.unit_id} "
            f"tags={len(snapshot.tags)}",
            extra={"device_id": snapshot.id},
        )

        for listener in self._added_listeners:
            self._call_listener(listener, snapshot)
        notify_sink(self._sink, "on_device_added", copy.deepcopy(snapshot))

        return snapshot

    def remove(self, device_id: str) -> Device:
        """
        Remove a device.

        Returns:
            The removed device (final snapshot)

        Raises:
            NotFoundError: unknown device id
        """
        with self._lock:
            device = self._devices.pop(device_id, None)

        if device is None:
            raise NotFoundError(device_id)

        logger.info(f"Removed device: {device.name} ({device_id})")

        for listener in self._removed_listeners:
            self._call_listener(listener, device_id)
        notify_sink(self._sink, "on_device_removed", device_id)

        return device

    def clear(self) -> int:
        """
        Remove every device (shutdown), firing the usual removal events.

        Returns:
            Number of devices removed
        """
        with self._lock:
            device_ids = list(self._devices)

        removed = 0
        for device_id in device_ids:
            try:
                self.remove(device_id)
                removed += 1
            except NotFoundError:
                # Removed concurrently
                continue
        return removed

    def get(self, device_id: str) -> Device:
        """
        Snapshot of one device.

        Raises:
            NotFoundError: unknown device id
        """
        device = self.find(device_id)
        if device is None:
            raise NotFoundError(device_id)
        return device

    def find(self, device_id: str) -> Device | None:
        """Snapshot of one device, or None if it is not registered"""
        with self._lock:
            device = self._devices.get(device_id)
            return copy.deepcopy(device) if device else None

    def list(self) -> list[Device]:
        """Snapshots of all devices in registration order"""
        with self._lock:
            return [copy.deepcopy(d) for d in self._devices.values()]

    def contains(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def _current(self, device_id: str, registration: int | None) -> Device | None:
        """Stored device, unless it is gone or was re-added under a new serial"""
        device = self._devices.get(device_id)
        if device is None:
            return None
        if registration is not None and device.registration != registration:
            return None
        return device

    def update_tag_value(
        self,
        device_id: str,
        tag_name: str,
        value: TagValue,
        timestamp: datetime,
        registration: int | None = None,
    ) -> bool:
        """
        Store a freshly decoded tag value.

        Args:
            registration: Serial of the device snapshot the value was read
                for; a value read for an earlier registration of the same
                id is dropped

        Returns:
            False (and logs) when the device or tag no longer exists,
            e.g. after a concurrent removal
        """
        with self._lock:
            device = self._current(device_id, registration)
            tag = device.get_tag(tag_name) if device else None
            if tag is not None:
                tag.current_value = value
                tag.last_updated = timestamp
                return True

        logger.debug(
            f"Dropped value for {device_id}.{tag_name}: no longer registered",
            extra={"device_id": device_id, "tag": tag_name},
        )
        return False

    def set_connection_state(
        self,
        device_id: str,
        state: ConnectionState,
        registration: int | None = None,
    ) -> ConnectionState | None:
        """
        Record a connection state transition.

        Reserved for the Connection Manager.

        Returns:
            The previous state, or None if the device (registration) is
            not registered
        """
        with self._lock:
            device = self._current(device_id, registration)
            if device is None:
                return None
            previous = device.connection_state
            device.connection_state = state
            return previous

    def get_connection_state(
        self,
        device_id: str,
        registration: int | None = None,
    ) -> ConnectionState | None:
        with self._lock:
            device = self._current(device_id, registration)
            return device.connection_state if device else None

    def snapshot_values(self) -> dict[str, Any]:
        """Current tag values keyed by device id, then tag name"""
        with self._lock:
            return {
                device.id: {
                    "name": device.name,
                    "tags": {tag.name: tag.current_value for tag in device.tags},
                }
                for device in self._devices.values()
            }

    def get_state_counts(self) -> dict[str, int]:
        """Device count per connection state"""
        counts = {state.value: 0 for state in ConnectionState}
        with self._lock:
            for device in self._devices.values():
                counts[device.connection_state.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    def _call_listener(self, listener: Callable, *args) -> None:
        try:
            listener(*args)
        except Exception as e:
            logger.error(f"Registry listener {listener!r} failed: {e}", exc_info=True)
