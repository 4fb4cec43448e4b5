"""
Connection Manager

Owns one Modbus transport per device and drives the connection state
machine:

    disconnected -> connecting -> connected
    connecting/connected -> disconnected   (transport error or close)

There is no backoff state. A disconnected device is reconnected on demand
by its next poll cycle. Reads for one device are serialized with a
per-device lock because the fieldbus is single-master.

Transports and locks belong to one registration of a device. Removing a
device detaches them immediately, so a device re-added under the same id
starts with a fresh transport and lock while the old ones are released.
"""

import asyncio
from typing import Callable

from gateway.common.config import ConnectionState, Device, Tag
from gateway.common.exceptions import ReadError
from gateway.common.logging_setup import get_service_logger, log_connection_state
from .codec import register_count
from .modbus_client import ModbusTransport, create_transport
from .registry import DeviceRegistry

logger = get_service_logger("device.connection")

TransportFactory = Callable[[Device, float], ModbusTransport]


class ConnectionManager:
    """
    Per-device connect / read / close.

    Connection outcomes are recorded as the device's connection_state in
    the registry; connect failures are never raised to callers.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        timeout: float = 3.0,
        transport_factory: TransportFactory = create_transport,
    ):
        self._registry = registry
        self._timeout = timeout
        self._transport_factory = transport_factory
        self._transports: dict[str, ModbusTransport] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._release_tasks: set[asyncio.Task] = set()

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    def _transition(
        self,
        device: Device,
        state: ConnectionState,
        reason: str | None = None,
    ) -> bool:
        """
        Apply a state transition in the registry.

        Returns:
            False if this registration of the device is no longer present
        """
        previous = self._registry.set_connection_state(
            device.id, state, device.registration or None
        )
        if previous is None:
            return False
        if previous != state:
            log_connection_state(logger, device.name, previous.value, state.value, reason)
        return True

    def _detach(self, device_id: str, transport: ModbusTransport) -> None:
        """Forget a transport unless it has already been replaced"""
        if self._transports.get(device_id) is transport:
            del self._transports[device_id]

    def _close_quietly(self, transport: ModbusTransport) -> None:
        """Close a transport; closing a broken link is not itself an error."""
        try:
            transport.close()
        except Exception as e:
            logger.debug(f"Ignored error closing {transport.endpoint}: {e}")

    async def ensure_connected(self, device: Device) -> bool:
        """
        Make sure the device's transport is open.

        Returns:
            True if connected (immediately when already connected),
            False on failure; never raises
        """
        async with self._lock_for(device.id):
            state = self._registry.get_connection_state(device.id, device.registration or None)
            if state is None:
                # Removed (or replaced) while the cycle was waiting
                return False

            transport = self._transports.get(device.id)
            if (
                state == ConnectionState.CONNECTED
                and transport is not None
                and transport.is_connected
            ):
                return True

            if transport is None:
                transport = self._transport_factory(device, self._timeout)
                self._transports[device.id] = transport

            self._transition(device, ConnectionState.CONNECTING)

            try:
                await asyncio.wait_for(transport.connect(), self._timeout)
            except asyncio.TimeoutError:
                error = f"connect timeout after {self._timeout}s to {device.endpoint}"
            except Exception as e:
                error = str(e) or type(e).__name__
            else:
                if self._transition(device, ConnectionState.CONNECTED):
                    logger.info(
                        f"Connected to device {device.name} at {device.endpoint} "
                        f"(unit {device.unit_id})",
                        extra={"device_id": device.id},
                    )
                    return True
                # Removed while connecting
                self._detach(device.id, transport)
                self._close_quietly(transport)
                return False

            self._close_quietly(transport)
            self._transition(device, ConnectionState.DISCONNECTED, error)
            logger.error(
                f"Connection to device {device.name} failed: {error}",
                extra={"device_id": device.id, "endpoint": device.endpoint},
            )
            return False

    async def read(self, device: Device, tag: Tag) -> list[int]:
        """
        Read the raw words (or bit) behind a tag.

        Returns:
            register_count(tag.data_type) words for holding/input tags,
            a single 0/1 entry for coil/discrete tags

        Raises:
            ReadError: any failure; the device is marked disconnected and
                its transport closed before this is raised
        """
        count = 1 if tag.is_bit else register_count(tag.data_type)

        async with self._lock_for(device.id):
            transport = self._transports.get(device.id)
            state = self._registry.get_connection_state(device.id, device.registration or None)
            if transport is None or state != ConnectionState.CONNECTED:
                raise ReadError(
                    "Device not connected",
                    device_id=device.id,
                    device_name=device.name,
                    tag_name=tag.name,
                    address=tag.address,
                )

            try:
                words = await asyncio.wait_for(
                    transport.read(tag.register_kind, tag.address, count, device.unit_id),
                    self._timeout,
                )
                if len(words) != count:
                    raise ReadError(f"expected {count} value(s), got {len(words)}")
                return words
            except Exception as e:
                if isinstance(e, asyncio.TimeoutError):
                    error = f"read timeout after {self._timeout}s"
                else:
                    error = getattr(e, "message", None) or str(e) or type(e).__name__

                self._detach(device.id, transport)
                self._close_quietly(transport)
                self._transition(
                    device, ConnectionState.DISCONNECTED,
                    f"read {tag.name} failed: {error}",
                )
                raise ReadError(
                    f"Read {device.name}.{tag.name} @ {tag.address} failed: {error}",
                    device_id=device.id,
                    device_name=device.name,
                    tag_name=tag.name,
                    address=tag.address,
                ) from e

    async def close(self, device_id: str) -> None:
        """Close a device's connection. Idempotent; leaves it disconnected."""
        async with self._lock_for(device_id):
            transport = self._transports.pop(device_id, None)
            if transport is not None:
                self._close_quietly(transport)

            device = self._registry.find(device_id)
            if device is not None:
                self._transition(device, ConnectionState.DISCONNECTED)

    def on_device_removed(self, device_id: str) -> None:
        """
        Registry listener: release the removed device's connection.

        The transport and lock are detached at once; the transport is
        closed after any read still holding the old lock has finished.
        """
        transport = self._transports.pop(device_id, None)
        lock = self._locks.pop(device_id, None)
        if transport is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._close_quietly(transport)
            return

        task = loop.create_task(
            self._release(device_id, transport, lock), name=f"release:{device_id}"
        )
        self._release_tasks.add(task)
        task.add_done_callback(self._release_tasks.discard)

    async def _release(
        self,
        device_id: str,
        transport: ModbusTransport,
        lock: asyncio.Lock | None,
    ) -> None:
        if lock is not None:
            async with lock:
                self._close_quietly(transport)
        else:
            self._close_quietly(transport)
        logger.debug(f"Released connection for removed device {device_id}")

    async def close_all(self) -> None:
        """Close every connection (shutdown)"""
        if self._release_tasks:
            await asyncio.gather(*self._release_tasks, return_exceptions=True)

        for device_id in list(self._transports):
            await self.close(device_id)

        logger.info("All device connections closed")

    def get_stats(self) -> dict:
        """Get connection statistics"""
        return {
            "total_connections": len(self._transports),
            "connections": {
                device_id: {
                    "endpoint": transport.endpoint,
                    "connected": transport.is_connected,
                }
                for device_id, transport in self._transports.items()
            },
        }
