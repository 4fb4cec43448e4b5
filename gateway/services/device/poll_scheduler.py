"""
Poll Scheduler

Runs one independent periodic cycle per device. Each cycle connects if
needed, reads the device's tags in declared order, decodes them, writes
the values back into the registry and pushes them to the exposition sink.

Cycles of different devices run concurrently; a tick that fires while the
same device's previous cycle is still running is skipped (see
ScheduledLoop).
"""

from datetime import datetime, timezone

from gateway.common.config import Device
from gateway.common.exceptions import ReadError
from gateway.common.logging_setup import get_service_logger, log_tag_read
from gateway.common.scheduler import ScheduledLoop, SchedulerGroup
from gateway.services.exposition.sink import ExpositionSink, notify_sink
from .codec import decode, decode_bit
from .connection_manager import ConnectionManager
from .registry import DeviceRegistry

logger = get_service_logger("device.poller")


class PollScheduler:
    """
    Drives poll cycles for every registered device.

    Subscribe it to the registry with:
        registry.subscribe(on_added=poller.on_device_added,
                            on_removed=poller.on_device_removed)
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        connections: ConnectionManager,
        sink: ExpositionSink | None = None,
    ):
        self._registry = registry
        self._connections = connections
        self._sink = sink or ExpositionSink()
        self._loops = SchedulerGroup()
        self._running = False
        self._failed_cycles: dict[str, int] = {}

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start cycles for every device currently registered"""
        self._running = True
        for device in self._registry.list():
            self._add_loop(device)
        await self._loops.start_all()
        logger.info(f"Poll scheduler started for {len(self._loops)} devices")

    def stop(self) -> None:
        """Stop all ticks. In-flight cycles complete; see wait_idle()."""
        self._running = False
        self._loops.stop_all()
        logger.info("Poll scheduler stopped")

    async def wait_idle(self, timeout: float | None = None) -> None:
        await self._loops.wait_idle_all(timeout)

    def _add_loop(self, device: Device) -> ScheduledLoop:
        device_id = device.id

        async def cycle() -> None:
            await self.run_cycle(device_id)

        return self._loops.add(device_id, device.poll_interval_ms / 1000.0, cycle)

    def stop_device(self, device_id: str) -> bool:
        """
        Cancel future ticks for a device.

        An in-flight cycle runs to completion; its updates are dropped by
        the registry once the device is gone.

        Returns:
            True if the device had a cycle
        """
        self._failed_cycles.pop(device_id, None)
        return self._loops.remove(device_id) is not None

    def on_device_added(self, device: Device) -> None:
        """Registry listener: start polling a newly registered device"""
        loop = self._add_loop(device)
        if self._running:
            loop.launch()
        logger.debug(
            f"Polling {device.name} every {device.poll_interval_ms} ms",
            extra={"device_id": device.id},
        )

    def on_device_removed(self, device_id: str) -> None:
        """Registry listener: stop polling a removed device"""
        if self.stop_device(device_id):
            logger.info(f"Stopped polling removed device {device_id}")

    async def run_cycle(self, device_id: str) -> int:
        """
        Execute one poll cycle for a device.

        Returns:
            Number of tags successfully read and published
        """
        device = self._registry.find(device_id)
        if device is None:
            # Removed between scheduling and execution
            self.stop_device(device_id)
            return 0

        if not await self._connections.ensure_connected(device):
            self._failed_cycles[device_id] = self._failed_cycles.get(device_id, 0) + 1
            logger.debug(
                f"Cycle skipped for {device.name}: not connected",
                extra={"device_id": device_id},
            )
            return 0

        published = 0
        for tag in device.tags:
            try:
                raw = await self._connections.read(device, tag)
                value = decode_bit(raw) if tag.is_bit else decode(raw, tag.data_type)
            except (ReadError, ValueError) as e:
                self._failed_cycles[device_id] = self._failed_cycles.get(device_id, 0) + 1
                # Remaining tags of this cycle are not read
                log_tag_read(logger, device.name, tag.name, None, success=False, error=str(e))
                break

            timestamp = datetime.now(timezone.utc)
            if not self._registry.update_tag_value(
                device_id, tag.name, value, timestamp, device.registration
            ):
                # Device removed (or replaced under the same id) mid-cycle
                break

            log_tag_read(logger, device.name, tag.name, value)
            notify_sink(self._sink, "on_tag_value_changed", device_id, tag.name, value, timestamp)
            published += 1

        return published

    def is_polling(self, device_id: str) -> bool:
        return device_id in self._loops

    def get_stats(self) -> dict:
        """Per-device cycle statistics"""
        stats = self._loops.get_stats()
        for device_id, entry in stats.items():
            entry["failed_cycles"] = self._failed_cycles.get(device_id, 0)
        return stats
