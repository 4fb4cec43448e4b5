"""
Gateway Service

Wires the polling core to its surroundings:

    DeviceStore -> DeviceRegistry -> PollScheduler -> ConnectionManager
                          |                 |
                          +----> SinkFanout <+---> OpcUaSink
                          |
                       ApiServer

Startup order: OPC UA server, device store, polling, HTTP API.
Shutdown runs in reverse; in-flight poll cycles are allowed to finish,
then every device is removed from the registry before connections are
closed and the OPC UA server stops.
"""

import asyncio
import signal
from datetime import datetime, timezone
from typing import Any

from gateway import __version__
from gateway.common.config import Device, GatewayConfig
from gateway.common.exceptions import ValidationError
from gateway.common.logging_setup import get_service_logger
from gateway.services.api.server import ApiServer
from gateway.services.device.connection_manager import ConnectionManager, TransportFactory
from gateway.services.device.modbus_client import create_transport
from gateway.services.device.poll_scheduler import PollScheduler
from gateway.services.device.registry import DeviceRegistry
from gateway.services.device.store import DeviceStore
from gateway.services.device.validator import parse_device_record
from gateway.services.exposition.opcua_server import OpcUaSink
from gateway.services.exposition.sink import SinkFanout

logger = get_service_logger("service")


class GatewayService:
    """
    Modbus gateway process.

    Owns every component and exposes the device management operations the
    HTTP API delegates to.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        transport_factory: TransportFactory = create_transport,
        opcua_sink: OpcUaSink | None = None,
    ):
        self.config = config or GatewayConfig()

        # Exposition
        self.sinks = SinkFanout()
        self.opcua_sink: OpcUaSink | None = None
        if self.config.opcua.enabled:
            self.opcua_sink = opcua_sink or OpcUaSink(self.config.opcua)
            self.sinks.add(self.opcua_sink)

        # Polling core
        self.registry = DeviceRegistry(sink=self.sinks)
        self.connections = ConnectionManager(
            self.registry,
            timeout=self.config.modbus.timeout_s,
            transport_factory=transport_factory,
        )
        self.poller = PollScheduler(self.registry, self.connections, self.sinks)

        # Removal stops the cycle before the connection is released
        self.registry.subscribe(
            on_added=self.poller.on_device_added,
            on_removed=self.poller.on_device_removed,
        )
        self.registry.subscribe(on_removed=self.connections.on_device_removed)

        self.store = DeviceStore(self.config.store.path)
        self.api: ApiServer | None = None
        if self.config.api.enabled:
            self.api = ApiServer(self, self.config.api)

        self._start_time = datetime.now(timezone.utc)
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Start all components.

        Raises:
            ConfigError: the device store cannot be read
        """
        logger.info(f"Starting Modbus Gateway v{__version__}")
        self._start_time = datetime.now(timezone.utc)

        if self.opcua_sink:
            await self.opcua_sink.start()

        loaded = self.load_devices()

        await self.poller.start()

        if self.api:
            await self.api.start()

        self._running = True
        logger.info(
            f"Modbus Gateway started ({loaded} devices)",
            extra={"device_count": loaded},
        )

    async def stop(self) -> None:
        """Stop all components"""
        logger.info("Stopping Modbus Gateway")
        self._running = False

        self.poller.stop()
        await self.poller.wait_idle(timeout=self.config.modbus.timeout_s * 2)

        # Devices are torn down like explicit removals: listeners release
        # connections and every sink sees on_device_removed
        removed = self.registry.clear()
        logger.info(f"Removed {removed} devices")

        await self.connections.close_all()

        if self.api:
            await self.api.stop()

        if self.opcua_sink:
            await self.opcua_sink.stop()

        logger.info("Modbus Gateway stopped")

    async def run(self) -> None:
        """Start, then serve until SIGINT/SIGTERM"""
        try:
            await self.start()
            self._setup_signal_handlers()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self.request_shutdown())

    def request_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def load_devices(self) -> int:
        """
        Register every valid record from the device store.

        Invalid records are logged and skipped. Records stored without an id
        get one generated and written back.

        Returns:
            Number of devices registered
        """
        records = self.store.load_records()
        loaded = 0
        ids_assigned = False

        for index, record in enumerate(records):
            try:
                device = parse_device_record(record)
                self.registry.add(device)
            except ValidationError as e:
                logger.warning(
                    f"Skipping device record #{index}: {'; '.join(e.errors)}",
                    extra={"record_index": index},
                )
                continue

            if record.get("id") != device.id:
                record["id"] = device.id
                ids_assigned = True
            loaded += 1

        if ids_assigned:
            self.store.save_records(records)

        logger.info(f"Loaded {loaded} of {len(records)} devices from {self.store.path}")
        return loaded

    def add_device(self, record: Any) -> Device:
        """
        Validate, persist and register a device.

        Raises:
            ValidationError: invalid record or duplicate id; nothing is
                persisted in that case
        """
        device = parse_device_record(record)
        self.registry.check_new(device)
        self.store.add_device(device)
        return self.registry.add(device)

    def remove_device(self, device_id: str) -> Device:
        """
        Unregister a device and drop it from the store.

        Raises:
            NotFoundError: unknown device id
        """
        device = self.registry.remove(device_id)
        self.store.remove_device(device_id)
        return device

    def get_health(self) -> dict:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()

        return {
            "status": "healthy" if self._running else "unhealthy",
            "service": "modbus-gateway",
            "version": __version__,
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "devices": self.registry.get_state_counts(),
            "connections": self.connections.get_stats(),
            "schedulers": self.poller.get_stats(),
            "opcua": self.opcua_sink.get_stats() if self.opcua_sink else None,
        }
