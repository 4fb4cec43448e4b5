"""
OPC UA Exposition Sink

Mirrors the registry into an asyncua server address space:

    Objects/
      ModbusDevices/               (folder)
        <device name>              (object, node id s=<device id>)
          <tag name>               (variable, node id s=<device id>_<tag name>)

Sink notifications are synchronous, so they only enqueue events. A worker
task applies them to the address space in order.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

from asyncua import Node, Server, ua

from gateway.common.config import DataType, Device, OpcUaSettings, Tag, TagValue
from gateway.common.logging_setup import get_service_logger
from .sink import ExpositionSink

logger = get_service_logger("exposition.opcua")

VARIANT_TYPES = {
    DataType.FLOAT32: ua.VariantType.Float,
    DataType.INT16: ua.VariantType.Int16,
    DataType.UINT16: ua.VariantType.UInt16,
    DataType.INT32: ua.VariantType.Int32,
    DataType.UINT32: ua.VariantType.UInt32,
    DataType.BOOLEAN: ua.VariantType.Boolean,
}


def variant_type_for(tag: Tag) -> ua.VariantType:
    """OPC UA type of a tag's variable; coil/discrete tags are Boolean"""
    if tag.is_bit:
        return ua.VariantType.Boolean
    return VARIANT_TYPES[tag.data_type]


def coerce_value(value: TagValue, variant_type: ua.VariantType) -> Any:
    if variant_type == ua.VariantType.Boolean:
        return bool(value)
    if variant_type == ua.VariantType.Float:
        return float(value)
    return int(value)


class OpcUaSink(ExpositionSink):
    """
    Exposition sink backed by an asyncua server.

    Events received before start() are kept in the queue and applied once
    the server is running.
    """

    def __init__(self, settings: OpcUaSettings | None = None):
        self.settings = settings or OpcUaSettings()

        self._server: Server | None = None
        self._namespace_idx: int | None = None
        self._folder: Node | None = None
        self._objects: dict[str, Node] = {}
        self._variables: dict[tuple[str, str], tuple[Node, ua.VariantType]] = {}

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._running = False

        self._events_applied = 0
        self._events_failed = 0

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        """Start the OPC UA server and the event worker"""
        if self._running:
            return

        server = Server()
        await server.init()
        server.set_endpoint(self.settings.endpoint)
        server.set_server_name(self.settings.server_name)
        await server.set_build_info(
            product_uri=self.settings.namespace_uri,
            manufacturer_name=self.settings.product_name,
            product_name=self.settings.product_name,
            software_version=self.settings.build_number,
            build_number=self.settings.build_number,
            build_date=datetime.now(timezone.utc),
        )

        self._namespace_idx = await server.register_namespace(self.settings.namespace_uri)
        self._folder = await server.nodes.objects.add_folder(
            self._namespace_idx, self.settings.folder_name
        )

        await server.start()
        self._server = server
        self._running = True
        self._worker = asyncio.create_task(self._process_events(), name="opcua-sink")

        logger.info(f"OPC UA server listening on {self.settings.endpoint}")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """
        Stop the worker and the server.

        Events already queued (e.g. removals at shutdown) are applied first,
        for at most drain_timeout seconds.
        """
        if self._worker and not self._worker.done():
            try:
                await asyncio.wait_for(self._queue.join(), drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"OPC UA sink stopped with {self._queue.qsize()} events pending"
                )

        self._running = False

        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        if self._server:
            await self._server.stop()
            self._server = None

        self._objects.clear()
        self._variables.clear()
        self._folder = None
        logger.info("OPC UA server stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been applied"""
        await self._queue.join()

    # ------------------------------------------------------------
    # sink notifications (synchronous, enqueue only)
    # ------------------------------------------------------------

    def on_device_added(self, device: Device) -> None:
        self._queue.put_nowait(("added", device))

    def on_device_removed(self, device_id: str) -> None:
        self._queue.put_nowait(("removed", device_id))

    def on_tag_value_changed(
        self,
        device_id: str,
        tag_name: str,
        value: TagValue,
        timestamp: datetime,
    ) -> None:
        self._queue.put_nowait(("value", device_id, tag_name, value, timestamp))

    # ------------------------------------------------------------
    # address space
    # ------------------------------------------------------------

    async def _process_events(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._apply(event)
                self._events_applied += 1
            except Exception as e:
                self._events_failed += 1
                logger.error(f"OPC UA {event[0]} event failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _apply(self, event: tuple) -> None:
        kind = event[0]
        if kind == "added":
            await self._add_device(event[1])
        elif kind == "removed":
            await self._remove_device(event[1])
        elif kind == "value":
            await self._write_value(*event[1:])

    async def _add_device(self, device: Device) -> None:
        if device.id in self._objects:
            await self._remove_device(device.id)

        idx = self._namespace_idx
        obj = await self._folder.add_object(
            ua.NodeId(device.id, idx),
            ua.QualifiedName(device.name, idx),
        )
        self._objects[device.id] = obj

        for tag in device.tags:
            variant_type = variant_type_for(tag)
            variable = await obj.add_variable(
                ua.NodeId(f"{device.id}_{tag.name}", idx),
                ua.QualifiedName(tag.name, idx),
                coerce_value(tag.current_value, variant_type),
                varianttype=variant_type,
            )
            self._variables[(device.id, tag.name)] = (variable, variant_type)

        logger.info(
            f"OPC UA object created for {device.name} ({len(device.tags)} variables)",
            extra={"device_id": device.id},
        )

    async def _remove_device(self, device_id: str) -> None:
        obj = self._objects.pop(device_id, None)
        for key in [k for k in self._variables if k[0] == device_id]:
            del self._variables[key]

        if obj is None:
            logger.debug(f"No OPC UA object for removed device {device_id}")
            return

        await self._server.delete_nodes([obj], recursive=True)
        logger.info(f"OPC UA object deleted for device {device_id}")

    async def _write_value(
        self,
        device_id: str,
        tag_name: str,
        value: TagValue,
        timestamp: datetime,
    ) -> None:
        entry = self._variables.get((device_id, tag_name))
        if entry is None:
            # Device removed after the value was queued
            return

        variable, variant_type = entry
        data_value = ua.DataValue(
            ua.Variant(coerce_value(value, variant_type), variant_type),
            SourceTimestamp=timestamp,
        )
        await variable.write_value(data_value)

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "endpoint": self.settings.endpoint,
            "objects": len(self._objects),
            "variables": len(self._variables),
            "queued_events": self._queue.qsize(),
            "events_applied": self._events_applied,
            "events_failed": self._events_failed,
        }
