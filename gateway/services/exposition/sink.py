"""
Exposition Sink Contract

The polling core pushes device lifecycle and value updates through this
narrow synchronous interface. Calls are fire-and-forget: a failing sink is
logged at the call site and never affects polling or connection state.
"""

from datetime import datetime

from gateway.common.config import Device, TagValue
from gateway.common.logging_setup import get_service_logger

logger = get_service_logger("exposition")


class ExpositionSink:
    """Base sink; every notification is a no-op unless overridden."""

    def on_device_added(self, device: Device) -> None:
        pass

    def on_device_removed(self, device_id: str) -> None:
        pass

    def on_tag_value_changed(
        self,
        device_id: str,
        tag_name: str,
        value: TagValue,
        timestamp: datetime,
    ) -> None:
        pass


def notify_sink(sink: ExpositionSink, method: str, *args) -> bool:
    """
    Call a sink notification, absorbing and logging any failure.

    Returns:
        True if the sink accepted the notification
    """
    try:
        getattr(sink, method)(*args)
        return True
    except Exception as e:
        logger.error(
            f"Sink {type(sink).__name__}.{method} failed: {e}",
            exc_info=True,
            extra={"sink": type(sink).__name__, "method": method},
        )
        return False


class SinkFanout(ExpositionSink):
    """Dispatches every notification to several sinks, each one guarded."""

    def __init__(self, sinks: list[ExpositionSink] | None = None):
        self._sinks: list[ExpositionSink] = list(sinks or [])

    def add(self, sink: ExpositionSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> list[ExpositionSink]:
        return list(self._sinks)

    def on_device_added(self, device: Device) -> None:
        for sink in self._sinks:
            notify_sink(sink, "on_device_added", device)

    def on_device_removed(self, device_id: str) -> None:
        for sink in self._sinks:
            notify_sink(sink, "on_device_removed", device_id)

    def on_tag_value_changed(
        self,
        device_id: str,
        tag_name: str,
        value: TagValue,
        timestamp: datetime,
    ) -> None:
        for sink in self._sinks:
            notify_sink(sink, "on_tag_value_changed", device_id, tag_name, value, timestamp)
