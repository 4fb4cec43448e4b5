# tests/test_sink.py
"""
Exposition sink contract: guarded notification and fan-out.
"""

from datetime import datetime, timezone

from conftest import RecordingSink, make_device
from gateway.services.exposition.sink import ExpositionSink, SinkFanout, notify_sink

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class ExplodingSink(ExpositionSink):
    def on_tag_value_changed(self, device_id, tag_name, value, timestamp):
        raise RuntimeError("address space unavailable")


class TestNotifySink:
    """notify_sink() absorbs sink failures."""

    def test_success(self):
        sink = RecordingSink()

        assert notify_sink(sink, "on_device_removed", "meter-1") is True
        assert sink.removed == ["meter-1"]

    def test_failure_is_absorbed(self):
        assert notify_sink(ExplodingSink(), "on_tag_value_changed", "a", "b", 1, NOW) is False

    def test_base_sink_is_noop(self):
        assert notify_sink(ExpositionSink(), "on_device_added", make_device()) is True


class TestSinkFanout:
    """Dispatch to several sinks."""

    def test_every_sink_receives_events(self):
        first, second = RecordingSink(), RecordingSink()
        fanout = SinkFanout([first])
        fanout.add(second)
        device = make_device()

        fanout.on_device_added(device)
        fanout.on_tag_value_changed("meter-1", "Voltage", 50.0, NOW)
        fanout.on_device_removed("meter-1")

        for sink in (first, second):
            assert sink.added == [device]
            assert sink.values == [("meter-1", "Voltage", 50.0, NOW)]
            assert sink.removed == ["meter-1"]

    def test_failing_sink_does_not_starve_others(self):
        healthy = RecordingSink()
        fanout = SinkFanout([ExplodingSink(), healthy])

        fanout.on_tag_value_changed("meter-1", "Voltage", 50.0, NOW)

        assert healthy.values == [("meter-1", "Voltage", 50.0, NOW)]
        assert len(fanout.sinks) == 2
