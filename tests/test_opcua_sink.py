# tests/test_opcua_sink.py
"""
Unit tests for OpcUaSink with a mocked asyncua server.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from asyncua import ua

from conftest import make_device
from gateway.common.config import DataType, OpcUaSettings, RegisterKind, Tag
from gateway.services.exposition.opcua_server import OpcUaSink, variant_type_for

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def build_server_mock():
    """asyncua.Server stand-in recording the address space calls."""
    server = MagicMock()
    server.init = AsyncMock()
    server.start = AsyncMock()
    server.stop = AsyncMock()
    server.set_build_info = AsyncMock()
    server.register_namespace = AsyncMock(return_value=2)
    server.delete_nodes = AsyncMock()

    folder = MagicMock()
    device_object = MagicMock()
    variables = []

    async def add_variable(*args, **kwargs):
        variable = MagicMock()
        variable.write_value = AsyncMock()
        variable.args = args
        variable.kwargs = kwargs
        variables.append(variable)
        return variable

    device_object.add_variable = AsyncMock(side_effect=add_variable)
    folder.add_object = AsyncMock(return_value=device_object)
    server.nodes.objects.add_folder = AsyncMock(return_value=folder)

    return server, folder, device_object, variables


@pytest.fixture
def server_mock():
    server, folder, device_object, variables = build_server_mock()
    with patch("gateway.services.exposition.opcua_server.Server", return_value=server):
        yield server, folder, device_object, variables


@pytest.fixture
async def sink(server_mock):
    opcua = OpcUaSink(OpcUaSettings())
    await opcua.start()
    yield opcua
    await opcua.stop()


# ================================================================
# TYPE MAPPING
# ================================================================
class TestVariantTypes:
    """Tag data types to OPC UA variant types."""

    @pytest.mark.parametrize(
        "data_type,expected",
        [
            (DataType.FLOAT32, ua.VariantType.Float),
            (DataType.INT16, ua.VariantType.Int16),
            (DataType.UINT16, ua.VariantType.UInt16),
            (DataType.INT32, ua.VariantType.Int32),
            (DataType.UINT32, ua.VariantType.UInt32),
            (DataType.BOOLEAN, ua.VariantType.Boolean),
        ],
    )
    def test_register_tags(self, data_type, expected):
        tag = Tag("T", RegisterKind.HOLDING, 0, data_type)
        assert variant_type_for(tag) == expected

    def test_bit_tags_are_boolean(self):
        tag = Tag("T", RegisterKind.DISCRETE, 0, DataType.UINT16)
        assert variant_type_for(tag) == ua.VariantType.Boolean


# ================================================================
# ADDRESS SPACE
# ================================================================
class TestOpcUaSink:
    """Event queue applied to the address space."""

    async def test_start_configures_server(self, sink, server_mock):
        server, _, _, _ = server_mock

        server.set_endpoint.assert_called_once_with("opc.tcp://0.0.0.0:52000/UA/MyServer")
        server.set_server_name.assert_called_once_with("Modbus-OPC-UA-Bridge")
        server.nodes.objects.add_folder.assert_awaited_once_with(2, "ModbusDevices")
        server.start.assert_awaited_once()
        assert sink.running

    async def test_device_added_creates_object_and_variables(self, sink, server_mock):
        _, folder, _, variables = server_mock

        sink.on_device_added(make_device())
        await sink.drain()

        node_id, browse_name = folder.add_object.await_args.args
        assert node_id.Identifier == "meter-1"
        assert browse_name.Name == "Energy Meter"

        assert [v.args[0].Identifier for v in variables] == [
            "meter-1_Voltage",
            "meter-1_Status",
            "meter-1_Breaker",
        ]
        assert [v.args[1].Name for v in variables] == ["Voltage", "Status", "Breaker"]
        assert [v.kwargs["varianttype"] for v in variables] == [
            ua.VariantType.Float,
            ua.VariantType.UInt16,
            ua.VariantType.Boolean,
        ]
        assert sink.get_stats()["variables"] == 3

    async def test_value_written_with_variant_type(self, sink, server_mock):
        _, _, _, variables = server_mock
        sink.on_device_added(make_device())

        sink.on_tag_value_changed("meter-1", "Voltage", 50.0, NOW)
        await sink.drain()

        data_value = variables[0].write_value.await_args.args[0]
        assert data_value.Value.Value == 50.0
        assert data_value.Value.VariantType == ua.VariantType.Float
        assert data_value.SourceTimestamp == NOW

    async def test_device_removed_deletes_nodes(self, sink, server_mock):
        server, _, device_object, variables = server_mock
        sink.on_device_added(make_device())

        sink.on_device_removed("meter-1")
        sink.on_tag_value_changed("meter-1", "Voltage", 1.0, NOW)
        await sink.drain()

        server.delete_nodes.assert_awaited_once_with([device_object], recursive=True)
        variables[0].write_value.assert_not_awaited()
        assert sink.get_stats()["objects"] == 0

    async def test_events_queued_before_start_are_applied(self, server_mock):
        _, folder, _, _ = server_mock
        opcua = OpcUaSink()
        opcua.on_device_added(make_device())

        await opcua.start()
        await opcua.drain()
        await opcua.stop()

        folder.add_object.assert_awaited_once()

    async def test_failed_event_does_not_stop_worker(self, sink, server_mock):
        _, folder, device_object, _ = server_mock
        folder.add_object.side_effect = [RuntimeError("BadBrowseNameDuplicated"), device_object]

        sink.on_device_added(make_device(id="a"))
        sink.on_device_added(make_device(id="b"))
        await sink.drain()

        stats = sink.get_stats()
        assert stats["events_failed"] == 1
        assert stats["events_applied"] == 1

    async def test_stop_stops_server(self, server_mock):
        server, _, _, _ = server_mock
        opcua = OpcUaSink()
        await opcua.start()

        await opcua.stop()

        server.stop.assert_awaited_once()
        assert not opcua.running

    async def test_stop_applies_pending_removals(self, server_mock):
        server, _, device_object, _ = server_mock
        opcua = OpcUaSink()
        await opcua.start()
        opcua.on_device_added(make_device())
        opcua.on_device_removed("meter-1")

        await opcua.stop()

        server.delete_nodes.assert_awaited_once_with([device_object], recursive=True)
        assert opcua.get_stats()["queued_events"] == 0
