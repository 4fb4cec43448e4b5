# tests/test_modbus_client.py
"""
Unit tests for the pymodbus transport wrappers (pymodbus clients mocked).
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymodbus.exceptions import ModbusException

from conftest import make_device
from gateway.common.config import RegisterKind
from gateway.common.exceptions import DeviceConnectionError, ReadError
from gateway.services.device.modbus_client import (
    ModbusSerialTransport,
    ModbusTcpTransport,
    create_transport,
)

MODULE = "gateway.services.device.modbus_client"


def build_client(connected: bool = True):
    client = MagicMock()
    client.connected = False

    async def connect():
        client.connected = connected
        return connected

    client.connect = AsyncMock(side_effect=connect)
    return client


def response(registers=None, bits=None, error=False):
    result = MagicMock()
    result.isError.return_value = error
    result.registers = registers or []
    result.bits = bits or []
    return result


@pytest.fixture
def tcp_client():
    client = build_client()
    with patch(f"{MODULE}.AsyncModbusTcpClient", return_value=client) as cls:
        client.cls = cls
        yield client


class TestConnect:
    """Opening and closing the link."""

    async def test_tcp_connect(self, tcp_client):
        transport = ModbusTcpTransport("10.0.0.5", 5020, timeout=2.0)

        await transport.connect()

        tcp_client.cls.assert_called_once_with(host="10.0.0.5", port=5020, timeout=2.0)
        assert transport.is_connected
        assert transport.endpoint == "10.0.0.5:5020"

    async def test_connect_refused(self):
        client = build_client(connected=False)
        with patch(f"{MODULE}.AsyncModbusTcpClient", return_value=client):
            transport = ModbusTcpTransport("10.0.0.5")

            with pytest.raises(DeviceConnectionError):
                await transport.connect()

        client.close.assert_called()
        assert not transport.is_connected

    async def test_connect_exception_wrapped(self):
        client = build_client()
        client.connect.side_effect = OSError("no route to host")
        with patch(f"{MODULE}.AsyncModbusTcpClient", return_value=client):
            transport = ModbusTcpTransport("10.0.0.5")

            with pytest.raises(DeviceConnectionError) as exc:
                await transport.connect()

        assert exc.value.endpoint == "10.0.0.5:502"

    async def test_close_is_safe_twice(self, tcp_client):
        transport = ModbusTcpTransport("10.0.0.5")
        await transport.connect()

        transport.close()
        transport.close()

        tcp_client.close.assert_called_once()
        assert not transport.is_connected

    async def test_serial_framing(self):
        client = build_client()
        with patch(f"{MODULE}.AsyncModbusSerialClient", return_value=client) as cls:
            transport = ModbusSerialTransport(
                "/dev/ttyUSB0", baudrate=19200, parity="E", stopbits=2, bytesize=7,
            )
            await transport.connect()

        cls.assert_called_once_with(
            port="/dev/ttyUSB0", baudrate=19200, bytesize=7,
            parity="E", stopbits=2, timeout=3.0,
        )
        assert transport.endpoint == "/dev/ttyUSB0@19200"


class TestRead:
    """Register and bit reads."""

    @pytest.fixture
    async def transport(self, tcp_client):
        transport = ModbusTcpTransport("10.0.0.5")
        await transport.connect()
        return transport

    async def test_holding_registers(self, transport, tcp_client):
        tcp_client.read_holding_registers = AsyncMock(
            return_value=response(registers=[0x4248, 0x0000])
        )

        words = await transport.read(RegisterKind.HOLDING, 100, 2, unit_id=3)

        assert words == [0x4248, 0x0000]
        tcp_client.read_holding_registers.assert_awaited_once_with(
            address=100, count=2, device_id=3,
        )

    async def test_input_registers(self, transport, tcp_client):
        tcp_client.read_input_registers = AsyncMock(return_value=response(registers=[7]))

        assert await transport.read(RegisterKind.INPUT, 10, 1, unit_id=1) == [7]

    async def test_coil_bits_trimmed_to_count(self, transport, tcp_client):
        tcp_client.read_coils = AsyncMock(
            return_value=response(bits=[True] + [False] * 7)
        )

        assert await transport.read(RegisterKind.COIL, 0, 1, unit_id=1) == [1]

    async def test_discrete_inputs(self, transport, tcp_client):
        tcp_client.read_discrete_inputs = AsyncMock(
            return_value=response(bits=[False] * 8)
        )

        assert await transport.read(RegisterKind.DISCRETE, 4, 1, unit_id=1) == [0]

    async def test_error_response(self, transport, tcp_client):
        tcp_client.read_holding_registers = AsyncMock(return_value=response(error=True))

        with pytest.raises(ReadError):
            await transport.read(RegisterKind.HOLDING, 0, 1, unit_id=1)

    async def test_modbus_exception(self, transport, tcp_client):
        tcp_client.read_input_registers = AsyncMock(side_effect=ModbusException("timeout"))

        with pytest.raises(ReadError):
            await transport.read(RegisterKind.INPUT, 0, 1, unit_id=1)

    async def test_read_when_closed(self, transport):
        transport.close()

        with pytest.raises(ReadError):
            await transport.read(RegisterKind.HOLDING, 0, 1, unit_id=1)


class TestCreateTransport:
    """Transport selection from device configuration."""

    def test_tcp(self):
        transport = create_transport(make_device(), timeout=1.0)

        assert isinstance(transport, ModbusTcpTransport)
        assert transport.endpoint == "127.0.0.1:5020"
        assert transport.timeout == 1.0

    def test_rtu(self):
        device = make_device(type="rtu", address="/dev/ttyS1", baudRate=4800, parity="O")

        transport = create_transport(device)

        assert isinstance(transport, ModbusSerialTransport)
        assert transport.baudrate == 4800
        assert transport.parity == "O"
