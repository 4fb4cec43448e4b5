"""
Async Modbus Transports

Wrappers around pymodbus for Modbus TCP and Modbus RTU over a serial line.
Each device owns exactly one transport; the Connection Manager serializes
access to it.
"""

from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from gateway.common.config import Device, RegisterKind, TransportKind
from gateway.common.exceptions import DeviceConnectionError, ReadError
from gateway.common.logging_setup import get_service_logger

logger = get_service_logger("device.modbus")


class ModbusTransport:
    """
    Base async Modbus transport.

    Subclasses build the pymodbus client; this class handles connect,
    close and the four read functions.
    """

    def __init__(self, timeout: float = 3.0):
        self.timeout = timeout
        self._client: AsyncModbusTcpClient | AsyncModbusSerialClient | None = None
        self._connected = False

    @property
    def endpoint(self) -> str:
        raise NotImplementedError

    @property
    def is_connected(self) -> bool:
        return (
            self._connected
            and self._client is not None
            and bool(self._client.connected)
        )

    def _create_client(self) -> AsyncModbusTcpClient | AsyncModbusSerialClient:
        raise NotImplementedError

    async def connect(self) -> None:
        """
        Open the transport.

        Raises:
            DeviceConnectionError: the link could not be opened
        """
        if self.is_connected:
            return

        # Drop any half-open client from a previous attempt
        self.close()

        try:
            self._client = self._create_client()
            await self._client.connect()
            self._connected = bool(self._client.connected)
        except Exception as e:
            self.close()
            raise DeviceConnectionError(
                f"Connection error to {self.endpoint}: {e}",
                endpoint=self.endpoint,
            ) from e

        if not self._connected:
            self.close()
            raise DeviceConnectionError(
                f"Failed to connect to {self.endpoint}",
                endpoint=self.endpoint,
            )

        logger.debug(f"Connected to {self.endpoint}")

    def close(self) -> None:
        """Close the link. Safe to call on an already closed transport."""
        if self._client:
            client = self._client
            self._client = None
            client.close()
            logger.debug(f"Disconnected from {self.endpoint}")
        self._connected = False

    async def read(
        self,
        register_kind: RegisterKind,
        address: int,
        count: int,
        unit_id: int,
    ) -> list[int]:
        """
        Read registers or bits.

        Returns:
            Register words for holding/input reads; 0/1 values for
            coil/discrete reads (count entries)

        Raises:
            ReadError: not connected, Modbus exception, or error response
        """
        if not self.is_connected:
            raise ReadError(f"Not connected to {self.endpoint}", address=address)

        client = self._client
        try:
            if register_kind == RegisterKind.HOLDING:
                response = await client.read_holding_registers(
                    address=address, count=count, device_id=unit_id,
                )
            elif register_kind == RegisterKind.INPUT:
                response = await client.read_input_registers(
                    address=address, count=count, device_id=unit_id,
                )
            elif register_kind == RegisterKind.COIL:
                response = await client.read_coils(
                    address=address, count=count, device_id=unit_id,
                )
            elif register_kind == RegisterKind.DISCRETE:
                response = await client.read_discrete_inputs(
                    address=address, count=count, device_id=unit_id,
                )
            else:
                raise ReadError(f"Unsupported register kind: {register_kind}", address=address)
        except ModbusException as e:
            raise ReadError(f"Modbus exception: {e}", address=address) from e

        if response.isError():
            raise ReadError(f"Modbus error: {response}", address=address)

        if register_kind in (RegisterKind.COIL, RegisterKind.DISCRETE):
            # pymodbus pads bit responses to a multiple of 8
            return [1 if bit else 0 for bit in response.bits[:count]]
        return list(response.registers)


class ModbusTcpTransport(ModbusTransport):
    """Modbus TCP transport (stream-oriented)"""

    def __init__(self, host: str, port: int = 502, timeout: float = 3.0):
        super().__init__(timeout)
        self.host = host
        self.port = port

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    def _create_client(self) -> AsyncModbusTcpClient:
        return AsyncModbusTcpClient(
            host=self.host,
            port=self.port,
            timeout=self.timeout,
        )


class ModbusSerialTransport(ModbusTransport):
    """
    Modbus RTU transport over a serial line (RS485/RS232).

    Framing defaults match common field devices: 8 data bits, no parity,
    one stop bit.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 9600,
        parity: str = "N",
        stopbits: int = 1,
        bytesize: int = 8,
        timeout: float = 3.0,
    ):
        super().__init__(timeout)
        self.port = port
        self.baudrate = baudrate
        self.parity = parity
        self.stopbits = stopbits
        self.bytesize = bytesize

    @property
    def endpoint(self) -> str:
        return f"{self.port}@{self.baudrate}"

    def _create_client(self) -> AsyncModbusSerialClient:
        return AsyncModbusSerialClient(
            port=self.port,
            baudrate=self.baudrate,
            bytesize=self.bytesize,
            parity=self.parity,
            stopbits=self.stopbits,
            timeout=self.timeout,
        )


def create_transport(device: Device, timeout: float = 3.0) -> ModbusTransport:
    """Build the transport matching a device's configuration"""
    if device.transport == TransportKind.TCP:
        return ModbusTcpTransport(
            host=device.address,
            port=device.port,
            timeout=timeout,
        )
    elif device.transport == TransportKind.RTU:
        return ModbusSerialTransport(
            port=device.address,
            baudrate=device.baud_rate,
            parity=device.parity,
            stopbits=device.stopbits,
            bytesize=device.bytesize,
            timeout=timeout,
        )
    raise ValueError(f"Unsupported transport: {device.transport}")
