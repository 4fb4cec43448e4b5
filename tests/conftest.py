# tests/conftest.py
"""
Shared fixtures: an in-memory Modbus transport, a recording exposition
sink and device record builders.
"""

import asyncio
import copy

import pytest

from gateway.common.config import Device, RegisterKind
from gateway.common.exceptions import DeviceConnectionError, ReadError
from gateway.services.device.connection_manager import ConnectionManager
from gateway.services.device.poll_scheduler import PollScheduler
from gateway.services.device.registry import DeviceRegistry
from gateway.services.device.validator import parse_device_record
from gateway.services.exposition.sink import ExpositionSink


# ================================================================
# FAKES
# ================================================================
class FakeTransport:
    """Stands in for ModbusTransport; registers live in a dict."""

    def __init__(self, endpoint: str = "fake:502"):
        self.endpoint = endpoint
        self.connected = False
        self.fail_connect = False
        self.connect_delay = 0.0
        self.read_delay = 0.0
        self.failing_addresses: set[int] = set()
        self.words: dict[tuple[RegisterKind, int], int] = {}
        self.connect_calls = 0
        self.close_calls = 0
        self.reads: list[tuple] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.fail_connect:
            raise DeviceConnectionError(f"Failed to connect to {self.endpoint}")
        self.connected = True

    def close(self) -> None:
        self.close_calls += 1
        self.connected = False

    async def read(self, register_kind, address, count, unit_id) -> list[int]:
        self.reads.append((register_kind, address, count, unit_id))
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if address in self.failing_addresses:
            raise ReadError(f"Modbus error: illegal data address {address}", address=address)
        return [self.words.get((register_kind, address + i), 0) for i in range(count)]


class FakeTransportFactory:
    """Transport factory handing out one FakeTransport per device id."""

    def __init__(self):
        self.transports: dict[str, FakeTransport] = {}
        self.created: list[str] = []

    def __call__(self, device: Device, timeout: float) -> FakeTransport:
        self.created.append(device.id)
        return self.for_device(device.id)

    def for_device(self, device_id: str) -> FakeTransport:
        if device_id not in self.transports:
            self.transports[device_id] = FakeTransport(f"{device_id}:502")
        return self.transports[device_id]


class RecordingSink(ExpositionSink):
    """Collects every notification in order."""

    def __init__(self):
        self.added: list[Device] = []
        self.removed: list[str] = []
        self.values: list[tuple] = []

    def on_device_added(self, device):
        self.added.append(device)

    def on_device_removed(self, device_id):
        self.removed.append(device_id)

    def on_tag_value_changed(self, device_id, tag_name, value, timestamp):
        self.values.append((device_id, tag_name, value, timestamp))


# ================================================================
# RECORD BUILDERS
# ================================================================
BASE_RECORD = {
    "id": "meter-1",
    "name": "Energy Meter",
    "type": "tcp",
    "address": "127.0.0.1",
    "port": 5020,
    "deviceId": 1,
    "pollInterval": 100,
    "tags": [
        {"name": "Voltage", "registerType": "holding", "address": 0, "dataType": "float32"},
        {"name": "Status", "registerType": "input", "address": 10, "dataType": "uint16"},
        {"name": "Breaker", "registerType": "coil", "address": 3, "dataType": "boolean"},
    ],
}


def make_record(**overrides) -> dict:
    record = copy.deepcopy(BASE_RECORD)
    record.update(overrides)
    return record


def make_device(**overrides) -> Device:
    return parse_device_record(make_record(**overrides))


def load_meter_registers(transport: FakeTransport) -> None:
    """Voltage = 50.0, Status = 7, Breaker = on"""
    transport.words[(RegisterKind.HOLDING, 0)] = 0x4248
    transport.words[(RegisterKind.HOLDING, 1)] = 0x0000
    transport.words[(RegisterKind.INPUT, 10)] = 7
    transport.words[(RegisterKind.COIL, 3)] = 1


# ================================================================
# COMPONENT FIXTURES
# ================================================================
@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def registry(sink):
    return DeviceRegistry(sink=sink)


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def connections(registry, transport_factory):
    manager = ConnectionManager(registry, timeout=0.5, transport_factory=transport_factory)
    registry.subscribe(on_removed=manager.on_device_removed)
    return manager


@pytest.fixture
def poller(registry, connections, sink):
    scheduler = PollScheduler(registry, connections, sink)
    registry.subscribe(
        on_added=scheduler.on_device_added,
        on_removed=scheduler.on_device_removed,
    )
    return scheduler

