"""
Configuration Dataclasses

Type-safe structures for devices, tags and gateway settings.
Device records use the camelCase keys of the device store file
(devices.json); gateway settings come from config.yaml.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

TagValue = float | int | bool

# Polling limits (milliseconds)
MIN_POLL_INTERVAL_MS = 100
DEFAULT_POLL_INTERVAL_MS = 2000

DEFAULT_TCP_PORT = 502
DEFAULT_BAUD_RATE = 9600
DEFAULT_UNIT_ID = 1


class TransportKind(str, Enum):
    """Physical link to the device"""
    TCP = "tcp"
    RTU = "rtu"


class RegisterKind(str, Enum):
    """Modbus memory area addressed by a tag"""
    HOLDING = "holding"
    INPUT = "input"
    COIL = "coil"
    DISCRETE = "discrete"


class DataType(str, Enum):
    """Typed interpretation of register words"""
    FLOAT32 = "float32"
    INT16 = "int16"
    UINT16 = "uint16"
    INT32 = "int32"
    UINT32 = "uint32"
    BOOLEAN = "boolean"

    @classmethod
    def parse(cls, value: str) -> "DataType":
        """Parse a record value; "float" is the device store spelling of float32."""
        if value == "float":
            return cls.FLOAT32
        return cls(value)


class ConnectionState(str, Enum):
    """Connection Manager state machine"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


BIT_REGISTER_KINDS = (RegisterKind.COIL, RegisterKind.DISCRETE)


@dataclass
class Tag:
    """A named value point on a device"""
    name: str
    register_kind: RegisterKind
    address: int
    data_type: DataType
    current_value: TagValue = 0
    last_updated: datetime | None = None

    @property
    def is_bit(self) -> bool:
        """Coil/discrete tags always decode to a boolean"""
        return self.register_kind in BIT_REGISTER_KINDS

    def to_record(self, include_state: bool = False) -> dict:
        record = {
            "name": self.name,
            "registerType": self.register_kind.value,
            "address": self.address,
            "dataType": self.data_type.value,
        }
        if include_state:
            record["currentValue"] = self.current_value
            record["lastUpdated"] = (
                self.last_updated.isoformat() if self.last_updated else None
            )
        return record


@dataclass
class Device:
    """Device configuration plus live connection state"""
    id: str
    name: str
    transport: TransportKind
    address: str
    port: int = DEFAULT_TCP_PORT
    baud_rate: int = DEFAULT_BAUD_RATE
    # RTU serial framing (used when transport == RTU)
    parity: str = "N"             # N=None, E=Even, O=Odd
    stopbits: int = 1             # 1 or 2
    bytesize: int = 8             # 7 or 8
    unit_id: int = DEFAULT_UNIT_ID
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    tags: list[Tag] = field(default_factory=list)
    # Registry serial, assigned on add; a re-added id gets a new one
    registration: int = 0

    @property
    def endpoint(self) -> str:
        """Human-readable transport endpoint for logs"""
        if self.transport == TransportKind.TCP:
            return f"{self.address}:{self.port}"
        return f"{self.address}@{self.baud_rate}"

    def get_tag(self, name: str) -> Tag | None:
        return next((t for t in self.tags if t.name == name), None)

    def to_record(self, include_state: bool = False) -> dict:
        """
        Serialize to the device store schema.

        Args:
            include_state: Add connectionState and per-tag current values
                (API views); the store persists configuration only.
        """
        record = {
            "id": self.id,
            "name": self.name,
            "type": self.transport.value,
            "address": self.address,
            "deviceId": self.unit_id,
            "pollInterval": self.poll_interval_ms,
        }
        if self.transport == TransportKind.TCP:
            record["port"] = self.port
        else:
            record["baudRate"] = self.baud_rate
            record["parity"] = self.parity
            record["stopBits"] = self.stopbits
            record["byteSize"] = self.bytesize

        if include_state:
            record["connectionState"] = self.connection_state.value

        record["tags"] = [t.to_record(include_state) for t in self.tags]
        return record


@dataclass
class OpcUaSettings:
    """OPC UA server (exposition) settings"""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 52000
    resource_path: str = "/UA/MyServer"
    namespace_uri: str = "urn:modbus-gateway:devices"
    server_name: str = "Modbus-OPC-UA-Bridge"
    product_name: str = "Modbus-OPC-UA-Bridge"
    build_number: str = "1.0.0"
    folder_name: str = "ModbusDevices"

    @property
    def endpoint(self) -> str:
        return f"opc.tcp://{self.host}:{self.port}{self.resource_path}"


@dataclass
class ApiSettings:
    """HTTP query API settings"""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000
    static_dir: str = "public"


@dataclass
class ModbusSettings:
    """Transport settings shared by all devices"""
    timeout_s: float = 3.0


@dataclass
class StoreSettings:
    """Device store location"""
    path: str = "devices.json"


@dataclass
class LoggingSettings:
    """Log output settings"""
    level: str = "INFO"
    json_format: bool = True


@dataclass
class GatewayConfig:
    """Complete gateway configuration (config.yaml)"""
    opcua: OpcUaSettings = field(default_factory=OpcUaSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    modbus: ModbusSettings = field(default_factory=ModbusSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def load_gateway_config(data: dict | None) -> GatewayConfig:
    """Load GatewayConfig from a dictionary (e.g., parsed config.yaml)"""
    data = data or {}

    opcua_data = data.get("opcua", {}) or {}
    defaults = OpcUaSettings()
    opcua = OpcUaSettings(
        enabled=opcua_data.get("enabled", defaults.enabled),
        host=opcua_data.get("host", defaults.host),
        port=int(opcua_data.get("port", defaults.port)),
        resource_path=opcua_data.get("resource_path", defaults.resource_path),
        namespace_uri=opcua_data.get("namespace_uri", defaults.namespace_uri),
        server_name=opcua_data.get("server_name", defaults.server_name),
        product_name=opcua_data.get("product_name", defaults.product_name),
        build_number=str(opcua_data.get("build_number", defaults.build_number)),
        folder_name=opcua_data.get("folder_name", defaults.folder_name),
    )

    api_data = data.get("api", {}) or {}
    api = ApiSettings(
        enabled=api_data.get("enabled", True),
        host=api_data.get("host", "0.0.0.0"),
        port=int(api_data.get("port", 3000)),
        static_dir=api_data.get("static_dir", "public"),
    )

    modbus_data = data.get("modbus", {}) or {}
    modbus = ModbusSettings(
        timeout_s=float(modbus_data.get("timeout_s", 3.0)),
    )

    store_data = data.get("store", {}) or {}
    store = StoreSettings(
        path=store_data.get("path", "devices.json"),
    )

    logging_data = data.get("logging", {}) or {}
    logging_settings = LoggingSettings(
        level=logging_data.get("level", "INFO"),
        json_format=logging_data.get("json_format", True),
    )

    return GatewayConfig(
        opcua=opcua,
        api=api,
        modbus=modbus,
        store=store,
        logging=logging_settings,
    )
