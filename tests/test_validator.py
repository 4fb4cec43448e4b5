# tests/test_validator.py
"""
Unit tests for device record validation and parsing.
"""

import pytest

from conftest import make_record
from gateway.common.config import DataType, RegisterKind, TransportKind
from gateway.common.exceptions import ValidationError
from gateway.services.device.validator import DeviceValidator, parse_device_record


class TestParseDeviceRecord:
    """Record to Device conversion."""

    def test_valid_tcp_record(self):
        device = parse_device_record(make_record())

        assert device.id == "meter-1"
        assert device.transport is TransportKind.TCP
        assert device.port == 5020
        assert device.unit_id == 1
        assert [t.name for t in device.tags] == ["Voltage", "Status", "Breaker"]
        assert device.tags[0].data_type is DataType.FLOAT32
        assert device.tags[2].register_kind is RegisterKind.COIL

    def test_defaults_applied(self):
        record = make_record()
        for key in ("port", "deviceId", "pollInterval"):
            del record[key]

        device = parse_device_record(record)

        assert device.port == 502
        assert device.unit_id == 1
        assert device.poll_interval_ms == 2000

    def test_missing_id_is_generated(self):
        record = make_record()
        del record["id"]

        first = parse_device_record(record)
        second = parse_device_record(record)

        assert first.id
        assert first.id != second.id

    def test_rtu_framing(self):
        record = make_record(
            type="rtu", address="/dev/ttyUSB0", baudRate=19200,
            parity="E", stopBits=2, byteSize=7,
        )
        device = parse_device_record(record)

        assert device.transport is TransportKind.RTU
        assert device.baud_rate == 19200
        assert (device.parity, device.stopbits, device.bytesize) == ("E", 2, 7)
        assert device.endpoint == "/dev/ttyUSB0@19200"

    def test_initial_values_are_type_zero(self):
        device = parse_device_record(make_record())

        voltage, status, breaker = device.tags
        assert voltage.current_value == 0.0
        assert status.current_value == 0
        assert breaker.current_value is False
        assert voltage.last_updated is None

    def test_coil_tag_starts_false_whatever_its_data_type(self):
        record = make_record(tags=[
            {"name": "Run", "registerType": "coil", "address": 0, "dataType": "uint16"},
        ])
        assert parse_device_record(record).tags[0].current_value is False

    def test_float_alias_accepted(self):
        record = make_record(tags=[
            {"name": "Temp", "registerType": "input", "address": 0, "dataType": "float"},
        ])
        assert parse_device_record(record).tags[0].data_type is DataType.FLOAT32

    def test_invalid_record_raises_with_all_errors(self):
        record = make_record(type="udp", pollInterval=10, tags=[])

        with pytest.raises(ValidationError) as exc:
            parse_device_record(record)

        assert len(exc.value.errors) == 3


class TestDeviceValidator:
    """Individual validation rules."""

    @pytest.fixture
    def validator(self):
        return DeviceValidator()

    def test_valid_record_has_no_errors(self, validator):
        assert validator.validate_record(make_record()) == []

    def test_non_object_rejected(self, validator):
        assert validator.validate_record(["not", "a", "device"])

    def test_empty_tag_list(self, validator):
        errors = validator.validate_record(make_record(tags=[]))
        assert errors == ["Device must define at least one tag"]

    def test_duplicate_tag_names(self, validator):
        tag = {"name": "Voltage", "registerType": "holding", "address": 0, "dataType": "float32"}
        errors = validator.validate_record(make_record(tags=[tag, dict(tag, address=2)]))
        assert errors == ["Duplicate tag name: Voltage"]

    @pytest.mark.parametrize(
        "tag_override",
        [
            {"registerType": "memory"},
            {"address": 70000},
            {"address": -1},
            {"address": "0"},
            {"dataType": "double"},
            {"name": ""},
        ],
    )
    def test_bad_tag_fields(self, validator, tag_override):
        tag = {"name": "T", "registerType": "holding", "address": 0, "dataType": "uint16"}
        tag.update(tag_override)
        assert len(validator.validate_record(make_record(tags=[tag]))) == 1

    def test_poll_interval_below_minimum(self, validator):
        errors = validator.validate_record(make_record(pollInterval=99))
        assert len(errors) == 1
        assert "pollInterval" in errors[0]

    def test_poll_interval_must_be_integer(self, validator):
        assert validator.validate_record(make_record(pollInterval=True))

    @pytest.mark.parametrize("port", [0, 65536, "502"])
    def test_bad_tcp_port(self, validator, port):
        assert validator.validate_record(make_record(port=port))

    @pytest.mark.parametrize(
        "override",
        [{"parity": "X"}, {"stopBits": 3}, {"byteSize": 9}, {"baudRate": 0}],
    )
    def test_bad_serial_framing(self, validator, override):
        record = make_record(type="rtu", address="/dev/ttyS0", **override)
        assert len(validator.validate_record(record)) == 1

    def test_unit_id_range(self, validator):
        assert validator.validate_record(make_record(deviceId=248))
        assert validator.validate_record(make_record(deviceId=0))
        assert validator.validate_record(make_record(deviceId=247)) == []

    def test_missing_name_and_address(self, validator):
        record = make_record()
        del record["name"]
        record["address"] = ""
        assert len(validator.validate_record(record)) == 2
