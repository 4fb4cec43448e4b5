"""
Device Validator

Validates device configuration records (devices.json / POST /api/devices)
and built Device objects before they enter the registry.
"""

import uuid
from typing import Any

from gateway.common.config import (
    DEFAULT_BAUD_RATE,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_TCP_PORT,
    DEFAULT_UNIT_ID,
    MIN_POLL_INTERVAL_MS,
    DataType,
    Device,
    RegisterKind,
    Tag,
    TransportKind,
)
from gateway.common.exceptions import ValidationError
from gateway.common.logging_setup import get_service_logger
from .codec import zero_value

logger = get_service_logger("device.validator")

VALID_PARITIES = ("N", "E", "O")
VALID_STOPBITS = (1, 2)
VALID_BYTESIZES = (7, 8)
MAX_ADDRESS = 0xFFFF
MAX_UNIT_ID = 247


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class DeviceValidator:
    """Validates device records and Device objects"""

    def validate_record(self, record: Any) -> list[str]:
        """
        Validate a raw device configuration record.

        Args:
            record: Parsed JSON object

        Returns:
            List of error messages (empty when valid)
        """
        if not isinstance(record, dict):
            return ["Device record must be an object"]

        errors: list[str] = []

        if "id" in record and record["id"] is not None:
            if not isinstance(record["id"], str) or not record["id"].strip():
                errors.append("Device id must be a non-empty string")

        name = record.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append("Missing device name")

        transport = record.get("type")
        if transport not in [t.value for t in TransportKind]:
            errors.append(f"Invalid device type: {transport!r} (expected 'tcp' or 'rtu')")

        address = record.get("address")
        if not isinstance(address, str) or not address.strip():
            errors.append("Missing device address")

        errors.extend(self._validate_transport_settings(record, transport))

        unit_id = record.get("deviceId", DEFAULT_UNIT_ID)
        if not _is_int(unit_id) or not 1 <= unit_id <= MAX_UNIT_ID:
            errors.append(f"Invalid deviceId: {unit_id!r} (1-{MAX_UNIT_ID})")

        poll_interval = record.get("pollInterval", DEFAULT_POLL_INTERVAL_MS)
        if not _is_int(poll_interval) or poll_interval < MIN_POLL_INTERVAL_MS:
            errors.append(
                f"Invalid pollInterval: {poll_interval!r} (minimum {MIN_POLL_INTERVAL_MS} ms)"
            )

        errors.extend(self._validate_tag_records(record.get("tags")))

        return errors

    def _validate_transport_settings(
        self,
        record: dict[str, Any],
        transport: Any,
    ) -> list[str]:
        """Validate tcp port or rtu serial framing"""
        errors = []

        if transport == TransportKind.TCP.value:
            port = record.get("port", DEFAULT_TCP_PORT)
            if not _is_int(port) or not 1 <= port <= 65535:
                errors.append(f"Invalid port: {port!r}")

        elif transport == TransportKind.RTU.value:
            baud_rate = record.get("baudRate", DEFAULT_BAUD_RATE)
            if not _is_int(baud_rate) or baud_rate <= 0:
                errors.append(f"Invalid baudRate: {baud_rate!r}")

            parity = record.get("parity", "N")
            if parity not in VALID_PARITIES:
                errors.append(f"Invalid parity: {parity!r} (expected N, E or O)")

            stopbits = record.get("stopBits", 1)
            if stopbits not in VALID_STOPBITS:
                errors.append(f"Invalid stopBits: {stopbits!r}")

            bytesize = record.get("byteSize", 8)
            if bytesize not in VALID_BYTESIZES:
                errors.append(f"Invalid byteSize: {bytesize!r}")

        return errors

    def _validate_tag_records(self, tags: Any) -> list[str]:
        """Validate the tag list of a device record"""
        if not isinstance(tags, list) or not tags:
            return ["Device must define at least one tag"]

        errors = []
        seen: set[str] = set()
        register_kinds = [k.value for k in RegisterKind]

        for index, tag in enumerate(tags):
            if not isinstance(tag, dict):
                errors.append(f"Tag #{index} must be an object")
                continue

            name = tag.get("name")
            label = name if isinstance(name, str) and name else f"#{index}"
            if not isinstance(name, str) or not name.strip():
                errors.append(f"Tag {label}: missing name")
            elif name in seen:
                errors.append(f"Duplicate tag name: {name}")
            else:
                seen.add(name)

            if tag.get("registerType") not in register_kinds:
                errors.append(
                    f"Tag {label}: invalid registerType {tag.get('registerType')!r}"
                )

            address = tag.get("address")
            if not _is_int(address) or not 0 <= address <= MAX_ADDRESS:
                errors.append(f"Tag {label}: invalid address {address!r}")

            try:
                DataType.parse(tag.get("dataType"))
            except ValueError:
                errors.append(f"Tag {label}: invalid dataType {tag.get('dataType')!r}")

        return errors

    def validate_device(self, device: Device) -> list[str]:
        """Validate registry invariants of a built Device"""
        errors = []

        if not device.id:
            errors.append("Missing device id")
        if not device.name:
            errors.append("Missing device name")
        if not device.address:
            errors.append("Missing device address")
        if device.poll_interval_ms < MIN_POLL_INTERVAL_MS:
            errors.append(
                f"Invalid poll interval: {device.poll_interval_ms} ms "
                f"(minimum {MIN_POLL_INTERVAL_MS} ms)"
            )

        if not device.tags:
            errors.append("Device must define at least one tag")

        seen: set[str] = set()
        for tag in device.tags:
            if not tag.name:
                errors.append("Tag with empty name")
            elif tag.name in seen:
                errors.append(f"Duplicate tag name: {tag.name}")
            seen.add(tag.name)

        return errors


def parse_device_record(record: Any, validator: DeviceValidator | None = None) -> Device:
    """
    Build a Device from a configuration record.

    A missing id is generated. Tags start at the zero value of their type.

    Raises:
        ValidationError: with every problem found in the record
    """
    validator = validator or DeviceValidator()
    errors = validator.validate_record(record)
    if errors:
        logger.warning(
            f"Device record rejected: {len(errors)} errors",
            extra={"errors": errors},
        )
        raise ValidationError(errors)

    tags = []
    for tag_data in record["tags"]:
        register_kind = RegisterKind(tag_data["registerType"])
        data_type = DataType.parse(tag_data["dataType"])
        tag = Tag(
            name=tag_data["name"],
            register_kind=register_kind,
            address=tag_data["address"],
            data_type=data_type,
        )
        tag.current_value = False if tag.is_bit else zero_value(data_type)
        tags.append(tag)

    return Device(
        id=record.get("id") or uuid.uuid4().hex,
        name=record["name"],
        transport=TransportKind(record["type"]),
        address=record["address"],
        port=record.get("port", DEFAULT_TCP_PORT),
        baud_rate=record.get("baudRate", DEFAULT_BAUD_RATE),
        parity=record.get("parity", "N"),
        stopbits=record.get("stopBits", 1),
        bytesize=record.get("byteSize", 8),
        unit_id=record.get("deviceId", DEFAULT_UNIT_ID),
        poll_interval_ms=record.get("pollInterval", DEFAULT_POLL_INTERVAL_MS),
        tags=tags,
    )
