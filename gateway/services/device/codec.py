"""
Register Codec

Pure conversions between raw 16-bit Modbus register words and typed values.
Multi-word values are big-endian: the first word holds the high 16 bits.
"""

import struct

from gateway.common.config import DataType, TagValue


def register_count(data_type: DataType) -> int:
    """Number of 16-bit registers occupied by a data type."""
    if data_type in (DataType.INT16, DataType.UINT16, DataType.BOOLEAN):
        return 1
    elif data_type in (DataType.INT32, DataType.UINT32, DataType.FLOAT32):
        return 2
    raise ValueError(f"Unsupported data type: {data_type}")


def zero_value(data_type: DataType) -> TagValue:
    """Initial value of a tag before its first successful read."""
    if data_type == DataType.FLOAT32:
        return 0.0
    elif data_type == DataType.BOOLEAN:
        return False
    elif data_type in (DataType.INT16, DataType.UINT16, DataType.INT32, DataType.UINT32):
        return 0
    raise ValueError(f"Unsupported data type: {data_type}")


def decode(words: list[int], data_type: DataType) -> TagValue:
    """
    Convert raw registers to a typed value.

    Args:
        words: Unsigned 16-bit register words, register_count(data_type) long
        data_type: Target interpretation

    Returns:
        float for float32, int for integer types, bool for boolean

    Raises:
        ValueError: if the word count does not match the data type
    """
    expected = register_count(data_type)
    if len(words) != expected:
        raise ValueError(
            f"{data_type.value} needs {expected} register(s), got {len(words)}"
        )

    if data_type == DataType.UINT16:
        return words[0] & 0xFFFF

    elif data_type == DataType.INT16:
        value = words[0] & 0xFFFF
        if value >= 0x8000:
            value -= 0x10000
        return value

    elif data_type == DataType.BOOLEAN:
        return words[0] != 0

    elif data_type == DataType.UINT32:
        return ((words[0] & 0xFFFF) << 16) | (words[1] & 0xFFFF)

    elif data_type == DataType.INT32:
        value = ((words[0] & 0xFFFF) << 16) | (words[1] & 0xFFFF)
        if value >= 0x80000000:
            value -= 0x100000000
        return value

    elif data_type == DataType.FLOAT32:
        # Pack as big-endian unsigned shorts, unpack as float
        packed = struct.pack(">HH", words[0] & 0xFFFF, words[1] & 0xFFFF)
        return struct.unpack(">f", packed)[0]

    raise ValueError(f"Unsupported data type: {data_type}")


def decode_bit(bits: list[bool] | list[int]) -> bool:
    """Coil and discrete input reads decode their first bit to a boolean."""
    if not bits:
        raise ValueError("Bit read returned no data")
    return bool(bits[0])


def encode(value: TagValue, data_type: DataType) -> list[int]:
    """
    Convert a typed value to raw registers (inverse of decode).

    Raises:
        ValueError: if the value is out of range for the data type
    """
    if data_type == DataType.UINT16:
        value = int(value)
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"uint16 out of range: {value}")
        return [value]

    elif data_type == DataType.INT16:
        value = int(value)
        if not -0x8000 <= value <= 0x7FFF:
            raise ValueError(f"int16 out of range: {value}")
        return [value & 0xFFFF]

    elif data_type == DataType.BOOLEAN:
        return [1 if value else 0]

    elif data_type == DataType.UINT32:
        value = int(value)
        if not 0 <= value <= 0xFFFFFFFF:
            raise ValueError(f"uint32 out of range: {value}")
        return [(value >> 16) & 0xFFFF, value & 0xFFFF]

    elif data_type == DataType.INT32:
        value = int(value)
        if not -0x80000000 <= value <= 0x7FFFFFFF:
            raise ValueError(f"int32 out of range: {value}")
        value &= 0xFFFFFFFF
        return [(value >> 16) & 0xFFFF, value & 0xFFFF]

    elif data_type == DataType.FLOAT32:
        high, low = struct.unpack(">HH", struct.pack(">f", float(value)))
        return [high, low]

    raise ValueError(f"Unsupported data type: {data_type}")
