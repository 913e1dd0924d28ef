"""ASCII frame decoding for the BMS notification protocol.

A frame is one BLE notification holding whitespace separated tokens::

    AA <field-id> <value>

Field ids 1-9 are cell voltages in mV, 10 is the pack voltage in mV, 11 is
SOC in %, 12 is temperature in degrees C and 13 is pack current in mA.
Field id 99 carries a device error code instead of a measurement.
"""
import re
from typing import Union

from .errors import BadPrefixError, InvalidFieldError, TruncatedFrameError
from .models import (
    CellVoltage, Current, DecodedEvent, FaultKind, FaultReport,
    StateOfCharge, Temperature, TotalVoltage,
)

FRAME_MARKER = b"AA"
ERROR_FIELD = "99"
MAX_CELL_FIELD = 9
TOTAL_VOLTAGE_FIELD = 10
SOC_FIELD = 11
TEMPERATURE_FIELD = 12
CURRENT_FIELD = 13

# "AA0000" asks the BMS to push a fresh set of frames.
POLL_COMMAND = bytes([0x41, 0x41, 0x30, 0x30, 0x30, 0x30])

_TOKEN_SPLIT = re.compile(r"[\s\r\n]+")


def to_hex(data: Union[bytes, bytearray]) -> str:
    """Format bytes the way the frame logs show them, e.g. ``0x41 0x41``."""
    return " ".join(f"0x{b:02x}" for b in data)


def _parse_int(token: str, data: bytes) -> int:
    try:
        return int(token, 10)
    except ValueError:
        raise InvalidFieldError(f"Not a base-10 integer: {token!r}", data) from None


def decode_frame(data: Union[bytes, bytearray]) -> DecodedEvent:
    """Decode a single notification payload.

    Raises a :class:`~bmslink.errors.FrameError` subclass when the payload is
    not a valid frame. The function has no side effects.
    """
    data = bytes(data)
    if len(data) < len(FRAME_MARKER):
        raise TruncatedFrameError(f"Frame too short: {len(data)} bytes", data)
    if data[:2] != FRAME_MARKER:
        raise BadPrefixError(f"Frame does not start with AA: {to_hex(data[:2])}", data)

    try:
        text = data.decode("ascii")
    except UnicodeDecodeError:
        raise InvalidFieldError("Frame is not ASCII text", data) from None

    parts = _TOKEN_SPLIT.split(text.strip())
    if len(parts) < 3:
        raise TruncatedFrameError(f"Expected at least 3 tokens, got {len(parts)}", data)
    if parts[0] != "AA":
        raise BadPrefixError(f"Missing AA marker token: {parts[0]!r}", data)

    field_id, raw_value = parts[1], parts[2]

    if field_id == ERROR_FIELD:
        try:
            code = int(raw_value, 10)
        except ValueError:
            code = 0
        return FaultReport(kind=FaultKind.from_code(code), details=f"Error code: {code}")

    field_no = _parse_int(field_id, data)
    if field_no < 1 or field_no > CURRENT_FIELD:
        raise InvalidFieldError(f"Field id out of range: {field_no}", data)
    value = _parse_int(raw_value, data)

    if field_no <= MAX_CELL_FIELD:
        return CellVoltage(cell_number=field_no, voltage=value / 1000.0)
    if field_no == TOTAL_VOLTAGE_FIELD:
        return TotalVoltage(voltage=value / 1000.0)
    if field_no == SOC_FIELD:
        return StateOfCharge(soc=float(value))
    if field_no == TEMPERATURE_FIELD:
        return Temperature(temperature=float(value))
    return Current(current=value / 1000.0)
