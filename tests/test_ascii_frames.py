import pytest

from bmslink.ascii_frames import POLL_COMMAND, decode_frame, to_hex
from bmslink.errors import BadPrefixError, FrameError, InvalidFieldError, TruncatedFrameError
from bmslink.models import (
    CellVoltage, Current, FaultKind, FaultReport, StateOfCharge, Temperature, TotalVoltage,
)


def test_poll_command_is_aa0000():
    assert POLL_COMMAND == b"AA0000"
    assert to_hex(POLL_COMMAND) == "0x41 0x41 0x30 0x30 0x30 0x30"


@pytest.mark.parametrize("frame, expected", [
    (b"AA 1 3300", CellVoltage(cell_number=1, voltage=3.3)),
    (b"AA 5 3700", CellVoltage(cell_number=5, voltage=3.7)),
    (b"AA 9 3412\r\n", CellVoltage(cell_number=9, voltage=3.412)),
    (b"AA 10 52800", TotalVoltage(voltage=52.8)),
    (b"AA 11 87", StateOfCharge(soc=87.0)),
    (b"AA 12 -5", Temperature(temperature=-5.0)),
    (b"AA 13 -12500", Current(current=-12.5)),
    (b"AA\t13\n2000", Current(current=2.0)),
])
def test_decodes_measurements(frame, expected):
    assert decode_frame(frame) == expected


def test_extra_tokens_are_ignored():
    assert decode_frame(b"AA 11 50 garbage") == StateOfCharge(soc=50.0)


def test_error_frame_maps_known_code():
    event = decode_frame(b"AA 99 4")
    assert event == FaultReport(kind=FaultKind.OVERTEMPERATURE, details="Error code: 4")


def test_error_frame_with_unknown_code():
    event = decode_frame(b"AA 99 42")
    assert event.kind is FaultKind.UNKNOWN
    assert event.details == "Error code: 42"


def test_error_frame_with_non_numeric_code_is_code_zero():
    event = decode_frame(b"AA 99 xx")
    assert event.kind is FaultKind.UNKNOWN
    assert event.details == "Error code: 0"


@pytest.mark.parametrize("frame, error", [
    (b"", TruncatedFrameError),
    (b"A", TruncatedFrameError),
    (b"AA 1", TruncatedFrameError),
    (b"BB 1 3300", BadPrefixError),
    (b"AAX 1 3300", BadPrefixError),
    (b"AA 0 3300", InvalidFieldError),
    (b"AA 14 3300", InvalidFieldError),
    (b"AA one 3300", InvalidFieldError),
    (b"AA 1 3.3", InvalidFieldError),
    (b"AA 1 \xff\xfe", InvalidFieldError),
])
def test_rejects_malformed_frames(frame, error):
    with pytest.raises(error) as excinfo:
        decode_frame(frame)
    assert isinstance(excinfo.value, FrameError)
    assert excinfo.value.data == frame


def test_frame_errors_are_value_errors():
    with pytest.raises(ValueError):
        decode_frame(b"nonsense")
