"""BMS telemetry over Bluetooth LE: frame decoding, state tracking and link supervision."""
import logging

from .aggregator import ReadingAggregator
from .ascii_frames import POLL_COMMAND, decode_frame
from .ble_transport import BleTransport
from .errors import (
    BadPrefixError, FrameError, InvalidFieldError, TransportError,
    TransportErrorKind, TruncatedFrameError,
)
from .faults import FaultTracker
from .models import Cell, FaultEvent, FaultKind, LinkState, Reading
from .session import BmsSession
from .supervisor import LinkSupervisor

logger = logging.getLogger(__name__)


def create_session(address: str, timeout: float = 15.0, **options) -> BmsSession:
    """Build a session bound to a Bluetooth transport for ``address``.

    Args:
        address: Bluetooth address of the BMS.
        timeout: Connect/scan timeout in seconds.
        **options: Passed to :class:`LinkSupervisor` (timing and retry budget).

    Returns:
        BmsSession whose transport still has to be connected.
    """
    transport = BleTransport(address, timeout=timeout)
    session = BmsSession(transport, **options)
    transport.on_disconnect = lambda: session.report_transport_error(
        TransportErrorKind.NOTIFICATION_STREAM
    )
    logger.info("Created session for %s", address)
    return session


__all__ = [
    "BadPrefixError", "BleTransport", "BmsSession", "Cell", "FaultEvent", "FaultKind", "FaultTracker",
    "FrameError", "InvalidFieldError", "LinkState", "LinkSupervisor", "POLL_COMMAND",
    "Reading", "ReadingAggregator", "TransportError", "TransportErrorKind",
    "TruncatedFrameError", "create_session", "decode_frame",
]
