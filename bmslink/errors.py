"""Exception types raised by the frame decoder and the Bluetooth adapter."""
from enum import Enum
from typing import Optional


class FrameError(ValueError):
    """A notification payload that cannot be turned into a decoded event."""

    def __init__(self, message: str, data: bytes = b""):
        super().__init__(message)
        self.data = bytes(data)


class BadPrefixError(FrameError):
    """Payload does not start with the ``AA`` frame marker."""


class InvalidFieldError(FrameError):
    """Field selector out of range or a token that is not a base-10 integer."""


class TruncatedFrameError(FrameError):
    """Payload is too short to hold a marker, a field id and a value."""


class TransportErrorKind(Enum):
    CONNECT_FAILED = "connection failed"
    WRITE_FAILED = "write failed"
    NOTIFICATION_STREAM = "notification stream error"
    LIVENESS_CHECK = "liveness check failed"


class TransportError(ConnectionError):
    """Raised by the Bluetooth adapter when the link cannot be used."""

    def __init__(self, kind: TransportErrorKind, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.cause = cause
