# bmslink/faults.py
import datetime
import logging
from collections import deque
from typing import Any, Callable, Deque, Iterable, List, Optional, Tuple

from .models import FaultEvent, FaultKind

logger = logging.getLogger(__name__)

FAULT_LOG_CAPACITY = 100

FaultCallback = Callable[[FaultKind, Optional[str]], Any]


class FaultTracker:
    """Newest-first log of device-reported faults.

    Every occurrence is recorded, repeated faults are not merged. Registered
    callbacks receive ``(kind, details)`` after the fault is in the log.
    """

    def __init__(self, capacity: int = FAULT_LOG_CAPACITY,
                 clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.capacity = capacity
        self._clock = clock
        self._faults: Deque[FaultEvent] = deque(maxlen=capacity)
        self._callbacks: List[FaultCallback] = []

    @property
    def faults(self) -> Tuple[FaultEvent, ...]:
        return tuple(self._faults)

    def __len__(self) -> int:
        return len(self._faults)

    def add_callback(self, callback: FaultCallback) -> None:
        self._callbacks.append(callback)

    def record(self, kind: FaultKind, details: Optional[str] = None) -> FaultEvent:
        fault = FaultEvent(kind=kind, timestamp=self._clock(), details=details)
        self._faults.appendleft(fault)
        logger.warning("BMS fault: %s (%s)", kind.value, details or "no details")

        for callback in self._callbacks:
            try:
                callback(kind, details)
            except Exception as e:  # noqa: BLE001
                logger.error(f"Fault callback {callback!r} failed: {e}")
        return fault

    def clear(self) -> None:
        self._faults.clear()

    def restore(self, faults: Iterable[FaultEvent]) -> None:
        """Load previously stored faults, newest first."""
        self._faults.clear()
        for fault in faults:
            if len(self._faults) >= self.capacity:
                break
            self._faults.append(fault)
        logger.info("Restored %d BMS faults", len(self._faults))
