# bmslink/aggregator.py
import datetime
import logging
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Iterable, Optional, Tuple

from .models import (
    CellVoltage, Current, Measurement, Reading, StateOfCharge, Temperature, TotalVoltage,
)

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "Unknown Device"
HISTORY_CAPACITY = 100


class ReadingAggregator:
    """
    Folds decoded measurements into the current Reading and keeps a
    newest-first rolling buffer of committed readings.
    """
    def __init__(self, capacity: int = HISTORY_CAPACITY,
                 clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.capacity = capacity
        self._clock = clock
        self._current: Optional[Reading] = None
        self._history: Deque[Reading] = deque(maxlen=capacity)
        self._temperature = 0.0
        self.device_name: Optional[str] = None

    @property
    def current(self) -> Optional[Reading]:
        return self._current

    @property
    def history(self) -> Tuple[Reading, ...]:
        return tuple(self._history)

    @property
    def temperature(self) -> float:
        """Last temperature reported by the device, even before a reading exists."""
        return self._temperature

    def apply(self, event: Measurement) -> Optional[Reading]:
        """Apply one measurement. Returns the new current Reading, or None if nothing changed."""
        now = self._clock()

        if isinstance(event, CellVoltage):
            if self._current is None:
                logger.debug("Creating first reading from cell %d", event.cell_number)
                self._current = Reading(
                    cells=(),
                    total_voltage=0.0,
                    current=0.0,
                    temperature=self._temperature,
                    soc=0.0,
                    timestamp=now,
                    device_name=self.device_name or DEFAULT_DEVICE_NAME,
                )
            self._current = self._current.with_cell(event.cell_number, event.voltage, now)
            return self._current

        if isinstance(event, Temperature):
            self._temperature = event.temperature
            changes = {'temperature': event.temperature}
        elif isinstance(event, TotalVoltage):
            changes = {'total_voltage': event.voltage}
        elif isinstance(event, StateOfCharge):
            changes = {'soc': event.soc}
        elif isinstance(event, Current):
            changes = {'current': event.current}
        else:
            raise TypeError(f"Not a measurement: {event!r}")

        if self._current is None:
            logger.debug("No reading yet, ignoring %s", event)
            return None
        self._current = replace(self._current, timestamp=now, **changes)
        return self._current

    def commit(self) -> Optional[Reading]:
        """Push the current reading to the front of the history if it is new."""
        if self._current is None:
            return None
        if self._history and self._history[0].timestamp == self._current.timestamp:
            return None
        self._history.appendleft(self._current)
        logger.debug("Committed reading at %s (%d in history)",
                     self._current.timestamp.isoformat(), len(self._history))
        return self._current

    def annotate(self, reading: Reading, external_id: str) -> Optional[Reading]:
        """Attach a storage id to the history entry with the same timestamp."""
        for index, entry in enumerate(self._history):
            if entry.timestamp == reading.timestamp:
                updated = replace(entry, external_id=external_id)
                self._history[index] = updated
                return updated
        return None

    def discard(self, index: int) -> Optional[Reading]:
        """Remove a history entry by position (0 is newest)."""
        if index < 0 or index >= len(self._history):
            return None
        removed = self._history[index]
        del self._history[index]
        return removed

    def restore(self, readings: Iterable[Reading]) -> None:
        """Seed the history from storage, most recent first."""
        self._history.clear()
        for reading in readings:
            if len(self._history) >= self.capacity:
                break
            self._history.append(reading)
        if self._history and self.device_name is None:
            self.device_name = self._history[0].device_name
        logger.info("Restored %d readings", len(self._history))

