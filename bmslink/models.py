# bmslink/models.py
from dataclasses import dataclass, field, replace
from enum import Enum
import datetime
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class Cell:
    cell_number: int
    voltage: float


@dataclass(frozen=True)
class Reading:
    """One point-in-time snapshot of the pack. Never mutated, only replaced."""
    cells: Tuple[Cell, ...]
    total_voltage: float
    current: float
    temperature: float
    soc: float
    timestamp: datetime.datetime
    device_name: str
    external_id: Optional[str] = None

    def with_cell(self, cell_number: int, voltage: float, timestamp: datetime.datetime) -> "Reading":
        """Return a copy with the given cell inserted or replaced, cells kept sorted."""
        cells = {c.cell_number: c for c in self.cells}
        cells[cell_number] = Cell(cell_number=cell_number, voltage=voltage)
        ordered = tuple(cells[n] for n in sorted(cells))
        return replace(self, cells=ordered, timestamp=timestamp)

    @property
    def cell_count(self) -> int:
        return len(self.cells)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'deviceName': self.device_name,
            'totalVoltage': self.total_voltage,
            'current': self.current,
            'temperature': self.temperature,
            'soc': self.soc,
            'cells': [{'cellNumber': c.cell_number, 'voltage': c.voltage} for c in self.cells],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], external_id: Optional[str] = None) -> "Reading":
        cells = sorted(
            (Cell(cell_number=int(c['cellNumber']), voltage=float(c['voltage'])) for c in data.get('cells', [])),
            key=lambda c: c.cell_number,
        )
        return cls(
            cells=tuple(cells),
            total_voltage=float(data['totalVoltage']),
            current=float(data['current']),
            temperature=float(data['temperature']),
            soc=float(data['soc']),
            timestamp=datetime.datetime.fromisoformat(data['timestamp']),
            device_name=data.get('deviceName') or "Unknown Device",
            external_id=external_id if external_id is not None else data.get('externalId'),
        )


class FaultKind(Enum):
    OVERVOLTAGE = "Overvoltage"
    UNDERVOLTAGE = "Undervoltage"
    OVERCURRENT = "Overcurrent"
    OVERTEMPERATURE = "Overtemperature"
    UNDERTEMPERATURE = "Undertemperature"
    CELL_IMBALANCE = "Cell Imbalance"
    CHARGING_ERROR = "Charging Error"
    DISCHARGING_ERROR = "Discharging Error"
    COMMUNICATION_ERROR = "Communication Error"
    UNKNOWN = "Unknown Error"

    @classmethod
    def from_code(cls, code: int) -> "FaultKind":
        return FAULT_CODES.get(code, cls.UNKNOWN)


FAULT_CODES = {
    1: FaultKind.OVERVOLTAGE,
    2: FaultKind.UNDERVOLTAGE,
    3: FaultKind.OVERCURRENT,
    4: FaultKind.OVERTEMPERATURE,
    5: FaultKind.UNDERTEMPERATURE,
    6: FaultKind.CELL_IMBALANCE,
    7: FaultKind.CHARGING_ERROR,
    8: FaultKind.DISCHARGING_ERROR,
    9: FaultKind.COMMUNICATION_ERROR,
}


@dataclass(frozen=True)
class FaultEvent:
    kind: FaultKind
    timestamp: datetime.datetime
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.kind.name,
            'timestamp': self.timestamp.isoformat(),
            'details': self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FaultEvent":
        kind_name = data.get('type', '')
        kind = FaultKind.__members__.get(kind_name, FaultKind.UNKNOWN)
        return cls(
            kind=kind,
            timestamp=datetime.datetime.fromisoformat(data['timestamp']),
            details=data.get('details'),
        )


class LinkState(Enum):
    DISCONNECTED = 0
    CONNECTED = 1
    AWAITING_RESPONSE = 2


# --- Decoded frame events ---
@dataclass(frozen=True)
class CellVoltage:
    cell_number: int
    voltage: float

@dataclass(frozen=True)
class TotalVoltage:
    voltage: float

@dataclass(frozen=True)
class StateOfCharge:
    soc: float

@dataclass(frozen=True)
class Temperature:
    temperature: float

@dataclass(frozen=True)
class Current:
    current: float

@dataclass(frozen=True)
class FaultReport:
    kind: FaultKind
    details: Optional[str] = None


Measurement = Union[CellVoltage, TotalVoltage, StateOfCharge, Temperature, Current]
DecodedEvent = Union[CellVoltage, TotalVoltage, StateOfCharge, Temperature, Current, FaultReport]


# --- Events published by a session to its subscribers ---
@dataclass(frozen=True)
class ReadingUpdated:
    reading: Reading

@dataclass(frozen=True)
class FaultRaised:
    fault: FaultEvent

@dataclass(frozen=True)
class LinkStateChanged:
    previous: LinkState
    state: LinkState

@dataclass(frozen=True)
class LinkLost:
    attempts: int
    device_name: Optional[str] = None
    at: datetime.datetime = field(default_factory=datetime.datetime.now)


SessionEvent = Union[ReadingUpdated, FaultRaised, LinkStateChanged, LinkLost]
