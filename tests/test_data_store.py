import datetime

import pytest

import data_store
from bmslink.models import Cell, FaultEvent, FaultKind, Reading

BASE = datetime.datetime(2024, 5, 1, 8, 30, 0)


def make_reading(minutes, soc=50.0, device_name="BMS-Test"):
    return Reading(
        cells=(Cell(1, 3.301), Cell(2, 3.298)),
        total_voltage=6.599,
        current=-2.25,
        temperature=24.0,
        soc=soc,
        timestamp=BASE + datetime.timedelta(minutes=minutes),
        device_name=device_name,
    )


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "history" / "bms.db"
    data_store.init_db(path)
    return path


def test_missing_database_loads_empty(tmp_path):
    assert data_store.load_readings(tmp_path / "absent.db") == []
    assert data_store.load_faults(tmp_path / "absent.db") == []


def test_readings_round_trip_newest_first(db_path):
    ids = [data_store.append_reading(db_path, make_reading(m, soc=float(m))) for m in (0, 5, 10)]

    loaded = data_store.load_readings(db_path)

    assert [r.soc for r in loaded] == [10.0, 5.0, 0.0]
    assert [r.external_id for r in loaded] == list(reversed(ids))
    newest = loaded[0]
    assert newest.timestamp == BASE + datetime.timedelta(minutes=10)
    assert newest.device_name == "BMS-Test"
    assert newest.current == pytest.approx(-2.25, abs=1e-3)
    assert [(c.cell_number, c.voltage) for c in newest.cells] == [(1, 3.301), (2, 3.298)]


def test_load_limit(db_path):
    for m in range(5):
        data_store.append_reading(db_path, make_reading(m))
    assert len(data_store.load_readings(db_path, limit=2)) == 2


def test_remote_ids_and_removal(db_path):
    first = data_store.append_reading(db_path, make_reading(0))
    second = data_store.append_reading(db_path, make_reading(1))
    data_store.set_remote_id(db_path, second, "900")

    assert data_store.get_remote_ids(db_path) == {first: None, second: "900"}

    assert data_store.remove_reading(db_path, first) is True
    assert data_store.remove_reading(db_path, first) is False
    assert [r.external_id for r in data_store.load_readings(db_path)] == [second]


def test_faults_are_trimmed(db_path, monkeypatch):
    monkeypatch.setattr(data_store, "MAX_STORED_FAULTS", 3)
    for minute in range(5):
        data_store.save_fault(db_path, FaultEvent(
            kind=FaultKind.OVERCURRENT,
            timestamp=BASE + datetime.timedelta(minutes=minute),
            details=f"Error code: {minute}",
        ))

    faults = data_store.load_faults(db_path)
    assert [f.details for f in faults] == ["Error code: 4", "Error code: 3", "Error code: 2"]
    assert all(f.kind is FaultKind.OVERCURRENT for f in faults)

    data_store.clear_faults(db_path)
    assert data_store.load_faults(db_path) == []
