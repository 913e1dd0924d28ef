import pytest

from bmslink.aggregator import DEFAULT_DEVICE_NAME, ReadingAggregator
from bmslink.models import (
    CellVoltage, Current, FaultKind, FaultReport, StateOfCharge, Temperature, TotalVoltage,
)


def test_measurements_before_first_cell_are_ignored(clock):
    agg = ReadingAggregator(clock=clock)
    assert agg.apply(TotalVoltage(voltage=52.0)) is None
    assert agg.apply(StateOfCharge(soc=80.0)) is None
    assert agg.apply(Current(current=1.0)) is None
    assert agg.current is None


def test_temperature_is_remembered_before_first_cell(clock):
    agg = ReadingAggregator(clock=clock)
    assert agg.apply(Temperature(temperature=31.0)) is None
    reading = agg.apply(CellVoltage(cell_number=2, voltage=3.3))
    assert reading.temperature == 31.0
    assert reading.device_name == DEFAULT_DEVICE_NAME
    assert reading.total_voltage == 0.0


def test_cells_are_sorted_and_replaced(clock):
    agg = ReadingAggregator(clock=clock)
    agg.device_name = "BMS-A"
    agg.apply(CellVoltage(cell_number=3, voltage=3.30))
    agg.apply(CellVoltage(cell_number=1, voltage=3.31))
    reading = agg.apply(CellVoltage(cell_number=3, voltage=3.35))

    assert [c.cell_number for c in reading.cells] == [1, 3]
    assert reading.cells[1].voltage == 3.35
    assert reading.device_name == "BMS-A"


def test_each_update_refreshes_timestamp(clock):
    agg = ReadingAggregator(clock=clock)
    first = agg.apply(CellVoltage(cell_number=1, voltage=3.3))
    second = agg.apply(TotalVoltage(voltage=13.2))
    assert second.timestamp > first.timestamp
    assert second.total_voltage == 13.2
    assert first.total_voltage == 0.0


def test_fault_reports_are_not_measurements(clock):
    agg = ReadingAggregator(clock=clock)
    with pytest.raises(TypeError):
        agg.apply(FaultReport(kind=FaultKind.OVERVOLTAGE))


def test_commit_skips_unchanged_reading(clock):
    agg = ReadingAggregator(clock=clock)
    assert agg.commit() is None

    agg.apply(CellVoltage(cell_number=1, voltage=3.3))
    assert agg.commit() is agg.current
    assert agg.commit() is None
    assert len(agg.history) == 1


def test_history_is_bounded_and_newest_first(clock):
    agg = ReadingAggregator(capacity=3, clock=clock)
    for soc in range(5):
        agg.apply(CellVoltage(cell_number=1, voltage=3.3))
        agg.apply(StateOfCharge(soc=float(soc)))
        agg.commit()

    assert [r.soc for r in agg.history] == [4.0, 3.0, 2.0]


def test_annotate_updates_history_only(clock):
    agg = ReadingAggregator(clock=clock)
    agg.apply(CellVoltage(cell_number=1, voltage=3.3))
    committed = agg.commit()

    updated = agg.annotate(committed, "17")

    assert updated.external_id == "17"
    assert agg.history[0].external_id == "17"
    assert agg.current.external_id is None


def test_annotate_unknown_reading(clock):
    agg = ReadingAggregator(clock=clock)
    reading = agg.apply(CellVoltage(cell_number=1, voltage=3.3))
    assert agg.annotate(reading, "1") is None


def test_discard_by_index(clock):
    agg = ReadingAggregator(clock=clock)
    for soc in (10.0, 20.0, 30.0):
        agg.apply(CellVoltage(cell_number=1, voltage=3.3))
        agg.apply(StateOfCharge(soc=soc))
        agg.commit()

    removed = agg.discard(1)
    assert removed.soc == 20.0
    assert [r.soc for r in agg.history] == [30.0, 10.0]
    assert agg.discard(2) is None
    assert agg.discard(-1) is None


def test_restore_seeds_history_and_device_name(clock):
    source = ReadingAggregator(clock=clock)
    source.device_name = "Stored BMS"
    for _ in range(3):
        source.apply(CellVoltage(cell_number=1, voltage=3.3))
        source.commit()

    agg = ReadingAggregator(capacity=2, clock=clock)
    agg.restore(source.history)

    assert agg.history == source.history[:2]
    assert agg.device_name == "Stored BMS"
    assert agg.current is None


def test_default_buffer_keeps_most_recent_hundred(clock):
    agg = ReadingAggregator(clock=clock)
    for n in range(101):
        agg.apply(CellVoltage(cell_number=1, voltage=n / 1000.0))
        agg.commit()

    assert len(agg.history) == 100
    assert agg.history[0].cells[0].voltage == 0.1
    assert agg.history[-1].cells[0].voltage == 0.001
