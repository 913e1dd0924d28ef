import datetime
import json

import remote_sync
from bmslink.models import Cell, Reading

BASE = datetime.datetime(2024, 5, 1, 8, 30, 0)


def make_reading(minutes):
    return Reading(
        cells=(Cell(1, 3.3),),
        total_voltage=3.3,
        current=0.5,
        temperature=22.0,
        soc=70.0,
        timestamp=BASE + datetime.timedelta(minutes=minutes),
        device_name="BMS-Test",
    )


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.lastrowid = None
        self.rowcount = 0

    def execute(self, sql, params=()):
        self.conn.executed.append((sql, params))
        if sql.startswith("INSERT"):
            self.conn.next_id += 1
            self.lastrowid = self.conn.next_id
        elif sql.startswith("DELETE"):
            self.rowcount = 1 if params[0] in self.conn.remote_rows else 0

    def executemany(self, sql, rows):
        self.conn.batches.append(list(rows))

    def fetchall(self):
        return [(ts,) for ts in self.conn.remote_timestamps]

    def close(self):
        pass


class FakeConnection:
    def __init__(self, remote_timestamps=(), remote_rows=()):
        self.remote_timestamps = list(remote_timestamps)
        self.remote_rows = set(remote_rows)
        self.executed = []
        self.batches = []
        self.next_id = 10
        self.commits = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def close(self):
        self.closed = True


def test_setup_creates_table():
    conn = FakeConnection()
    remote_sync.setup_mysql(conn)
    assert "CREATE TABLE IF NOT EXISTS battery_history" in conn.executed[0][0]
    assert conn.commits == 1
    assert not conn.closed


def test_upload_returns_remote_id():
    conn = FakeConnection()
    reading = make_reading(0)

    remote_id = remote_sync.upload_reading(reading, conn)

    assert remote_id == "11"
    _, params = conn.executed[0]
    assert params[0] == reading.timestamp.isoformat()
    assert json.loads(params[2])["soc"] == 70.0


def test_sync_skips_existing_timestamps():
    readings = [make_reading(m) for m in range(3)]
    conn = FakeConnection(remote_timestamps=[readings[1].timestamp.isoformat()])

    inserted = remote_sync.sync_readings(readings, conn)

    assert inserted == 2
    assert [row[0] for row in conn.batches[0]] == [
        readings[0].timestamp.isoformat(), readings[2].timestamp.isoformat(),
    ]


def test_sync_with_nothing_new():
    readings = [make_reading(0)]
    conn = FakeConnection(remote_timestamps=[readings[0].timestamp.isoformat()])
    assert remote_sync.sync_readings(readings, conn) == 0
    assert conn.batches == []


def test_sync_inserts_in_batches(monkeypatch):
    monkeypatch.setattr(remote_sync, "BATCH_SIZE", 2)
    conn = FakeConnection()

    assert remote_sync.sync_readings([make_reading(m) for m in range(5)], conn) == 5
    assert [len(batch) for batch in conn.batches] == [2, 2, 1]
    assert conn.commits == 3


def test_delete_remote():
    conn = FakeConnection(remote_rows=[12])
    assert remote_sync.delete_remote("12", conn) is True
    assert remote_sync.delete_remote("13", conn) is False


def test_own_connection_is_closed(monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(remote_sync, "get_mysql_connection", lambda: conn)

    remote_sync.upload_reading(make_reading(0))

    assert conn.closed
