"""Lightweight SQLite storage for committed BMS readings and faults."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import List, Optional

from bmslink.models import FaultEvent, Reading

Schema = """
CREATE TABLE IF NOT EXISTS readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    device_name TEXT,
    payload TEXT NOT NULL,
    remote_id TEXT
);
CREATE TABLE IF NOT EXISTS faults (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    kind TEXT NOT NULL,
    details TEXT
);
"""

MAX_STORED_FAULTS = 100


def init_db(db_path: str | Path) -> None:
    """Ensure the database and schema exist."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(path) as conn:
        conn.executescript(Schema)
        conn.commit()


def append_reading(db_path: str | Path, reading: Reading) -> str:
    """Persist a committed reading. Returns the new row id as a string."""
    with sqlite3.connect(Path(db_path)) as conn:
        cur = conn.execute(
            "INSERT INTO readings (created_at, device_name, payload, remote_id) VALUES (?, ?, ?, ?)",
            (
                reading.timestamp.isoformat(),
                reading.device_name,
                json.dumps(reading.to_dict()),
                reading.external_id,
            ),
        )
        conn.commit()
        return str(cur.lastrowid)


def set_remote_id(db_path: str | Path, reading_id: str, remote_id: str) -> None:
    with sqlite3.connect(Path(db_path)) as conn:
        conn.execute("UPDATE readings SET remote_id = ? WHERE id = ?", (remote_id, int(reading_id)))
        conn.commit()


def remove_reading(db_path: str | Path, reading_id: str) -> bool:
    """Delete one reading. Returns False if no row matched."""
    with sqlite3.connect(Path(db_path)) as conn:
        cur = conn.execute("DELETE FROM readings WHERE id = ?", (int(reading_id),))
        conn.commit()
        return cur.rowcount > 0


def load_readings(db_path: str | Path, limit: Optional[int] = None) -> List[Reading]:
    """
    Return stored readings, most recent first.
    The local row id becomes the reading's ``external_id``.
    """
    path = Path(db_path)
    if not path.exists():
        return []

    sql = "SELECT id, payload FROM readings ORDER BY created_at DESC, id DESC"
    params: tuple = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (limit,)
    with sqlite3.connect(path) as conn:
        rows = conn.execute(sql, params).fetchall()

    return [Reading.from_dict(json.loads(payload), external_id=str(row_id)) for row_id, payload in rows]


def get_remote_ids(db_path: str | Path) -> dict[str, Optional[str]]:
    """Map local row id -> remote id for every stored reading."""
    path = Path(db_path)
    if not path.exists():
        return {}
    with sqlite3.connect(path) as conn:
        rows = conn.execute("SELECT id, remote_id FROM readings").fetchall()
    return {str(row_id): remote_id for row_id, remote_id in rows}


def save_fault(db_path: str | Path, fault: FaultEvent) -> None:
    """Persist a fault and trim the table to the newest MAX_STORED_FAULTS rows."""
    with sqlite3.connect(Path(db_path)) as conn:
        conn.execute(
            "INSERT INTO faults (created_at, kind, details) VALUES (?, ?, ?)",
            (fault.timestamp.isoformat(), fault.kind.name, fault.details),
        )
        conn.execute(
            "DELETE FROM faults WHERE id NOT IN (SELECT id FROM faults ORDER BY id DESC LIMIT ?)",
            (MAX_STORED_FAULTS,),
        )
        conn.commit()


def load_faults(db_path: str | Path) -> List[FaultEvent]:
    """Return stored faults, newest first."""
    path = Path(db_path)
    if not path.exists():
        return []

    with sqlite3.connect(path) as conn:
        rows = conn.execute(
            "SELECT created_at, kind, details FROM faults ORDER BY id DESC LIMIT ?",
            (MAX_STORED_FAULTS,),
        ).fetchall()

    return [
        FaultEvent.from_dict({"timestamp": created_at, "type": kind, "details": details})
        for created_at, kind, details in rows
    ]


def clear_faults(db_path: str | Path) -> None:
    with sqlite3.connect(Path(db_path)) as conn:
        conn.execute("DELETE FROM faults")
        conn.commit()
