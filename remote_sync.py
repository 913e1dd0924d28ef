#!/usr/bin/env python3
"""
Mirror of the local reading history in MySQL.

Readings are keyed by their exact ISO timestamp: a sync uploads every local
reading whose timestamp is not yet present remotely and never touches rows
that already exist. Configure the server in .env:

    REMOTE_SYNC=1
    MYSQL_HOST=your_host
    MYSQL_PORT=3306
    MYSQL_USER=your_user
    MYSQL_PASSWORD=your_password
    MYSQL_DATABASE=bms

Run directly to push the whole local SQLite history once.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Iterable, Optional

from dotenv import load_dotenv

from bmslink.models import Reading
from data_store import load_readings

logger = logging.getLogger("remote_sync")

# Load environment variables
load_dotenv()

SQLITE_DB_PATH = os.getenv("DB_PATH", "bms_history.db")

# MySQL configuration
MYSQL_HOST = os.getenv("MYSQL_HOST", "localhost")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", 3306))
MYSQL_USER = os.getenv("MYSQL_USER", "root")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "")
MYSQL_DATABASE = os.getenv("MYSQL_DATABASE", "bms")

# Batch size for inserts
BATCH_SIZE = 100


def get_mysql_connection():
    """Create and return a MySQL connection."""
    import mysql.connector

    return mysql.connector.connect(
        host=MYSQL_HOST,
        port=MYSQL_PORT,
        user=MYSQL_USER,
        password=MYSQL_PASSWORD,
        database=MYSQL_DATABASE,
        autocommit=False,
    )


def setup_mysql(conn=None) -> None:
    """Create the battery_history table if it doesn't exist."""
    own = conn is None
    conn = conn or get_mysql_connection()
    cursor = conn.cursor()
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS battery_history (
            id INT AUTO_INCREMENT PRIMARY KEY,
            created_at VARCHAR(64) NOT NULL,
            device_name VARCHAR(255),
            payload LONGTEXT NOT NULL,
            UNIQUE INDEX idx_created_at (created_at)
        )
    """
    )
    conn.commit()
    cursor.close()
    if own:
        conn.close()


def get_remote_timestamps(conn) -> set[str]:
    cursor = conn.cursor()
    cursor.execute("SELECT created_at FROM battery_history")
    timestamps = {row[0] for row in cursor.fetchall()}
    cursor.close()
    return timestamps


def upload_reading(reading: Reading, conn=None) -> Optional[str]:
    """Insert a single reading. Returns the remote row id."""
    own = conn is None
    conn = conn or get_mysql_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(
            "INSERT INTO battery_history (created_at, device_name, payload) VALUES (%s, %s, %s)",
            (reading.timestamp.isoformat(), reading.device_name, json.dumps(reading.to_dict())),
        )
        conn.commit()
        remote_id = cursor.lastrowid
        cursor.close()
        logger.info("Uploaded reading %s with id %s", reading.timestamp.isoformat(), remote_id)
        return str(remote_id) if remote_id is not None else None
    finally:
        if own:
            conn.close()


def delete_remote(remote_id: str, conn=None) -> bool:
    own = conn is None
    conn = conn or get_mysql_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM battery_history WHERE id = %s", (int(remote_id),))
        conn.commit()
        deleted = cursor.rowcount > 0
        cursor.close()
        return deleted
    finally:
        if own:
            conn.close()


def sync_readings(readings: Iterable[Reading], conn=None) -> int:
    """
    Upload local readings not already present remotely.
    Returns the number of readings inserted.
    """
    own = conn is None
    conn = conn or get_mysql_connection()
    try:
        existing = get_remote_timestamps(conn)
        pending = []
        for reading in readings:
            ts = reading.timestamp.isoformat()
            if ts in existing:
                continue
            existing.add(ts)
            pending.append((ts, reading.device_name, json.dumps(reading.to_dict())))

        if not pending:
            logger.info("No new readings to sync")
            return 0

        cursor = conn.cursor()
        for start in range(0, len(pending), BATCH_SIZE):
            cursor.executemany(
                "INSERT INTO battery_history (created_at, device_name, payload) VALUES (%s, %s, %s)",
                pending[start:start + BATCH_SIZE],
            )
            conn.commit()
        cursor.close()
        logger.info("Synced %d new readings", len(pending))
        return len(pending)
    finally:
        if own:
            conn.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Push the local BMS history to MySQL")
    parser.add_argument("--db", default=SQLITE_DB_PATH, help="SQLite history file")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    readings = load_readings(args.db)
    if not readings:
        logger.info("No local readings in %s", args.db)
        return 0

    try:
        setup_mysql()
        count = sync_readings(readings)
    except Exception as e:  # noqa: BLE001
        logger.error(f"Sync failed: {e}")
        logger.error(
            "Check MYSQL_HOST=%s MYSQL_PORT=%s MYSQL_USER=%s MYSQL_DATABASE=%s",
            MYSQL_HOST, MYSQL_PORT, MYSQL_USER, MYSQL_DATABASE,
        )
        return 1

    logger.info("Uploaded %d of %d local readings", count, len(readings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
