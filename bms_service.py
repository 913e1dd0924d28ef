"""Background service that keeps a BMS link open, polls it and records history in SQLite."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from bmslink import (
    BmsSession, FaultTracker, ReadingAggregator, TransportError, TransportErrorKind, create_session,
)
from bmslink.aggregator import HISTORY_CAPACITY
from bmslink.discover import discover_devices
from bmslink.models import FaultEvent, FaultRaised, LinkLost, LinkStateChanged, Reading, SessionEvent
from data_store import (
    append_reading, get_remote_ids, init_db, load_faults, load_readings,
    remove_reading, save_fault, set_remote_id,
)
from fault_notifier import make_fault_notifier
from remote_sync import delete_remote, setup_mysql, sync_readings, upload_reading

logger = logging.getLogger("bms_service")

load_dotenv()

BMS_ADDRESS = os.getenv("BMS_ADDRESS", "")
BMS_DEVICES_FILE = os.getenv("BMS_DEVICES_FILE", "bms_devices.yaml")
DB_PATH = os.getenv("DB_PATH", "bms_history.db")
POLL_INTERVAL = int(os.getenv("BMS_POLL_INTERVAL", "10"))
COMMIT_INTERVAL = int(os.getenv("BMS_COMMIT_INTERVAL", "5"))
INITIAL_COMMIT_DELAY = int(os.getenv("BMS_INITIAL_COMMIT_DELAY", "8"))
SYNC_INTERVAL = int(os.getenv("BMS_SYNC_INTERVAL", "300"))
REMOTE_SYNC = os.getenv("REMOTE_SYNC", "0").lower() in ("1", "true", "yes")
MAX_CONNECT_ATTEMPTS = int(os.getenv("MAX_CONNECT_ATTEMPTS", "5"))
CONNECT_TIMEOUT = float(os.getenv("BMS_CONNECT_TIMEOUT", "15"))

# One writer thread keeps SQLite work off the event loop and in commit order.
_db_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="bms-db")


def load_device_address(devices_file: str = BMS_DEVICES_FILE) -> Optional[str]:
    """Load BMS device address from the environment or the YAML device file."""
    if BMS_ADDRESS:
        return BMS_ADDRESS

    try:
        if Path(devices_file).exists():
            with open(devices_file, "r") as f:
                devices = yaml.safe_load(f) or {}
                if devices:
                    # Get first device
                    return list(devices.keys())[0]
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load device address from YAML: {e}")

    return None


def save_devices(devices: list[dict], devices_file: str = BMS_DEVICES_FILE) -> None:
    """Merge discovered devices into the YAML file, keyed by address."""
    existing: dict = {}
    if Path(devices_file).exists():
        with open(devices_file, "r") as f:
            existing = yaml.safe_load(f) or {}
    for device in devices:
        existing[device["address"]] = device
    with open(devices_file, "w") as f:
        yaml.dump(existing, f, default_flow_style=False)
    logger.info("Saved %d devices to %s", len(devices), devices_file)


async def commit_reading(session: BmsSession, db_path: str = DB_PATH) -> Optional[Reading]:
    """Commit the current reading and persist it. Storage errors never undo the commit."""
    reading = await session.commit()
    if reading is None:
        return None

    loop = asyncio.get_running_loop()
    try:
        reading_id = await loop.run_in_executor(_db_executor, append_reading, db_path, reading)
    except sqlite3.Error as e:
        logger.error(f"Failed to store reading: {e}")
        return reading
    await session.annotate(reading, reading_id)

    if REMOTE_SYNC:
        try:
            remote_id = await asyncio.to_thread(upload_reading, reading)
            if remote_id is not None:
                await loop.run_in_executor(_db_executor, set_remote_id, db_path, reading_id, remote_id)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error syncing reading: {e}")

    logger.info(
        "Battery recorded: %.2fV, %.2fA, %.0f%%, %.0f°C, %d cells",
        reading.total_voltage, reading.current, reading.soc, reading.temperature, reading.cell_count,
    )
    return reading


def _save_fault(db_path: str, fault: FaultEvent) -> None:
    try:
        save_fault(db_path, fault)
    except sqlite3.Error as e:
        logger.error(f"Failed to store fault: {e}")


def store_fault_later(fault: FaultEvent, db_path: str = DB_PATH) -> asyncio.Future:
    """Queue a fault for the database writer thread. Safe to call from the session worker."""
    return asyncio.get_running_loop().run_in_executor(_db_executor, _save_fault, db_path, fault)


async def sync_history(session: BmsSession) -> int:
    try:
        return await asyncio.to_thread(sync_readings, session.history)
    except Exception as e:  # noqa: BLE001
        logger.error(f"Remote sync failed: {e}")
        return 0


def delete_history_entry(index: int, db_path: str = DB_PATH) -> Optional[Reading]:
    """Remove the index-th newest reading locally and, when enabled, remotely."""
    aggregator = ReadingAggregator()
    aggregator.restore(load_readings(db_path, limit=HISTORY_CAPACITY))
    removed = aggregator.discard(index)
    if removed is None or removed.external_id is None:
        return None

    remote_id = get_remote_ids(db_path).get(removed.external_id)
    if REMOTE_SYNC and remote_id:
        try:
            if not delete_remote(remote_id):
                logger.warning("Reading %s was not found remotely", remote_id)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Error deleting remote reading: {e}")

    remove_reading(db_path, removed.external_id)
    logger.info("Deleted reading from %s", removed.timestamp.isoformat())
    return removed


async def poll_until_lost(session: BmsSession, lost: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    next_poll = loop.time()
    next_commit = loop.time() + INITIAL_COMMIT_DELAY
    next_sync = loop.time() + SYNC_INTERVAL

    while not lost.is_set():
        now = loop.time()
        if now >= next_poll:
            session.request_data()
            next_poll = now + POLL_INTERVAL
        if now >= next_commit:
            await commit_reading(session)
            next_commit = now + COMMIT_INTERVAL
        if REMOTE_SYNC and now >= next_sync:
            await sync_history(session)
            next_sync = now + SYNC_INTERVAL
        try:
            await asyncio.wait_for(lost.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            pass


async def run_session(address: str, aggregator: ReadingAggregator, faults: FaultTracker) -> bool:
    """One connection cycle. Returns True if any data arrived before the link was lost."""
    session = create_session(address, timeout=CONNECT_TIMEOUT, aggregator=aggregator, faults=faults)
    lost = asyncio.Event()

    def on_event(event: SessionEvent) -> None:
        if isinstance(event, FaultRaised):
            store_fault_later(event.fault)
        elif isinstance(event, LinkStateChanged):
            logger.info("Link %s -> %s", event.previous.name, event.state.name)
        elif isinstance(event, LinkLost):
            logger.error("Link to %s lost after %d attempts", event.device_name or address, event.attempts)
            lost.set()

    session.subscribe(on_event)
    try:
        await session.transport.connect()
        if not await session.attach():
            raise TransportError(TransportErrorKind.CONNECT_FAILED, "Required characteristics not found")
        await poll_until_lost(session, lost)
    finally:
        await session.close()
    return session.has_data


async def run_forever(address: str) -> None:
    init_db(DB_PATH)
    if REMOTE_SYNC:
        try:
            await asyncio.to_thread(setup_mysql)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to set up MySQL: {e}")

    aggregator = ReadingAggregator()
    aggregator.restore(load_readings(DB_PATH, limit=HISTORY_CAPACITY))
    faults = FaultTracker()
    faults.restore(load_faults(DB_PATH))
    notifier = make_fault_notifier(device_name=lambda: aggregator.device_name)
    if notifier is not None:
        faults.add_callback(notifier)

    logger.info(
        "Starting BMS service for %s -> %s, poll every %ss (max connect attempts: %s)",
        address, DB_PATH, POLL_INTERVAL, MAX_CONNECT_ATTEMPTS,
    )

    failure_count = 0
    while True:
        try:
            had_data = await run_session(address, aggregator, faults)
        except TransportError as exc:
            had_data = False
            logger.error(f"Connection failed: {exc}")

        failure_count = 0 if had_data else failure_count + 1
        if failure_count >= MAX_CONNECT_ATTEMPTS:
            logger.critical("Too many consecutive failed connections. Exiting.")
            raise RuntimeError("Max connection attempts reached")
        logger.warning("Starting a fresh connection cycle (%d/%d)", failure_count, MAX_CONNECT_ATTEMPTS)
        await asyncio.sleep(2)


def main() -> int:
    parser = argparse.ArgumentParser(description="BMS Bluetooth telemetry service")
    parser.add_argument("--scan", action="store_true", help="Scan for devices and save them to the device file")
    parser.add_argument("--delete-history", type=int, metavar="INDEX",
                        help="Delete the INDEX-th newest stored reading and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.scan:
        devices = asyncio.run(discover_devices())
        if devices:
            save_devices(devices)
        return 0

    if args.delete_history is not None:
        return 0 if delete_history_entry(args.delete_history) else 1

    address = load_device_address()
    if not address:
        logger.error("No BMS address configured!")
        logger.error("Set BMS_ADDRESS in .env or run bms_service.py --scan to discover devices")
        return 1

    try:
        asyncio.run(run_forever(address))
        return 0
    except KeyboardInterrupt:
        logger.info("BMS service stopped by user")
        return 0
    except Exception as exc:  # noqa: BLE001
        logger.critical(f"BMS service crashed: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
