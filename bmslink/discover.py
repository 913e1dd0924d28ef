import logging
from datetime import datetime
from typing import Iterable, List

from bleak import BleakScanner

logger = logging.getLogger(__name__)

DEFAULT_NAME_KEYWORDS = ("BMS", "BT", "UART")


async def discover_devices(scan_time: float = 10.0,
                           keywords: Iterable[str] = DEFAULT_NAME_KEYWORDS) -> List[dict]:
    """
    Scan for BMS devices via Bluetooth.

    Args:
        scan_time: Duration to scan in seconds
        keywords: Case-insensitive name fragments a device must contain.
            An empty sequence accepts every named device.

    Returns:
        List of discovered device info dicts
    """
    keywords = [k.upper() for k in keywords]
    logger.info("Scanning for BMS devices for %s seconds...", scan_time)
    devices = await BleakScanner.discover(timeout=scan_time)

    discovered = []
    for device in devices:
        if not device.name:
            continue
        if keywords and not any(k in device.name.upper() for k in keywords):
            continue
        discovered.append({
            "name": device.name,
            "address": device.address,
            "last_seen": datetime.now().isoformat(),
        })
        logger.info("Found: %s (%s)", device.name, device.address)

    if not discovered:
        logger.info("No devices found")
    return discovered
