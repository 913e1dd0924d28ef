# bmslink/ble_transport.py
# Bluetooth LE link to the BMS UART service (FFF0 / FFF1 notify / FFF2 write).

"""Bleak based transport for the BMS ASCII protocol."""
import asyncio
import logging
from typing import Callable, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from .ascii_frames import to_hex
from .errors import TransportError, TransportErrorKind

logger = logging.getLogger(__name__)

SERVICE_UUID = "0000fff0-0000-1000-8000-00805f9b34fb"
NOTIFY_CHAR_UUID = "0000fff1-0000-1000-8000-00805f9b34fb"
WRITE_CHAR_UUID = "0000fff2-0000-1000-8000-00805f9b34fb"


class BleTransport:
    """
    Owns the BleakClient and the two UART characteristics.
    """
    def __init__(self, address: str, timeout: float = 15.0):
        self.address = address
        self.timeout = timeout
        self.name: Optional[str] = None
        self.on_disconnect: Optional[Callable[[], None]] = None
        self._client: Optional[BleakClient] = None
        self._notify_char = None
        self._write_char = None
        self._notifying = False

    @property
    def can_notify(self) -> bool:
        return self._notify_char is not None and (
            "notify" in self._notify_char.properties or "indicate" in self._notify_char.properties
        )

    @property
    def can_write(self) -> bool:
        return self._write_char is not None and (
            "write" in self._write_char.properties
            or "write-without-response" in self._write_char.properties
        )

    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    async def connect(self) -> None:
        """Connect and look up the UART characteristics."""
        try:
            device = await BleakScanner.find_device_by_address(self.address, timeout=self.timeout)
        except (BleakError, OSError) as e:
            raise TransportError(TransportErrorKind.CONNECT_FAILED, f"Scan failed: {e}", e) from e
        if device is None:
            raise TransportError(TransportErrorKind.CONNECT_FAILED, f"Device {self.address} not found")

        self.name = device.name
        client = BleakClient(device, timeout=self.timeout, disconnected_callback=self._handle_disconnect)
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(TransportErrorKind.CONNECT_FAILED, f"Connect to {self.address} failed: {e}", e) from e

        self._client = client
        service = client.services.get_service(SERVICE_UUID)
        if service is None:
            logger.warning("UART service %s not found on %s", SERVICE_UUID, self.address)
        else:
            self._notify_char = service.get_characteristic(NOTIFY_CHAR_UUID)
            self._write_char = service.get_characteristic(WRITE_CHAR_UUID)
        logger.info(
            "Connected to %s (%s): notify=%s write=%s",
            self.name or "Unknown Device", self.address, self.can_notify, self.can_write,
        )

    async def start_notify(self, callback: Callable[[bytes], None]) -> None:
        if self._client is None or self._notify_char is None:
            raise TransportError(TransportErrorKind.NOTIFICATION_STREAM, "Notify characteristic not available")

        def handler(_sender, data: bytearray) -> None:
            callback(bytes(data))

        try:
            if self._notifying:
                await self._client.stop_notify(self._notify_char)
                self._notifying = False
            await self._client.start_notify(self._notify_char, handler)
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(TransportErrorKind.NOTIFICATION_STREAM, f"Error setting up notifications: {e}", e) from e
        self._notifying = True
        logger.debug("Notifications enabled for %s", NOTIFY_CHAR_UUID)

    async def write(self, data: bytes) -> bool:
        if self._client is None or self._write_char is None:
            logger.warning("Cannot write: write characteristic not available")
            return False
        try:
            response = "write" in self._write_char.properties
            await self._client.write_gatt_char(self._write_char, data, response=response)
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            logger.error(f"Error writing data: {e}")
            return False
        logger.debug("Data written: %s", to_hex(data))
        return True

    async def disconnect(self) -> None:
        """Disconnect and forget the characteristic handles."""
        client = self._client
        self._client = None
        self._notify_char = None
        self._write_char = None
        self._notifying = False
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Error during disconnect from {self.address}: {e}")
        logger.info("Disconnected from %s", self.address)

    def _handle_disconnect(self, _client: BleakClient) -> None:
        logger.info("Device %s dropped the connection", self.address)
        if self.on_disconnect is not None:
            self.on_disconnect()
