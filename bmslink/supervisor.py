"""Connection lifecycle for a BMS link.

:class:`LinkSupervisor` is a plain state machine. It never touches Bluetooth
or the event loop directly; it is driven by ``on_attach``, ``on_detach``,
``request_data``, ``on_data_received`` and ``on_transport_error`` and uses an
injected scheduler for its timers. Anything with an asyncio-style
``call_later(delay, callback)`` returning a handle with ``cancel()`` works,
including ``asyncio.get_running_loop()`` itself.
"""
import logging
from typing import Any, Callable, Optional

from .ascii_frames import POLL_COMMAND
from .errors import TransportErrorKind
from .models import LinkState

logger = logging.getLogger(__name__)

RESPONSE_TIMEOUT = 5.0
LIVENESS_INTERVAL = 5.0
RETRY_DELAY = 2.0
MAX_RECONNECT_ATTEMPTS = 3


class LinkSupervisor:
    def __init__(
        self,
        send: Callable[[bytes], Any],
        scheduler: Any,
        *,
        is_connected: Optional[Callable[[], bool]] = None,
        restart_monitoring: Optional[Callable[[], None]] = None,
        on_link_lost: Optional[Callable[[int], None]] = None,
        on_state_change: Optional[Callable[[LinkState, LinkState], None]] = None,
        response_timeout: float = RESPONSE_TIMEOUT,
        liveness_interval: float = LIVENESS_INTERVAL,
        retry_delay: float = RETRY_DELAY,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
    ):
        self._send = send
        self._scheduler = scheduler
        self._is_connected = is_connected
        self._restart_monitoring = restart_monitoring
        self._on_link_lost = on_link_lost
        self._on_state_change = on_state_change
        self.response_timeout = response_timeout
        self.liveness_interval = liveness_interval
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts

        self.state = LinkState.DISCONNECTED
        self.reconnect_attempts = 0
        # Bumped on every attach/detach; timers scheduled under an older
        # generation do nothing when they fire.
        self.generation = 0
        self._request_seq = 0
        self._timeout_handle = None
        self._retry_handle = None
        self._liveness_handle = None

    @property
    def is_connected(self) -> bool:
        return self.state is not LinkState.DISCONNECTED

    @property
    def is_waiting_for_data(self) -> bool:
        return self.state is LinkState.AWAITING_RESPONSE

    def on_attach(self, can_notify: bool, can_write: bool) -> bool:
        """Start a session if the device offers both notify and write."""
        if not (can_notify and can_write):
            logger.warning(
                "Device lacks required characteristics (notify=%s, write=%s)",
                can_notify, can_write,
            )
            if self.state is not LinkState.DISCONNECTED:
                self.on_detach()
            return False

        self._cancel_timers()
        self.generation += 1
        self.reconnect_attempts = 0
        self._set_state(LinkState.CONNECTED)
        self._schedule_liveness()
        logger.info("Link attached (session %d)", self.generation)
        return True

    def on_detach(self) -> None:
        self._cancel_timers()
        self.generation += 1
        self._set_state(LinkState.DISCONNECTED)

    def request_data(self) -> bool:
        """Send the poll command. Returns False when the link is not idle."""
        if self.state is not LinkState.CONNECTED:
            logger.warning("Cannot request data while %s", self.state.name)
            return False

        self._set_state(LinkState.AWAITING_RESPONSE)
        self._request_seq += 1
        self._timeout_handle = self._call_later(
            self.response_timeout, self._on_timeout, self._request_seq
        )
        if self._send(POLL_COMMAND) is False:
            self.on_transport_error(TransportErrorKind.WRITE_FAILED)
            return False
        logger.debug("Requested new data from device")
        return True

    def on_data_received(self) -> None:
        if self.state is LinkState.AWAITING_RESPONSE:
            self._cancel(self._timeout_handle)
            self._timeout_handle = None
            self._set_state(LinkState.CONNECTED)

    def on_transport_error(self, kind: TransportErrorKind, cause: Optional[BaseException] = None) -> None:
        if self.state is LinkState.DISCONNECTED:
            logger.debug("Ignoring %s while disconnected", kind.value)
            return

        self.reconnect_attempts += 1
        logger.warning(
            "Connection error: %s%s (attempt %d of %d)",
            kind.value, f" ({cause})" if cause else "",
            self.reconnect_attempts, self.max_attempts,
        )

        if self.reconnect_attempts >= self.max_attempts:
            attempts = self.reconnect_attempts
            logger.error("Max reconnection attempts reached, dropping link")
            self.on_detach()
            if self._on_link_lost is not None:
                self._on_link_lost(attempts)
            return

        self._cancel(self._timeout_handle)
        self._timeout_handle = None
        self._set_state(LinkState.CONNECTED)
        self._cancel(self._retry_handle)
        self._retry_handle = self._call_later(self.retry_delay, self._retry)

    # --- timers ---
    def _call_later(self, delay: float, callback: Callable[..., None], *args: Any):
        generation = self.generation

        def fire() -> None:
            if generation != self.generation or self.state is LinkState.DISCONNECTED:
                logger.debug("Dropping stale timer from session %d", generation)
                return
            callback(*args)

        return self._scheduler.call_later(delay, fire)

    def _on_timeout(self, request_seq: int) -> None:
        if request_seq != self._request_seq or self.state is not LinkState.AWAITING_RESPONSE:
            return
        self._timeout_handle = None
        logger.info("Data reception timeout after %.1fs", self.response_timeout)
        self._set_state(LinkState.CONNECTED)

    def _retry(self) -> None:
        self._retry_handle = None
        logger.info("Restarting monitoring")
        if self._restart_monitoring is not None:
            self._restart_monitoring()

    def _schedule_liveness(self) -> None:
        if self._is_connected is not None:
            self._liveness_handle = self._call_later(self.liveness_interval, self._check_liveness)

    def _check_liveness(self) -> None:
        try:
            alive = bool(self._is_connected())
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Error checking connection: {e}")
            alive = False
        self._schedule_liveness()
        if not alive:
            logger.warning("Device disconnected during check")
            self.on_transport_error(TransportErrorKind.LIVENESS_CHECK)

    @staticmethod
    def _cancel(handle) -> None:
        if handle is not None:
            handle.cancel()

    def _cancel_timers(self) -> None:
        for handle in (self._timeout_handle, self._retry_handle, self._liveness_handle):
            self._cancel(handle)
        self._timeout_handle = self._retry_handle = self._liveness_handle = None

    def _set_state(self, state: LinkState) -> None:
        previous, self.state = self.state, state
        if previous is not state:
            logger.debug("Link state %s -> %s", previous.name, state.name)
            if self._on_state_change is not None:
                self._on_state_change(previous, state)
