# bmslink/session.py
"""Single-writer owner of the telemetry state for one BMS link.

Notifications, transport errors, supervisor timers and caller commands are
all posted to one asyncio queue and handled in arrival order by a single
worker task. Readers get immutable snapshots.
"""
import asyncio
import logging
from typing import Any, Callable, List, Optional, Set, Tuple

from .aggregator import ReadingAggregator
from .ascii_frames import decode_frame, to_hex
from .errors import FrameError, TransportError, TransportErrorKind
from .faults import FaultTracker
from .models import (
    FaultEvent, FaultRaised, FaultReport, LinkLost, LinkState, LinkStateChanged,
    Reading, ReadingUpdated, SessionEvent,
)
from .supervisor import LinkSupervisor

logger = logging.getLogger(__name__)

Listener = Callable[[SessionEvent], None]


class BmsSession:
    """
    Wires a transport to the frame decoder, aggregator, fault tracker and
    link supervisor.

    The transport must provide ``name``, ``can_notify``, ``can_write``,
    ``is_connected()``, ``async start_notify(callback)``,
    ``async write(data) -> bool`` and ``async disconnect()``.
    """
    def __init__(self, transport, aggregator: Optional[ReadingAggregator] = None,
                 faults: Optional[FaultTracker] = None, **supervisor_options: Any):
        self.transport = transport
        self.aggregator = aggregator if aggregator is not None else ReadingAggregator()
        self.faults = faults if faults is not None else FaultTracker()
        self.supervisor = LinkSupervisor(
            send=self._send,
            scheduler=self,
            is_connected=transport.is_connected,
            restart_monitoring=self._restart_monitoring,
            on_link_lost=self._link_lost,
            on_state_change=self._state_changed,
            **supervisor_options,
        )
        self.last_raw_data = ""
        self.has_data = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._listeners: List[Listener] = []
        self._worker: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # --- snapshots ---
    @property
    def state(self) -> LinkState:
        return self.supervisor.state

    @property
    def current(self) -> Optional[Reading]:
        return self.aggregator.current

    @property
    def history(self) -> Tuple[Reading, ...]:
        return self.aggregator.history

    @property
    def fault_log(self) -> Tuple[FaultEvent, ...]:
        return self.faults.faults

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- lifecycle ---
    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def attach(self) -> bool:
        """Enable notifications on a connected transport and start the link session."""
        self.start()
        can_notify, can_write = self.transport.can_notify, self.transport.can_write
        if can_notify and can_write:
            try:
                await self.transport.start_notify(self.feed)
            except TransportError as e:
                logger.error(f"Error setting up notifications: {e}")
                can_notify = False
        return await self._call(self._attach, can_notify, can_write)

    async def detach(self) -> None:
        await self._call(self.supervisor.on_detach)
        await self.transport.disconnect()

    async def close(self, grace: float = 2.0) -> None:
        if self.supervisor.is_connected:
            await self.detach()
        else:
            await self.transport.disconnect()
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=grace)
            for task in pending:
                task.cancel()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def drain(self) -> None:
        """Wait until every event posted so far has been handled."""
        await self._queue.join()

    # --- inputs ---
    def feed(self, data: bytes) -> None:
        """Notification callback for the transport."""
        self._post(self._handle_frame, bytes(data))

    def report_transport_error(self, kind: TransportErrorKind, cause: Optional[BaseException] = None) -> None:
        self._post(self.supervisor.on_transport_error, kind, cause)

    def request_data(self) -> None:
        """Ask the device for fresh frames. The response arrives as later events."""
        self._post(self.supervisor.request_data)

    async def commit(self) -> Optional[Reading]:
        return await self._call(self.aggregator.commit)

    async def annotate(self, reading: Reading, external_id: str) -> Optional[Reading]:
        return await self._call(self.aggregator.annotate, reading, external_id)

    async def discard(self, index: int) -> Optional[Reading]:
        return await self._call(self.aggregator.discard, index)

    async def clear_faults(self) -> None:
        await self._call(self.faults.clear)

    async def record_fault(self, report: FaultReport) -> FaultEvent:
        """Record a fault through the same path as a device error frame."""
        return await self._call(self._record_fault, report)

    # --- scheduler used by the supervisor ---
    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, self._post, callback)

    # --- event handling, runs on the worker ---
    async def _run(self) -> None:
        while True:
            callback, args, future = await self._queue.get()
            try:
                result = callback(*args)
            except Exception as e:  # noqa: BLE001
                logger.error(f"Handler {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)
                if future is not None and not future.done():
                    future.set_exception(e)
            else:
                if future is not None and not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    def _post(self, callback: Callable[..., Any], *args: Any) -> None:
        self._queue.put_nowait((callback, args, None))

    async def _call(self, callback: Callable[..., Any], *args: Any) -> Any:
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((callback, args, future))
        return await future

    def _attach(self, can_notify: bool, can_write: bool) -> bool:
        if self.transport.name:
            self.aggregator.device_name = self.transport.name
        return self.supervisor.on_attach(can_notify, can_write)

    def _handle_frame(self, data: bytes) -> None:
        logger.debug("Received notification: %s", to_hex(data))
        try:
            event = decode_frame(data)
        except FrameError as e:
            logger.warning("Dropped frame: %s", e)
            return

        self.last_raw_data = to_hex(data)
        if isinstance(event, FaultReport):
            self._record_fault(event)
        else:
            reading = self.aggregator.apply(event)
            if reading is not None:
                self._emit(ReadingUpdated(reading))
        self.has_data = True
        self.supervisor.on_data_received()

    def _record_fault(self, report: FaultReport) -> FaultEvent:
        fault = self.faults.record(report.kind, report.details)
        self._emit(FaultRaised(fault))
        return fault

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:  # noqa: BLE001
                logger.error(f"Listener {listener!r} failed on {type(event).__name__}: {e}")

    # --- supervisor callbacks ---
    def _send(self, data: bytes) -> None:
        self._spawn(self._write(data))

    async def _write(self, data: bytes) -> None:
        if not await self.transport.write(data):
            self.report_transport_error(TransportErrorKind.WRITE_FAILED)

    def _restart_monitoring(self) -> None:
        self._spawn(self._restart())

    async def _restart(self) -> None:
        try:
            await self.transport.start_notify(self.feed)
        except TransportError as e:
            self.report_transport_error(TransportErrorKind.NOTIFICATION_STREAM, e)

    def _link_lost(self, attempts: int) -> None:
        self._emit(LinkLost(attempts=attempts, device_name=self.aggregator.device_name))
        self._spawn(self.transport.disconnect())

    def _state_changed(self, previous: LinkState, state: LinkState) -> None:
        self._emit(LinkStateChanged(previous=previous, state=state))

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
