import datetime

import pytest


class FakeHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock with an asyncio-style call_later."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def call_later(self, delay, callback):
        handle = FakeHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.handles.remove(handle)
            self.now = handle.when
            handle.callback()
        self.now = target


class FakeTransport:
    """In-memory stand-in for BleTransport."""

    def __init__(self, name="BMS-Test", can_notify=True, can_write=True, write_ok=True):
        self.name = name
        self.can_notify = can_notify
        self.can_write = can_write
        self.write_ok = write_ok
        self.connected = True
        self.writes = []
        self.notify_callback = None
        self.notify_calls = 0
        self.disconnects = 0

    def is_connected(self):
        return self.connected

    async def start_notify(self, callback):
        self.notify_callback = callback
        self.notify_calls += 1

    async def write(self, data):
        self.writes.append(bytes(data))
        return self.write_ok

    async def disconnect(self):
        self.connected = False
        self.disconnects += 1


class StepClock:
    """Returns a time one second later on every call."""

    def __init__(self, start=datetime.datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += datetime.timedelta(seconds=1)
        return self.now


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def clock():
    return StepClock()
