import asyncio

import pytest

from garagedoor.devices import HardwareError, Topics
from garagedoor.mqtt import IncomingPublish
from garagedoor.pi_gpio import Hardware

_END = object()


class FakeLine:
    """In-memory line: records writes and lets tests inject edges."""

    def __init__(self, pin, value=0):
        self.pin = pin
        self.value = value
        self.exported = False
        self.direction = None
        self.edge = "none"
        self.writes = []
        self.fail_writes = 0
        self._queue = None

    def export(self):
        self.exported = True

    def unexport(self):
        self.exported = False
        if self._queue is not None:
            self._queue.put_nowait(_END)

    def set_direction(self, direction, initial_value=0):
        self.direction = direction
        if direction == "out":
            self.value = initial_value

    def set_edge(self, edge):
        self.edge = edge

    def get_value(self):
        return self.value

    def set_value(self, value):
        if self.fail_writes:
            self.fail_writes -= 1
            raise HardwareError(f"GPIO{self.pin}: write {value} failed")
        self.value = value
        self.writes.append((value, asyncio.get_running_loop().time()))

    def value_changes(self):
        self._queue = asyncio.Queue()
        return self._drain(self._queue)

    @staticmethod
    async def _drain(queue):
        while True:
            item = await queue.get()
            if item is _END:
                return
            yield item

    def emit(self, value):
        self.value = value
        self._queue.put_nowait(value)

    def close_stream(self):
        self._queue.put_nowait(_END)


class FakeBus:
    def __init__(self):
        self.published = []
        self.subscriptions = []
        self._queue = asyncio.Queue()

    async def publish(self, topic, payload, qos=1, retain=False):
        self.published.append((topic, payload, retain))

    async def subscribe(self, topic, qos=1):
        self.subscriptions.append(topic)

    async def events(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def deliver(self, topic, payload):
        self._queue.put_nowait(IncomingPublish(topic=topic, payload=payload))

    def fail(self, error):
        self._queue.put_nowait(error)

    def close(self):
        self._queue.put_nowait(_END)

    def published_to(self, topic):
        return [(payload, retain) for t, payload, retain in self.published if t == topic]


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached in time"
        await asyncio.sleep(0.01)


@pytest.fixture
def topics():
    return Topics.from_base("homeassistant/cover/garage")


@pytest.fixture
def fake_hardware():
    hw = Hardware(
        status=FakeLine(22, value=1),
        trigger=FakeLine(27),
        relay=FakeLine(23),
        led=FakeLine(24),
    )
    for line in hw.lines():
        line.export()
    return hw


@pytest.fixture
def fake_bus():
    return FakeBus()
