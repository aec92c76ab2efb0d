from types import SimpleNamespace

import aiomqtt
import pytest

from garagedoor.devices import BusError
from garagedoor.mqtt import IncomingPublish, MqttBus


class StubClient:
    def __init__(self, messages=(), error=None):
        self.calls = []
        self._messages = list(messages)
        self._error = error

    async def publish(self, topic, payload=None, qos=0, retain=False):
        if self._error:
            raise self._error
        self.calls.append(("publish", topic, payload, qos, retain))

    async def subscribe(self, topic, qos=0):
        if self._error:
            raise self._error
        self.calls.append(("subscribe", topic, qos))

    @property
    def messages(self):
        return self._iter()

    async def _iter(self):
        for m in self._messages:
            yield m
        if self._error:
            raise self._error


def message(topic, payload):
    return SimpleNamespace(topic=topic, payload=payload)


@pytest.mark.asyncio
async def test_publish_and_subscribe_forward_to_client():
    client = StubClient()
    bus = MqttBus(client)
    await bus.publish("garage/state", b"open", retain=True)
    await bus.subscribe("garage/command")
    assert client.calls == [
        ("publish", "garage/state", b"open", 1, True),
        ("subscribe", "garage/command", 1),
    ]


@pytest.mark.asyncio
async def test_client_errors_become_bus_errors():
    bus = MqttBus(StubClient(error=aiomqtt.MqttError("not connected")))
    with pytest.raises(BusError):
        await bus.publish("garage/state", b"open")
    with pytest.raises(BusError):
        await bus.subscribe("garage/command")


@pytest.mark.asyncio
async def test_events_normalise_payloads():
    client = StubClient(messages=[
        message("garage/command", b"OPEN"),
        message("garage/command", "CLOSE"),
        message("garage/other", None),
        message("garage/other", 5),
    ])
    events = [e async for e in MqttBus(client).events()]
    assert events == [
        IncomingPublish("garage/command", b"OPEN"),
        IncomingPublish("garage/command", b"CLOSE"),
        IncomingPublish("garage/other", b""),
        IncomingPublish("garage/other", b"5"),
    ]


@pytest.mark.asyncio
async def test_event_stream_error_is_bus_error():
    client = StubClient(messages=[message("garage/command", b"OPEN")],
                        error=aiomqtt.MqttError("connection lost"))
    received = []
    with pytest.raises(BusError):
        async for event in MqttBus(client).events():
            received.append(event)
    assert received == [IncomingPublish("garage/command", b"OPEN")]
