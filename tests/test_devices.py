import json

import pytest

from garagedoor.devices import (
    Command, ConfigError, DoorState, InvalidCommand, Topics, discovery_payload,
)


@pytest.mark.parametrize("payload,command", [
    (b"OPEN", Command.OPEN),
    (b"CLOSE", Command.CLOSE),
])
def test_parse_command(payload, command):
    assert Command.parse(payload) is command


@pytest.mark.parametrize("payload", [b"open", b"close", b" OPEN", b"CLOSE\n", b"", b"STOP", b"\xc3\x28"])
def test_parse_rejects_anything_else(payload):
    with pytest.raises(InvalidCommand):
        Command.parse(payload)


@pytest.mark.parametrize("command,state,applies", [
    (Command.OPEN, DoorState.CLOSED, True),
    (Command.CLOSE, DoorState.OPEN, True),
    (Command.OPEN, DoorState.OPEN, False),
    (Command.CLOSE, DoorState.CLOSED, False),
])
def test_command_applies_only_to_opposite_state(command, state, applies):
    assert command.applies_to(state) is applies


def test_door_state_payloads():
    assert DoorState.OPEN.payload == b"open"
    assert DoorState.CLOSED.payload == b"closed"
    assert DoorState.from_value(0) is DoorState.OPEN
    assert DoorState.from_value(1) is DoorState.CLOSED


def test_topics_from_base():
    topics = Topics.from_base("homeassistant/cover/garage/")
    assert topics == Topics(
        config="homeassistant/cover/garage/config",
        command="homeassistant/cover/garage/command",
        state="homeassistant/cover/garage/state",
    )
    with pytest.raises(ConfigError):
        Topics.from_base("")


def test_discovery_payload_keys():
    topics = Topics.from_base("garage")
    descriptor = json.loads(discovery_payload("Garage", "g1", topics))
    assert set(descriptor) == {
        "name", "unique_id", "command_topic", "payload_close", "payload_open",
        "state_topic", "state_open", "state_closed", "device_class",
    }
    assert descriptor["command_topic"] == "garage/command"
    assert descriptor["state_topic"] == "garage/state"
