from __future__ import annotations
import json
from dataclasses import dataclass
from enum import Enum


class GarageError(Exception):
    """Base class for controller failures."""


class ConfigError(GarageError):
    pass


class HardwareError(GarageError):
    pass


class BusError(GarageError):
    pass


class InvalidCommand(ValueError):
    pass


class DoorState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"

    @classmethod
    def from_value(cls, value: int) -> "DoorState":
        # normally-closed sensor: 0 means the contact is apart
        if value == 0:
            return cls.OPEN
        return cls.CLOSED

    @property
    def payload(self) -> bytes:
        return self.value.encode("ascii")


class Command(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"

    @classmethod
    def parse(cls, payload: bytes) -> "Command":
        """Decode a command topic payload; only the exact tokens are accepted."""
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidCommand(f"command payload is not utf-8: {payload!r}") from e
        for cmd in cls:
            if text == cmd.value:
                return cmd
        raise InvalidCommand(f"unknown command: {text!r}")

    def target(self) -> DoorState:
        return DoorState.OPEN if self is Command.OPEN else DoorState.CLOSED

    def applies_to(self, current: DoorState) -> bool:
        """True when the door is in the opposite state to the one requested."""
        return current is not self.target()


@dataclass(frozen=True)
class Topics:
    config: str
    command: str
    state: str

    @classmethod
    def from_base(cls, base: str) -> "Topics":
        base = base.rstrip("/")
        if not base:
            raise ConfigError("base topic must not be empty")
        return cls(config=f"{base}/config", command=f"{base}/command", state=f"{base}/state")


def discovery_payload(name: str, unique_id: str, topics: Topics) -> bytes:
    descriptor = {
        "name": name,
        "unique_id": unique_id,
        "command_topic": topics.command,
        "payload_close": Command.CLOSE.value,
        "payload_open": Command.OPEN.value,
        "state_topic": topics.state,
        "state_open": DoorState.OPEN.value,
        "state_closed": DoorState.CLOSED.value,
        "device_class": "garage",
    }
    return json.dumps(descriptor).encode("utf-8")
