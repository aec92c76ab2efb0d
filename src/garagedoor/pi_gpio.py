"""Raspberry Pi GPIO drivers for the garage door sensor, trigger input and opener relay.

Lines are driven through gpiozero's low-level pin API so the same code runs on any
of its pin factories (lgpio on the Pi 5, RPi.GPIO, pigpio, native, or the mock
factory used by the tests).

Usage notes:
- On a Pi 5 install lgpio: `sudo apt install python3-lgpio`
- For pigpio start the daemon first: `sudo systemctl enable --now pigpiod`
- Run as root or as a user in the gpio group.
"""
from __future__ import annotations
import asyncio
import importlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from gpiozero import GPIOZeroError

from .devices import ConfigError, DoorState, HardwareError

logger = logging.getLogger(__name__)

# dwell time the opener needs the relay contact held closed
RELAY_HOLD_SECONDS = 0.2
# relay stays released this long before another pulse may start
RELAY_SETTLE_SECONDS = 0.25

PIN_FACTORIES = {
    "lgpio": ("gpiozero.pins.lgpio", "LGPIOFactory"),
    "rpigpio": ("gpiozero.pins.rpigpio", "RPiGPIOFactory"),
    "pigpio": ("gpiozero.pins.pigpio", "PiGPIOFactory"),
    "native": ("gpiozero.pins.native", "NativeFactory"),
    "mock": ("gpiozero.pins.mock", "MockFactory"),
}

_DIRECTIONS = {"in": "input", "out": "output"}
_EDGES = ("none", "rising", "falling", "both")
_CLOSED = object()


def make_pin_factory(name: str):
    try:
        module_name, class_name = PIN_FACTORIES[name]
    except KeyError:
        raise ConfigError(f"unknown pin factory {name!r}; expected one of {sorted(PIN_FACTORIES)}") from None
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise HardwareError(f"pin factory {name!r} unavailable: {e}") from e
    try:
        return getattr(module, class_name)()
    except Exception as e:
        # each backend raises its own error type when the hardware is missing
        raise HardwareError(f"pin factory {name!r} failed to start: {e}") from e


@dataclass(frozen=True)
class GpioConfig:
    status_pin: int
    trigger_pin: int
    relay_pin: int
    led_pin: Optional[int] = None
    pin_factory: str = "lgpio"

    def __post_init__(self):
        for name in ("status_pin", "trigger_pin", "relay_pin"):
            if getattr(self, name) is None:
                raise ConfigError(f"{name} is required")
        pins = [p for p in (self.status_pin, self.trigger_pin, self.relay_pin, self.led_pin) if p is not None]
        for p in pins:
            if not isinstance(p, int) or isinstance(p, bool) or p < 0:
                raise ConfigError(f"GPIO pin must be a non-negative integer, got {p!r}")
        if len(set(pins)) != len(pins):
            raise ConfigError(f"GPIO pins must be distinct, got {pins}")
        if self.pin_factory not in PIN_FACTORIES:
            raise ConfigError(f"unknown pin factory {self.pin_factory!r}; expected one of {sorted(PIN_FACTORIES)}")


class DigitalLine:
    """One GPIO pin with sysfs-like export/direction/edge semantics.

    Change notifications arrive on the pin factory's callback thread and are moved
    onto the asyncio loop that called value_changes().
    """

    def __init__(self, pin: int, factory):
        self.pin = pin
        self._factory = factory
        self._pin = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None

    def __repr__(self):
        return f"<DigitalLine GPIO{self.pin} {'exported' if self._pin is not None else 'released'}>"

    @property
    def exported(self) -> bool:
        return self._pin is not None

    def export(self):
        if self._pin is not None:
            return
        try:
            self._pin = self._factory.pin(self.pin)
        except GPIOZeroError as e:
            raise HardwareError(f"GPIO{self.pin}: export failed: {e}") from e

    def unexport(self):
        if self._pin is None:
            return
        pin, self._pin = self._pin, None
        try:
            pin.when_changed = None
            pin.close()
        except Exception as e:
            # backends raise their own error types from close
            raise HardwareError(f"GPIO{self.pin}: unexport failed: {e}") from e
        finally:
            self._end_stream()

    def set_direction(self, direction: str, initial_value: int = 0):
        try:
            function = _DIRECTIONS[direction]
        except KeyError:
            raise ValueError(f"direction must be 'in' or 'out', got {direction!r}") from None
        pin = self._exported()
        try:
            pin.function = function
            if function == "output":
                pin.state = initial_value
        except GPIOZeroError as e:
            raise HardwareError(f"GPIO{self.pin}: set direction {direction} failed: {e}") from e

    def set_edge(self, edge: str):
        if edge not in _EDGES:
            raise ValueError(f"edge must be one of {_EDGES}, got {edge!r}")
        pin = self._exported()
        try:
            pin.edges = edge
        except GPIOZeroError as e:
            raise HardwareError(f"GPIO{self.pin}: set edge {edge} failed: {e}") from e

    def get_value(self) -> int:
        pin = self._exported()
        try:
            return 1 if pin.state else 0
        except GPIOZeroError as e:
            raise HardwareError(f"GPIO{self.pin}: read failed: {e}") from e

    def set_value(self, value: int):
        pin = self._exported()
        try:
            pin.state = 1 if value else 0
        except GPIOZeroError as e:
            raise HardwareError(f"GPIO{self.pin}: write {value} failed: {e}") from e

    def value_changes(self) -> AsyncIterator[int]:
        """Start edge detection and return an iterator of the raw value reported by each edge.

        Edges are queued from the moment this is called. The iterator ends when the
        line is released. Must be called from a running event loop.
        """
        pin = self._exported()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        try:
            pin.when_changed = self._on_change
        except GPIOZeroError as e:
            raise HardwareError(f"GPIO{self.pin}: edge detection failed: {e}") from e
        return self._drain(self._queue)

    @staticmethod
    async def _drain(queue: asyncio.Queue) -> AsyncIterator[int]:
        while True:
            value = await queue.get()
            if value is _CLOSED:
                return
            yield value

    def _on_change(self, ticks, state):
        # called from the pin factory's thread
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, 1 if state else 0)
        except RuntimeError:
            # loop already closed during shutdown
            pass

    def _end_stream(self):
        if self._queue is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
        except RuntimeError:
            pass

    def _exported(self):
        if self._pin is None:
            raise HardwareError(f"GPIO{self.pin}: line is not exported")
        return self._pin


class Hardware:
    """The controller's lines plus the lock that serialises relay pulses."""

    def __init__(self, status: DigitalLine, trigger: DigitalLine, relay: DigitalLine,
                 led: Optional[DigitalLine] = None):
        self.status = status
        self.trigger = trigger
        self.relay = relay
        self.led = led
        self._relay_lock = asyncio.Lock()

    @classmethod
    def open(cls, config: GpioConfig, factory=None) -> "Hardware":
        """Export and configure every line; release what was exported if a step fails."""
        if factory is None:
            factory = make_pin_factory(config.pin_factory)
        led = DigitalLine(config.led_pin, factory) if config.led_pin is not None else None
        hw = cls(
            status=DigitalLine(config.status_pin, factory),
            trigger=DigitalLine(config.trigger_pin, factory),
            relay=DigitalLine(config.relay_pin, factory),
            led=led,
        )
        try:
            if hw.led is not None:
                hw.led.export()
                hw.led.set_direction("out", 0)
            hw.relay.export()
            hw.relay.set_direction("out", 0)
            hw.status.export()
            hw.status.set_direction("in")
            hw.status.set_edge("both")
            hw.trigger.export()
            hw.trigger.set_direction("in")
            hw.trigger.set_edge("rising")
        except BaseException:
            hw.close()
            raise
        logger.info("[gpio] status=GPIO%s trigger=GPIO%s relay=GPIO%s led=%s",
                    config.status_pin, config.trigger_pin, config.relay_pin,
                    f"GPIO{config.led_pin}" if config.led_pin is not None else "none")
        return hw

    def close(self):
        errors = []
        for line in self.lines():
            try:
                line.unexport()
            except HardwareError as e:
                errors.append(e)
        if errors:
            raise errors[0]
        logger.debug("[gpio] lines released")

    def lines(self):
        return [line for line in (self.led, self.relay, self.status, self.trigger) if line is not None]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None:
            self.close()
            return
        # keep the error that ended the run
        try:
            self.close()
        except HardwareError as e:
            logger.error("[gpio] release failed: %s", e)

    def read_door_state(self) -> DoorState:
        return DoorState.from_value(self.status.get_value())

    async def pulse(self):
        """Energise the relay for RELAY_HOLD_SECONDS, then let it settle.

        Concurrent callers run one after another.
        """
        async with self._relay_lock:
            logger.info("[relay] pulse %.0fms", RELAY_HOLD_SECONDS * 1000)
            if self.led is not None:
                self.led.set_value(1)
            self.relay.set_value(1)
            await asyncio.sleep(RELAY_HOLD_SECONDS)
            self.relay.set_value(0)
            if self.led is not None:
                self.led.set_value(0)
            await asyncio.sleep(RELAY_SETTLE_SECONDS)
