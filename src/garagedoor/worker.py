import asyncio
import logging
from typing import Optional

from .devices import BusError, Command, DoorState, InvalidCommand, Topics, discovery_payload
from .mqtt import IncomingPublish
from .pi_gpio import Hardware

logger = logging.getLogger(__name__)

# republish period; bounds how stale the broker's retained state can get after a lost edge
STATE_REFRESH_SECONDS = 60.0

_CLOSED = object()

# when several sources are ready at once they are handled in this order
_PRIORITY = ("shutdown", "status", "trigger", "bus", "tick")


class DoorWorker:
    """Reconciles sensor edges, trigger presses, bus commands and a refresh timer.

    The status line is the only source of truth for the door state: it is read
    again for every publish and before every command decision.
    """

    def __init__(self, hardware: Hardware, bus, topics: Topics, shutdown: asyncio.Event,
                 name: str = "Garage Door", unique_id: str = "garage_door",
                 refresh_interval: Optional[float] = STATE_REFRESH_SECONDS):
        self.hardware = hardware
        self.bus = bus
        self.topics = topics
        self.shutdown = shutdown
        self.name = name
        self.unique_id = unique_id
        self.refresh_interval = refresh_interval

    async def run(self):
        """Announce the door, then handle events until shutdown or a stream closes.

        HardwareError and BusError propagate; everything else a single event can
        go wrong with is logged and the loop carries on.
        """
        status_changes = self.hardware.status.value_changes()
        trigger_changes = self.hardware.trigger.value_changes()

        await self.bus.publish(self.topics.config,
                               discovery_payload(self.name, self.unique_id, self.topics),
                               retain=False)
        await self.bus.subscribe(self.topics.command)
        await self.publish_state(self.hardware.read_door_state())
        bus_events = self.bus.events()

        sources = {
            "shutdown": self.shutdown.wait,
            "status": lambda: anext(status_changes, _CLOSED),
            "trigger": lambda: anext(trigger_changes, _CLOSED),
            "bus": lambda: anext(bus_events, _CLOSED),
        }
        if self.refresh_interval is not None:
            sources["tick"] = lambda: asyncio.sleep(self.refresh_interval)

        pending = {name: asyncio.ensure_future(source()) for name, source in sources.items()}
        logger.info("[door] running")
        try:
            while True:
                done, _ = await asyncio.wait(pending.values(), return_when=asyncio.FIRST_COMPLETED)
                name = next(n for n in _PRIORITY if n in pending and pending[n] in done)
                task = pending.pop(name)
                if not await self._handle(name, task):
                    break
                pending[name] = asyncio.ensure_future(sources[name]())
        finally:
            for task in pending.values():
                task.cancel()
            await asyncio.gather(*pending.values(), return_exceptions=True)
        logger.info("[door] stopped")

    async def _handle(self, name: str, task: asyncio.Future) -> bool:
        """Handle one completed source; False ends the loop."""
        if name == "shutdown":
            logger.info("[door] shutdown requested")
            return False

        if name == "tick":
            await self.publish_state(self.hardware.read_door_state())
            return True

        if name == "bus":
            try:
                event = task.result()
            except BusError as e:
                logger.error("[mqtt] %s", e)
                raise
        else:
            event = task.result()

        if event is _CLOSED:
            logger.info("[door] %s stream closed", name)
            return False

        if name == "status":
            await self.publish_state(DoorState.from_value(event))
        elif name == "trigger":
            await self._on_trigger(event)
        else:
            await self._on_bus_event(event)
        return True

    async def publish_state(self, state: DoorState):
        logger.info("[door] state %s", state.value)
        await self.bus.publish(self.topics.state, state.payload, retain=True)

    async def _on_trigger(self, value: int):
        if not value:
            logger.debug("[door] trigger reported low; ignored")
            return
        logger.info("[door] trigger pressed")
        await self.hardware.pulse()

    async def _on_bus_event(self, event):
        if not isinstance(event, IncomingPublish) or event.topic != self.topics.command:
            logger.debug("[mqtt] ignoring %r", event)
            return
        try:
            command = Command.parse(event.payload)
        except InvalidCommand as e:
            logger.warning("[door] invalid command ignored: %s", e)
            return
        current = self.hardware.read_door_state()
        if not command.applies_to(current):
            logger.warning("[door] %s ignored; door is %s", command.value, current.value)
            return
        logger.info("[door] %s accepted; door is %s", command.value, current.value)
        await self.hardware.pulse()
