"""MQTT bus client for the garage door controller.

Thin wrapper over aiomqtt: every broker failure surfaces as BusError and inbound
messages are delivered as IncomingPublish events with raw byte payloads.
"""
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiomqtt

from .devices import BusError, ConfigError

logger = logging.getLogger(__name__)

AT_LEAST_ONCE = 1


@dataclass(frozen=True)
class MqttConfig:
    host: str = "localhost"
    port: int = 1883
    client_id: str = "garagedoor"
    keepalive: int = 60
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.host, str) or not self.host:
            raise ConfigError(f"mqtt host must be a non-empty string, got {self.host!r}")
        if not isinstance(self.client_id, str) or not self.client_id:
            raise ConfigError(f"mqtt client_id must be a non-empty string, got {self.client_id!r}")
        if not isinstance(self.port, int) or isinstance(self.port, bool) or not 0 < self.port < 65536:
            raise ConfigError(f"mqtt port must be in 1..65535, got {self.port!r}")
        if not isinstance(self.keepalive, int) or isinstance(self.keepalive, bool) or self.keepalive <= 0:
            raise ConfigError(f"mqtt keepalive must be a positive integer, got {self.keepalive!r}")


@dataclass(frozen=True)
class IncomingPublish:
    topic: str
    payload: bytes


def _as_bytes(payload) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class MqttBus:
    def __init__(self, client: aiomqtt.Client):
        self.client = client

    async def publish(self, topic: str, payload: bytes, qos: int = AT_LEAST_ONCE, retain: bool = False):
        logger.debug("[mqtt] publish %s=%r (qos=%i, retain=%s)", topic, payload, qos, retain)
        try:
            await self.client.publish(topic, payload=payload, qos=qos, retain=retain)
        except aiomqtt.MqttError as e:
            raise BusError(f"publish to {topic} failed: {e}") from e

    async def subscribe(self, topic: str, qos: int = AT_LEAST_ONCE):
        logger.info("[mqtt] subscribe %s (qos=%i)", topic, qos)
        try:
            await self.client.subscribe(topic, qos=qos)
        except aiomqtt.MqttError as e:
            raise BusError(f"subscribe to {topic} failed: {e}") from e

    async def events(self) -> AsyncIterator[IncomingPublish]:
        try:
            async for message in self.client.messages:
                yield IncomingPublish(topic=str(message.topic), payload=_as_bytes(message.payload))
        except aiomqtt.MqttError as e:
            raise BusError(f"message stream failed: {e}") from e


@asynccontextmanager
async def connect_bus(config: MqttConfig) -> AsyncIterator[MqttBus]:
    """Connect to the broker for the duration of the block."""
    client = aiomqtt.Client(
        config.host,
        port=config.port,
        identifier=config.client_id,
        keepalive=config.keepalive,
        username=config.username,
        password=config.password,
    )
    logger.info("[mqtt] connecting to %s:%i as %s", config.host, config.port, config.client_id)
    try:
        async with client:
            logger.info("[mqtt] connected")
            yield MqttBus(client)
    except aiomqtt.MqttError as e:
        raise BusError(f"broker {config.host}:{config.port}: {e}") from e
