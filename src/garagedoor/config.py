"""
Configuration for the garage door controller.

Example (YAML):

    name: Garage Door
    unique_id: garage_door
    base_topic: homeassistant/cover/garage_door
    gpio:
      status_pin: 22
      trigger_pin: 27
      relay_pin: 23
      led_pin: 24
      pin_factory: lgpio
    mqtt:
      host: localhost
      port: 1883
      client_id: garagedoor
      keepalive: 60
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .devices import ConfigError, Topics
from .mqtt import MqttConfig
from .pi_gpio import GpioConfig

DEFAULT_CONFIG_PATH = "/etc/garagedoor/config.yaml"


@dataclass(frozen=True)
class GarageConfig:
    gpio: GpioConfig
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    name: str = "Garage Door"
    unique_id: str = "garage_door"
    base_topic: str = "homeassistant/cover/garage_door"

    def __post_init__(self):
        for key in ("name", "unique_id", "base_topic"):
            value = getattr(self, key)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{key} must be a non-empty string, got {value!r}")
        # a base of only slashes is still empty
        Topics.from_base(self.base_topic)

    @property
    def topics(self) -> Topics:
        return Topics.from_base(self.base_topic)

    def with_pin_factory(self, pin_factory: str) -> "GarageConfig":
        gpio = replace(self.gpio, pin_factory=pin_factory)
        return replace(self, gpio=gpio)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GarageConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"configuration must be a mapping, got {type(data).__name__}")
        data = dict(data)
        _check_keys("configuration", data, cls)
        if "gpio" not in data:
            raise ConfigError("configuration is missing the 'gpio' section")
        data["gpio"] = _section("gpio", data["gpio"], GpioConfig)
        data["mqtt"] = _section("mqtt", data.get("mqtt") or {}, MqttConfig)
        return cls(**data)


def _check_keys(where: str, data: Dict[str, Any], cls) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown {where} keys: {', '.join(unknown)}")


def _section(where: str, data: Any, cls):
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a mapping")
    _check_keys(f"'{where}'", data, cls)
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"'{where}': {e}") from e


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH,
                pin_factory: Optional[str] = None) -> GarageConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file
        pin_factory: Overrides gpio.pin_factory when given

    Raises:
        ConfigError: If the file cannot be read or holds invalid values
    """
    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    config = GarageConfig.from_dict(data or {})
    if pin_factory is not None:
        config = config.with_pin_factory(pin_factory)
    return config
