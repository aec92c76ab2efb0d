import argparse
import asyncio
import importlib.metadata
import logging
import signal
import sys

from garagedoor.config import DEFAULT_CONFIG_PATH, GarageConfig, load_config
from garagedoor.devices import GarageError
from garagedoor.mqtt import connect_bus
from garagedoor.pi_gpio import PIN_FACTORIES, Hardware
from garagedoor.worker import DoorWorker

logger = logging.getLogger("garagedoor")


async def run(config: GarageConfig, pin_factory=None):
    """Run the controller until a shutdown signal or a closed stream."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)
    try:
        with Hardware.open(config.gpio, pin_factory) as hardware:
            async with connect_bus(config.mqtt) as bus:
                worker = DoorWorker(hardware, bus, config.topics, shutdown,
                                    name=config.name, unique_id=config.unique_id)
                await worker.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def log_config(config: GarageConfig):
    topics = config.topics
    logger.info("name             : %s", config.name)
    logger.info("unique-id        : %s", config.unique_id)
    logger.info("topic.config     : %s", topics.config)
    logger.info("topic.command    : %s", topics.command)
    logger.info("topic.state      : %s", topics.state)
    logger.info("mqtt.host        : %s", config.mqtt.host)
    logger.info("mqtt.port        : %i", config.mqtt.port)
    logger.info("mqtt.client-id   : %s", config.mqtt.client_id)
    logger.info("mqtt.username    : %s", config.mqtt.username)
    logger.info("mqtt.password    : %s", '***' if config.mqtt.password else None)
    logger.info("gpio.factory     : %s", config.gpio.pin_factory)
    logger.info("gpio.status      : %s", config.gpio.status_pin)
    logger.info("gpio.trigger     : %s", config.gpio.trigger_pin)
    logger.info("gpio.relay       : %s", config.gpio.relay_pin)
    logger.info("gpio.led         : %s", config.gpio.led_pin)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='garagedoor',
        description='Garage door opener controller bridging GPIO and MQTT',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('-c', '--config',
                        help="configuration file (YAML)",
                        type=str, default=DEFAULT_CONFIG_PATH)
    parser.add_argument('--pin-factory',
                        help="gpiozero pin factory; overrides the configuration",
                        choices=sorted(PIN_FACTORIES), default=None)
    parser.add_argument('-V', '--verbose',
                        help="be verbose", action='store_true')
    parser.add_argument('-v', '--version',
                        help="print version and exit", action='store_true')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.version:
        print(importlib.metadata.version('garagedoor'))
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config, pin_factory=args.pin_factory)
        log_config(config)
        asyncio.run(run(config))
    except GarageError as e:
        logger.error("fatal: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    logger.info("exiting")
    return 0


if __name__ == '__main__':
    sys.exit(main())
