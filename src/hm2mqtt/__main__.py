"""Command-line entry point: ``hm2mqtt`` / ``python -m hm2mqtt``.

All settings come from the environment (see :class:`hm2mqtt.config.BridgeConfig`)::

    export MQTT_BROKER_URL="mqtt://broker:1883"
    export DEVICE_0="HMA-1:0123456789ab"
    hm2mqtt --log-level debug
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys

from hm2mqtt import __version__
from hm2mqtt.bridge import run_bridge
from hm2mqtt.config import BridgeConfig
from hm2mqtt.exceptions import Hm2MqttError

_logger = logging.getLogger("hm2mqtt")

LOG_LEVELS = ("debug", "info", "warning", "error")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bridge Hame/Marstek energy storage devices to MQTT")
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=os.environ.get("LOG_LEVEL", "info").lower(),
        help="Logging verbosity (default: $LOG_LEVEL or info)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


async def _run(config: BridgeConfig) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            _logger.debug("Signal handler for %s not supported on this platform", sig)
    await run_bridge(config, stop)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    level = args.log_level if args.log_level in LOG_LEVELS else "info"
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _logger.info("Starting hm2mqtt %s", __version__)

    try:
        config = BridgeConfig.from_env()
        asyncio.run(_run(config))
    except Hm2MqttError as exc:
        _logger.error("Fatal: %s", exc)
        return 1
    except KeyboardInterrupt:
        _logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
