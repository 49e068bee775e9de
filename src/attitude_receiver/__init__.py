from __future__ import annotations

import asyncio
import logging
import sys

from .central import CentralService, serve
from .config import ReceiverConfig
from .decoder import DecodeError, decode
from .failure import FailureReporter, TerminalError
from .identifiers import ATTITUDE_CHAR, ATTITUDE_SERVICE, TARGET
from .models import SensorPacket

__all__ = [
    "ATTITUDE_CHAR",
    "ATTITUDE_SERVICE",
    "CentralService",
    "DecodeError",
    "FailureReporter",
    "ReceiverConfig",
    "SensorPacket",
    "TARGET",
    "TerminalError",
    "decode",
    "main",
]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(config: ReceiverConfig) -> None:
    # Logs go to stderr (and optionally a file)
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        try:
            handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
        except OSError as e:
            # A broken log file must not stop the receiver; stderr still works
            print(f"Cannot open log file {config.log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def main() -> None:
    """Process entry point. Takes no arguments; runs until a terminal adapter error."""
    # Provisional setup so configuration warnings use the same format
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    config = ReceiverConfig.from_env()
    configure_logging(config)

    logger.info("Starting attitude receiver (service %s, characteristic %s)", ATTITUDE_SERVICE, ATTITUDE_CHAR)
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise SystemExit(130)
