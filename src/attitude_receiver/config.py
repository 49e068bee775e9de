"""Runtime configuration read from environment variables.

The process takes no command-line flags; everything tunable comes from the
environment. The GATT identifiers are fixed and intentionally not listed here.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "ATTITUDE_"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET")


@dataclass(frozen=True)
class ReceiverConfig:
    """Tunables for logging, per-phase deadlines and reconnect backoff.

    Attributes:
        log_level: Root logger level name.
        log_file: Optional path; logs are written there in addition to stderr.
        connect_timeout: Seconds allowed for a connect attempt.
        discovery_timeout: Seconds allowed for each of service and
            characteristic discovery.
        subscribe_timeout: Seconds allowed for enabling notifications.
        retry_base_delay: First backoff step after a failure, in seconds.
        retry_max_delay: Upper bound of a single backoff delay.
        adapter_poll_interval: How often a non-ready adapter is probed again.
        adapter_recheck_interval: How often a powered-on adapter is checked
            for having been switched off.
    """

    log_level: str = "INFO"
    log_file: Optional[str] = None
    connect_timeout: float = 15.0
    discovery_timeout: float = 10.0
    subscribe_timeout: float = 10.0
    retry_base_delay: float = 0.5
    retry_max_delay: float = 30.0
    adapter_poll_interval: float = 5.0
    adapter_recheck_interval: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ReceiverConfig":
        """Build a config from ``ATTITUDE_*`` variables.

        Invalid values are logged and replaced by the defaults rather than
        aborting: the only defined non-zero exits are the adapter failures.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        level = env.get(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level).strip().upper()
        if level not in _LOG_LEVELS:
            logger.warning("Ignoring invalid %sLOG_LEVEL=%r", ENV_PREFIX, level)
            level = defaults.log_level

        log_file = env.get(f"{ENV_PREFIX}LOG_FILE") or None

        def seconds(name: str, default: float, *, allow_zero: bool = False) -> float:
            raw = env.get(f"{ENV_PREFIX}{name}")
            if raw is None or raw.strip() == "":
                return default
            try:
                value = float(raw)
            except ValueError:
                logger.warning("Ignoring non-numeric %s%s=%r", ENV_PREFIX, name, raw)
                return default
            if not math.isfinite(value) or value < 0 or (value == 0 and not allow_zero):
                logger.warning("Ignoring out-of-range %s%s=%r", ENV_PREFIX, name, raw)
                return default
            return value

        base_delay = seconds("RETRY_BASE_DELAY", defaults.retry_base_delay, allow_zero=True)
        max_delay = seconds("RETRY_MAX_DELAY", defaults.retry_max_delay, allow_zero=True)
        if max_delay < base_delay:
            logger.warning(
                "%sRETRY_MAX_DELAY (%.1f) below base delay (%.1f); using base delay",
                ENV_PREFIX,
                max_delay,
                base_delay,
            )
            max_delay = base_delay

        return cls(
            log_level=level,
            log_file=log_file,
            connect_timeout=seconds("CONNECT_TIMEOUT", defaults.connect_timeout),
            discovery_timeout=seconds("DISCOVERY_TIMEOUT", defaults.discovery_timeout),
            subscribe_timeout=seconds("SUBSCRIBE_TIMEOUT", defaults.subscribe_timeout),
            retry_base_delay=base_delay,
            retry_max_delay=max_delay,
            adapter_poll_interval=seconds("ADAPTER_POLL_INTERVAL", defaults.adapter_poll_interval),
            adapter_recheck_interval=seconds(
                "ADAPTER_RECHECK_INTERVAL", defaults.adapter_recheck_interval
            ),
        )
