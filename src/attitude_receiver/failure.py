"""Terminal adapter failures and the sink that ends the process on them."""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Callable, NoReturn, Optional

logger = logging.getLogger(__name__)


class TerminalError(Enum):
    """Adapter conditions software cannot recover from.

    Each member carries a stable exit code for scripting/monitoring and a
    human-readable description.
    """

    ADAPTER_UNSUPPORTED = (1000, "BLE is not supported by this device.")
    ADAPTER_UNAUTHORIZED = (1001, "The app is not authorized to use BLE.")

    def __init__(self, code: int, description: str) -> None:
        self.code = code
        self.description = description


class FailureReporter:
    """Emits a terminal error and terminates the process with its code.

    Only the adapter monitor talks to the reporter; everything else recovers
    through the scan reset.

    Args:
        terminate: Called with the exit code after the description is logged.
            Defaults to :func:`sys.exit`, which raises ``SystemExit`` out of the
            event loop.
    """

    def __init__(self, terminate: Optional[Callable[[int], NoReturn]] = None) -> None:
        self._terminate = terminate or sys.exit
        self._reported: Optional[TerminalError] = None

    @property
    def reported(self) -> Optional[TerminalError]:
        return self._reported

    def report(self, error: TerminalError) -> None:
        if self._reported is not None:
            logger.debug("Terminal error already reported (%s); ignoring %s", self._reported.name, error.name)
            return
        self._reported = error
        logger.critical("Central service quit with an error: %s (code %d)", error.description, error.code)
        self._terminate(error.code)
