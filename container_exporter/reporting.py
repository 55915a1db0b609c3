"""Lifecycle notifications for export runs.

The pipeline emits plain text messages at each major transition. How they
are rendered is up to the caller; the default reporter forwards them to
the standard logging system.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from container_exporter.config import Settings

logger = logging.getLogger(__name__)


class Reporter(Protocol):
    """Receiver of export lifecycle messages."""

    def begin(self, message: str) -> None: ...

    def status(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def end(self, message: str) -> None: ...

    def fatal(self, message: str) -> None: ...


class LoggingReporter:
    """Reporter that writes lifecycle messages to a logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def begin(self, message: str) -> None:
        self._log.info("» %s", message)

    def status(self, message: str) -> None:
        self._log.info("☛ %s", message)

    def warn(self, message: str) -> None:
        self._log.warning(message)

    def end(self, message: str) -> None:
        self._log.info("★ %s", message)

    def fatal(self, message: str) -> None:
        self._log.error("✗ %s", message)


def setup_logging(settings: Settings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Settings providing the log level.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["LoggingReporter", "Reporter", "setup_logging"]
