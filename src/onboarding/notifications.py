"""
User-facing notices (the toast channel).

The core never talks to a UI; it hands short messages to a Notifier.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Sink for transient warnings and blocking errors."""

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...


class NullNotifier:
    """Drops every message."""

    def warn(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass


class LoggingNotifier:
    """Writes messages to the log. Default for CLI and server use."""

    def warn(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)

    def success(self, message: str) -> None:
        logger.info(message)


class RecordingNotifier:
    """Keeps messages in memory, e.g. to render them on the next response."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def warn(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def success(self, message: str) -> None:
        self.messages.append(("success", message))

    def drain(self) -> list[tuple[str, str]]:
        messages, self.messages = self.messages, []
        return messages
