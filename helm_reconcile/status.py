"""Status reporting for a reconciliation."""

from abc import ABC, abstractmethod
from enum import StrEnum
import logging

__all__ = [
    "CommandState",
    "StatusReporter",
    "LoggingStatusReporter",
]

_LOGGER = logging.getLogger(__name__)


class CommandState(StrEnum):
    """The externally observable outcome of a reconciliation."""

    UNKNOWN = "Unknown"
    SUCCESS = "Success"
    HAS_ERROR = "HasError"


class StatusReporter(ABC):
    """Sink for progress messages and the terminal command state."""

    @abstractmethod
    def log_status(self, message: str) -> None:
        """Report a progress message."""

    @abstractmethod
    def log_error(self, error: str | BaseException) -> None:
        """Report an error message or exception."""

    @abstractmethod
    def set_command_state(self, state: CommandState) -> None:
        """Record the terminal state of the reconciliation."""


class LoggingStatusReporter(StatusReporter):
    """A StatusReporter that writes to the log and remembers the state."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        """Initialize LoggingStatusReporter."""
        self._logger = logger or _LOGGER
        self.command_state = CommandState.UNKNOWN
        self.messages: list[str] = []
        self.errors: list[str] = []

    def log_status(self, message: str) -> None:
        self.messages.append(message)
        self._logger.info("%s", message)

    def log_error(self, error: str | BaseException) -> None:
        self.errors.append(str(error))
        self._logger.error("%s", error)

    def set_command_state(self, state: CommandState) -> None:
        self.command_state = state
        self._logger.debug("Command state %s", state)
