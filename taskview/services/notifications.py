"""User-facing notifications raised by the engine."""

from typing import Optional, Protocol

from taskview.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class Notifier(Protocol):
    """Port through which the engine shows toasts/banners to the user."""

    def success(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str, error: Optional[Exception] = None) -> None: ...


class LoggingNotifier:
    """Default notifier: writes notifications to the log."""

    def success(self, message: str) -> None:
        logger.info("Notification", level_hint="success", notification=message)

    def warning(self, message: str) -> None:
        logger.warning("Notification", level_hint="warning", notification=message)

    def error(self, message: str, error: Optional[Exception] = None) -> None:
        logger.error(
            "Notification",
            level_hint="error",
            notification=message,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        )


TIMEOUT_MESSAGE = "Request timeout. Please try again with fewer filters."


def describe_failure(action: str, error: Exception) -> str:
    """User-facing text for a failed remote call."""
    if getattr(error, "timeout", False):
        return TIMEOUT_MESSAGE
    return f"Failed to {action}"
