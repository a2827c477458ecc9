"""
Notification dispatch.

Delivery (email, chat, pager) is owned by an external collaborator; the engine
only hands structured payloads to a ``Notifier``. The default implementation
writes them to the log.
"""
import logging
from typing import Any, Dict, Protocol

from attendance_engine.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)

ALERTS_CHANNEL = "alerts"
SYNC_JOBS_CHANNEL = "sync_jobs"
PAYROLL_CHANNEL = "payroll"


class Notifier(Protocol):
    def send(self, channel: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Writes every notification to the application log."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def send(self, channel: str, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        level = logging.WARNING if channel == ALERTS_CHANNEL else logging.INFO
        logger.log(level, "Notification [%s]: %s", channel, sanitize_for_json(payload))


def safe_notify(notifier, channel: str, payload: Dict[str, Any]) -> None:
    """Send a notification; a failing notifier is logged and never breaks the caller."""
    if notifier is None:
        return
    try:
        notifier.send(channel, payload)
    except Exception as e:
        logger.error("Notifier failed on channel %s: %s", channel, e)
