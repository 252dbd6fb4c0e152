"""
Fire-and-forget notification sink.

Events are published only after a transition has been committed. A delivery
failure is logged and dropped; it never undoes the transition.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from .config import config
from .logging import logger
from .sqs import send_message
from .utils import to_iso


class NotificationSink:
    """Publishes marketplace events to the notifications queue."""

    def __init__(self, queue_url: str = None, clock: Callable[[], datetime] = None):
        self.queue_url = config.NOTIFICATIONS_QUEUE_URL if queue_url is None else queue_url
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def notify(self, event_type: str, **payload: Any) -> None:
        message: Dict[str, Any] = {
            'type': event_type,
            'occurredAt': to_iso(self.clock()),
            **payload
        }

        if not self.queue_url:
            logger.info(f"No NOTIFICATIONS_QUEUE_URL configured, dropping {event_type}")
            return

        try:
            if not send_message(self.queue_url, message):
                logger.error(f"Notification {event_type} was not delivered")
        except Exception as e:
            logger.error(f"Notification {event_type} failed (non-critical): {e}")
