"""
Timer-expiry notifications.

Sends "Timer Complete!" to a webhook when one is configured, otherwise
just logs it. Delivery problems are logged and never raised into the
timer flow.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Timer Complete!"


@dataclass
class NotificationSettings:
    """User switches for notifications."""
    enabled: bool = True
    todo_timers: bool = True

    @property
    def timers_allowed(self) -> bool:
        return self.enabled and self.todo_timers


def expiry_message(title: str) -> str:
    return f'"{title}" timer has finished.'


class TimerNotifier:
    """Notification sink for expired todo timers."""

    def __init__(
        self,
        settings: Optional[NotificationSettings] = None,
        webhook_url: Optional[str] = None,
        timeout: float = 2.0,
    ):
        self.settings = settings or NotificationSettings()
        self.webhook_url = webhook_url
        self.timeout = timeout

    def __call__(self, todo_id: str, title: str, **_ignored) -> bool:
        """Event-bridge callback signature (see TodoEventBridge.subscribe)."""
        return self.notify(todo_id, title)

    def notify(self, todo_id: str, title: str) -> bool:
        """
        Deliver one expiry notification.

        Returns True if it was delivered (or logged, without a webhook),
        False if notifications are switched off or delivery failed.
        """
        if not self.settings.timers_allowed:
            logger.debug(f"Timer notifications disabled, skipping {todo_id}")
            return False

        body = expiry_message(title)
        if not self.webhook_url:
            logger.info(f"{NOTIFICATION_TITLE} {body}")
            return True

        try:
            r = requests.post(
                self.webhook_url,
                json={"title": NOTIFICATION_TITLE, "body": body, "todo_id": todo_id},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Notification for {todo_id} failed: {e}")
            return False

        if not r.ok:
            logger.warning(f"Notification for {todo_id} rejected: HTTP {r.status_code}")
            return False
        return True
