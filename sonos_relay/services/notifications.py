"""
Notification surface interface.
Rendering belongs to the host desktop; the relay only clears and creates
notifications under a fixed id.
"""
import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

NOTIFICATION_ID = "sonos-now-playing-notification"

BUTTON_TITLES = ("Previous", "Next")


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    icon_url: str
    silent: bool = True
    priority: int = 1
    buttons: tuple[str, ...] = field(default=BUTTON_TITLES)


class NotificationSink(Protocol):
    async def clear(self, notification_id: str) -> None: ...

    async def create(self, notification_id: str, notification: Notification) -> None: ...


class LoggingNotificationSink:
    """Sink used when no desktop surface is attached: records and logs."""

    def __init__(self) -> None:
        self.active: dict[str, Notification] = {}

    async def clear(self, notification_id: str) -> None:
        self.active.pop(notification_id, None)

    async def create(self, notification_id: str, notification: Notification) -> None:
        self.active[notification_id] = notification
        logger.info(
            "Notification shown",
            extra={"id": notification_id, "title": notification.title, "body": notification.message},
        )
