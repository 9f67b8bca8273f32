"""Notification sinks for task facts.

The core only produces ``TaskNotification`` values; delivery (push, email,
in-app) belongs to whatever sink is plugged in.
"""

from abc import ABC, abstractmethod
from typing import List

from ..domain.models import TaskNotification
from ..utils.logging_config import get_logger, log_exception

logger = get_logger("services")


class NotificationSink(ABC):
    """Receives task notifications after the originating change committed."""

    @abstractmethod
    async def notify(self, notification: TaskNotification) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Default sink: records each notification in the services log."""

    async def notify(self, notification: TaskNotification) -> None:
        logger.info(
            f"Notification {notification.kind.value}: task {notification.task_id} "
            f"in relationship {notification.relationship_id} "
            f"(actor={notification.actor_role.value}, status={notification.new_status.value})"
        )


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification in memory, in delivery order."""

    def __init__(self):
        self.notifications: List[TaskNotification] = []

    async def notify(self, notification: TaskNotification) -> None:
        self.notifications.append(notification)

    @property
    def kinds(self) -> list:
        return [n.kind for n in self.notifications]


async def deliver(sink: NotificationSink, notification: TaskNotification) -> None:
    """Hand a notification to the sink; delivery failures are logged only."""
    try:
        await sink.notify(notification)
    except Exception as e:
        log_exception(
            "services",
            e,
            {
                "kind": notification.kind.value,
                "task_id": notification.task_id,
                "relationship_id": notification.relationship_id,
            },
        )
