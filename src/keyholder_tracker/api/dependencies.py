"""Dependency injection for the service layer."""

from fastapi import Depends

from ..config import get_config
from ..core.clock import Clock, SystemClock
from ..events.subscriptions import SubscriptionHub
from ..repositories.dependencies import get_repository_container
from ..repositories.interfaces import RepositoryContainer
from ..services import ServiceRegistry, build_services
from ..services.notifications import LoggingNotificationSink, NotificationSink

# Process-wide collaborators; tests replace them through dependency overrides
_clock = SystemClock()
subscription_hub = SubscriptionHub()
_notification_sink = LoggingNotificationSink()


def get_clock() -> Clock:
    return _clock


def get_subscription_hub() -> SubscriptionHub:
    return subscription_hub


def get_notification_sink() -> NotificationSink:
    return _notification_sink


def get_services(
    container: RepositoryContainer = Depends(get_repository_container),
    clock: Clock = Depends(get_clock),
    hub: SubscriptionHub = Depends(get_subscription_hub),
    sink: NotificationSink = Depends(get_notification_sink),
) -> ServiceRegistry:
    """Per-request services bound to the request's repository container."""
    return build_services(container, clock, hub, sink, get_config().domain)
