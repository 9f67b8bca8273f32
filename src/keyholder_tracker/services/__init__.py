"""Domain services for relationships, sessions, tasks and the audit log."""

from dataclasses import dataclass
from typing import Optional

from ..config import DomainConfig
from ..core.clock import Clock
from ..events.subscriptions import SubscriptionHub
from ..repositories.interfaces import RepositoryContainer
from .event_log import EventLog
from .invites import InviteCodeIssuer
from .notifications import NotificationSink
from .permissions import PermissionEvaluator
from .relationships import RelationshipStore
from .sessions import SessionStateMachine
from .tasks import TaskWorkflow


@dataclass
class ServiceRegistry:
    """One instance of every service, sharing the same collaborators."""

    relationships: RelationshipStore
    invites: InviteCodeIssuer
    permissions: PermissionEvaluator
    sessions: SessionStateMachine
    tasks: TaskWorkflow
    events: EventLog


def build_services(
    container: RepositoryContainer,
    clock: Clock,
    hub: SubscriptionHub,
    sink: Optional[NotificationSink] = None,
    config: Optional[DomainConfig] = None,
) -> ServiceRegistry:
    relationships = RelationshipStore(container, clock, hub, config)
    return ServiceRegistry(
        relationships=relationships,
        invites=InviteCodeIssuer(container, clock, relationships, config),
        permissions=PermissionEvaluator(container, clock, config),
        sessions=SessionStateMachine(container, clock, config),
        tasks=TaskWorkflow(container, clock, hub, sink, config),
        events=EventLog(container, clock, config),
    )


__all__ = [
    "EventLog",
    "InviteCodeIssuer",
    "PermissionEvaluator",
    "RelationshipStore",
    "ServiceRegistry",
    "SessionStateMachine",
    "TaskWorkflow",
    "build_services",
]
