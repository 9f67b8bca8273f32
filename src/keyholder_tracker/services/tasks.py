"""Task assignment and the submit/approve/complete workflow."""

from datetime import timedelta
from typing import Any, List, Mapping, Optional, Union

from pydantic import AwareDatetime, BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import DomainConfig
from ..core.clock import Clock
from ..core.enums import (
    ConsequenceType,
    DeadlineNotice,
    NotificationKind,
    PermissionAction,
    Role,
    SystemEventType,
    TaskStatus,
)
from ..core.errors import NotFoundError, PermissionDeniedError, ValidationError
from ..domain.models import Consequence, Relationship, Task, TaskNotification
from ..domain.rules import (
    apply_task_transition,
    next_deadline_notice,
    parse_enum,
    resolve_permission,
    role_of,
)
from ..events.subscriptions import OnChange, SubscriptionHub, Unsubscribe
from ..repositories.interfaces import RepositoryContainer
from ..utils.logging_config import get_logger
from .base import BaseService, audit_event, new_id
from .notifications import LoggingNotificationSink, NotificationSink, deliver

logger = get_logger("services")

STATUS_NOTIFICATIONS = {
    TaskStatus.SUBMITTED: NotificationKind.TASK_SUBMITTED,
    TaskStatus.APPROVED: NotificationKind.TASK_APPROVED,
    TaskStatus.REJECTED: NotificationKind.TASK_REJECTED,
    TaskStatus.COMPLETED: NotificationKind.TASK_COMPLETED,
}

DEADLINE_NOTIFICATIONS = {
    DeadlineNotice.APPROACHING: NotificationKind.DEADLINE_APPROACHING,
    DeadlineNotice.OVERDUE: NotificationKind.DEADLINE_PASSED,
}


class TaskDraft(BaseModel):
    """Input for a new task."""

    text: str
    due_date: Optional[AwareDatetime] = None
    consequence: Optional[Consequence] = None


def can_assign_task(relationship: Relationship, user_id: str, draft: TaskDraft) -> bool:
    """Submissives may set themselves tasks; keyholders need ``tasks``, and ``punishments`` for one."""
    role = role_of(relationship, user_id)
    if role == Role.SUBMISSIVE:
        return True
    if not resolve_permission(relationship, user_id, PermissionAction.TASKS):
        return False
    if draft.consequence is not None and draft.consequence.type == ConsequenceType.PUNISHMENT:
        return resolve_permission(relationship, user_id, PermissionAction.PUNISHMENTS)
    return True


class TaskWorkflow(BaseService):
    """Creates tasks, moves them through their statuses and watches deadlines."""

    def __init__(
        self,
        container: RepositoryContainer,
        clock: Clock,
        hub: SubscriptionHub,
        sink: Optional[NotificationSink] = None,
        config: Optional[DomainConfig] = None,
    ):
        super().__init__(container, clock, config)
        self.hub = hub
        self.sink = sink or LoggingNotificationSink()

    async def get_tasks(self, relationship_id: str, limit: Optional[int] = None) -> List[Task]:
        limit = limit or self.config.default_list_limit
        return await self.container.task.list_for_relationship(relationship_id, limit)

    async def create_task(
        self,
        relationship_id: str,
        draft: Union[TaskDraft, Mapping[str, Any]],
        user_id: str,
    ) -> Task:
        if not isinstance(draft, TaskDraft):
            try:
                draft = TaskDraft.model_validate(draft)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid task: {exc.errors()[0]['msg']}") from exc

        relationship = await self._get_relationship(relationship_id)
        if not can_assign_task(relationship, user_id, draft):
            raise PermissionDeniedError("Insufficient permissions for tasks")
        text = draft.text.strip()
        if not text:
            raise ValidationError("Task text must not be empty")

        role = role_of(relationship, user_id)
        now = self.clock.now()
        task = Task(
            id=new_id(),
            relationship_id=relationship_id,
            text=text,
            assigned_by=role,
            due_date=draft.due_date,
            consequence=draft.consequence,
            created_at=now,
            updated_at=now,
        )

        async with self.container.transaction() as tx:
            await tx.add_task(task)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    SystemEventType.TASK_CREATED.value,
                    role,
                    now,
                    details={"task_id": task.id, "text": task.text},
                )
            )

        logger.info(f"Task {task.id} assigned by {role.value} in relationship {relationship_id}")
        await self._publish(relationship_id)
        await self._notify(NotificationKind.TASK_ASSIGNED, task, role)
        return task

    async def update_task_status(
        self,
        relationship_id: str,
        task_id: str,
        new_status: TaskStatus,
        user_id: str,
        note: Optional[str] = None,
    ) -> Task:
        relationship = await self._get_relationship(relationship_id)
        role = role_of(relationship, user_id)
        if role == Role.NONE:
            raise PermissionDeniedError("Only relationship participants can update tasks")

        task = await self.container.task.get_by_id(relationship_id, task_id)
        if task is None:
            raise NotFoundError("Task", task_id)

        new_status = parse_enum(TaskStatus, new_status, "task status")
        now = self.clock.now()
        updated = apply_task_transition(task, new_status, role, note, now)

        async with self.container.transaction() as tx:
            await tx.update_task(updated, expected_status=task.status)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    SystemEventType.TASK_STATUS_CHANGED.value,
                    role,
                    now,
                    details={
                        "task_id": task_id,
                        "from": task.status.value,
                        "to": new_status.value,
                        "note": note,
                    },
                )
            )

        logger.info(
            f"Task {task_id}: {task.status.value} -> {new_status.value} by {role.value}"
        )
        await self._publish(relationship_id)
        await self._notify(STATUS_NOTIFICATIONS[new_status], updated, role)
        return updated

    async def check_deadlines(
        self, relationship_id: str, warning_window: Optional[timedelta] = None
    ) -> List[TaskNotification]:
        """Send each due deadline notice once per open task and return what was sent."""
        if warning_window is None:
            warning_window = timedelta(hours=self.config.deadline_warning_hours)
        await self._get_relationship(relationship_id)

        now = self.clock.now()
        due = []
        for task in await self.container.task.list_open(relationship_id):
            notice = next_deadline_notice(task, now, warning_window)
            if notice is not None:
                due.append((task, task.model_copy(update={"deadline_notice": notice})))

        if not due:
            return []

        async with self.container.transaction() as tx:
            for task, updated in due:
                await tx.update_task(
                    updated, expected_status=task.status, expected_notice=task.deadline_notice
                )

        notifications = []
        for _, updated in due:
            notification = await self._notify(
                DEADLINE_NOTIFICATIONS[updated.deadline_notice], updated, Role.NONE
            )
            notifications.append(notification)
        logger.info(f"Sent {len(notifications)} deadline notices for relationship {relationship_id}")
        await self._publish(relationship_id)
        return notifications

    async def subscribe_to_tasks(self, relationship_id: str, on_change: OnChange) -> Unsubscribe:
        """Deliver the task list now and after every committed change until unsubscribed."""
        current = await self.get_tasks(relationship_id)
        return await self.hub.subscribe(
            SubscriptionHub.TASKS, relationship_id, on_change, initial=current
        )

    async def _publish(self, relationship_id: str) -> None:
        if self.hub.has_subscribers(SubscriptionHub.TASKS, relationship_id):
            await self.hub.publish(
                SubscriptionHub.TASKS, relationship_id, await self.get_tasks(relationship_id)
            )

    async def _notify(self, kind: NotificationKind, task: Task, actor: Role) -> TaskNotification:
        notification = TaskNotification(
            kind=kind,
            task_id=task.id,
            relationship_id=task.relationship_id,
            actor_role=actor,
            new_status=task.status,
        )
        await deliver(self.sink, notification)
        return notification
