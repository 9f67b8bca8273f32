"""Tests for task assignment, the status workflow and deadline notices."""

from datetime import timedelta

import pytest

from keyholder_tracker.core.enums import NotificationKind, Role, TaskStatus
from keyholder_tracker.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from keyholder_tracker.events.subscriptions import SubscriptionHub
from keyholder_tracker.services.notifications import NotificationSink
from keyholder_tracker.services.tasks import TaskDraft

from tests.helpers.factories import KEYHOLDER, OUTSIDER, SUBMISSIVE, set_permissions

PUNISHMENT = {"type": "punishment", "duration": 3600, "description": "one more hour"}


@pytest.mark.unit
class TestCreateTask:
    """Test task assignment permissions and validation."""

    async def test_keyholder_assigns_task(self, services, relationship, sink):
        task = await services.tasks.create_task(
            relationship.id, TaskDraft(text="  Clean the kitchen  "), KEYHOLDER
        )

        assert task.text == "Clean the kitchen"
        assert task.status == TaskStatus.PENDING
        assert task.assigned_by == Role.KEYHOLDER
        assert task.assigned_to == Role.SUBMISSIVE
        assert sink.kinds == [NotificationKind.TASK_ASSIGNED]

    async def test_submissive_sets_own_task_even_without_keyholder_rights(
        self, services, relationship
    ):
        await set_permissions(services, relationship, {"keyholder_can_edit": {"tasks": False}})

        task = await services.tasks.create_task(relationship.id, {"text": "Journal"}, SUBMISSIVE)
        assert task.assigned_by == Role.SUBMISSIVE

        with pytest.raises(PermissionDeniedError):
            await services.tasks.create_task(relationship.id, {"text": "Journal"}, KEYHOLDER)

    async def test_punishment_needs_punishments_permission(self, services, relationship):
        await set_permissions(
            services, relationship, {"keyholder_can_edit": {"punishments": False}}
        )

        with pytest.raises(PermissionDeniedError):
            await services.tasks.create_task(
                relationship.id, {"text": "Lines", "consequence": PUNISHMENT}, KEYHOLDER
            )

        reward = {"text": "Lines", "consequence": {"type": "reward", "duration": -600}}
        task = await services.tasks.create_task(relationship.id, reward, KEYHOLDER)
        assert task.consequence.duration == -600

    async def test_outsider_cannot_assign(self, services, relationship):
        with pytest.raises(PermissionDeniedError):
            await services.tasks.create_task(relationship.id, {"text": "x"}, OUTSIDER)

    async def test_blank_text(self, services, relationship):
        with pytest.raises(ValidationError):
            await services.tasks.create_task(relationship.id, {"text": "   "}, KEYHOLDER)

    async def test_malformed_draft(self, services, relationship):
        with pytest.raises(ValidationError):
            await services.tasks.create_task(relationship.id, {"due_date": "soon"}, KEYHOLDER)

    async def test_due_date_without_timezone(self, services, relationship, clock):
        naive = clock.now().replace(tzinfo=None)
        with pytest.raises(ValidationError):
            await services.tasks.create_task(
                relationship.id, {"text": "Report", "due_date": naive}, KEYHOLDER
            )
        assert await services.tasks.get_tasks(relationship.id) == []

    async def test_unknown_relationship(self, services):
        with pytest.raises(NotFoundError):
            await services.tasks.create_task("missing", {"text": "x"}, KEYHOLDER)


@pytest.mark.unit
class TestTaskWorkflow:
    """Test status transitions and the notifications they emit."""

    async def test_full_happy_path(self, services, relationship, sink, clock):
        task = await services.tasks.create_task(relationship.id, {"text": "Run 5k"}, KEYHOLDER)

        clock.advance(hours=1)
        submitted = await services.tasks.update_task_status(
            relationship.id, task.id, TaskStatus.SUBMITTED, SUBMISSIVE, "done in 31 min"
        )
        assert submitted.submitted_at == clock.now()
        assert submitted.submissive_note == "done in 31 min"

        approved = await services.tasks.update_task_status(
            relationship.id, task.id, TaskStatus.APPROVED, KEYHOLDER, "good"
        )
        assert approved.keyholder_feedback == "good"

        completed = await services.tasks.update_task_status(
            relationship.id, task.id, "completed", SUBMISSIVE
        )
        assert completed.status == TaskStatus.COMPLETED
        assert completed.completed_at == clock.now()

        assert sink.kinds == [
            NotificationKind.TASK_ASSIGNED,
            NotificationKind.TASK_SUBMITTED,
            NotificationKind.TASK_APPROVED,
            NotificationKind.TASK_COMPLETED,
        ]
        assert sink.notifications[2].actor_role == Role.KEYHOLDER

    async def test_rejection(self, services, relationship, sink):
        task = await services.tasks.create_task(relationship.id, {"text": "Run 5k"}, KEYHOLDER)
        await services.tasks.update_task_status(
            relationship.id, task.id, TaskStatus.SUBMITTED, SUBMISSIVE
        )

        rejected = await services.tasks.update_task_status(
            relationship.id, task.id, TaskStatus.REJECTED, KEYHOLDER, "too slow"
        )

        assert rejected.status == TaskStatus.REJECTED
        assert sink.kinds[-1] == NotificationKind.TASK_REJECTED

    async def test_wrong_role(self, services, relationship):
        task = await services.tasks.create_task(relationship.id, {"text": "x"}, KEYHOLDER)

        with pytest.raises(PermissionDeniedError):
            await services.tasks.update_task_status(
                relationship.id, task.id, TaskStatus.SUBMITTED, KEYHOLDER
            )
        with pytest.raises(PermissionDeniedError):
            await services.tasks.update_task_status(
                relationship.id, task.id, TaskStatus.SUBMITTED, OUTSIDER
            )

    async def test_invalid_transition_is_not_written(self, services, relationship, sink):
        task = await services.tasks.create_task(relationship.id, {"text": "x"}, KEYHOLDER)

        with pytest.raises(InvalidTransitionError):
            await services.tasks.update_task_status(
                relationship.id, task.id, TaskStatus.COMPLETED, KEYHOLDER
            )

        tasks = await services.tasks.get_tasks(relationship.id)
        assert tasks[0].status == TaskStatus.PENDING
        assert sink.kinds == [NotificationKind.TASK_ASSIGNED]

    async def test_unknown_status(self, services, relationship, sink):
        task = await services.tasks.create_task(relationship.id, {"text": "x"}, KEYHOLDER)

        with pytest.raises(ValidationError, match="DONE"):
            await services.tasks.update_task_status(relationship.id, task.id, "DONE", SUBMISSIVE)

        tasks = await services.tasks.get_tasks(relationship.id)
        assert tasks[0].status == TaskStatus.PENDING

    async def test_unknown_task(self, services, relationship):
        with pytest.raises(NotFoundError):
            await services.tasks.update_task_status(
                relationship.id, "missing", TaskStatus.SUBMITTED, SUBMISSIVE
            )

    async def test_failing_sink_does_not_fail_the_update(self, container, clock, hub, relationship):
        from keyholder_tracker.services import build_services

        class BrokenSink(NotificationSink):
            async def notify(self, notification):
                raise ConnectionError("push gateway down")

        services = build_services(container, clock, hub, BrokenSink())
        task = await services.tasks.create_task(relationship.id, {"text": "x"}, KEYHOLDER)

        assert (await services.tasks.get_tasks(relationship.id))[0].id == task.id


@pytest.mark.unit
class TestDeadlines:
    """Test deadline notices, each sent at most once."""

    async def test_approaching_then_overdue(self, services, relationship, sink, clock):
        task = await services.tasks.create_task(
            relationship.id,
            {"text": "Report", "due_date": clock.now() + timedelta(hours=30)},
            KEYHOLDER,
        )

        assert await services.tasks.check_deadlines(relationship.id) == []

        clock.advance(hours=10)
        sent = await services.tasks.check_deadlines(relationship.id)
        assert [n.kind for n in sent] == [NotificationKind.DEADLINE_APPROACHING]
        assert sent[0].task_id == task.id
        assert sent[0].actor_role == Role.NONE

        assert await services.tasks.check_deadlines(relationship.id) == []

        clock.advance(hours=21)
        sent = await services.tasks.check_deadlines(relationship.id)
        assert [n.kind for n in sent] == [NotificationKind.DEADLINE_PASSED]
        assert await services.tasks.check_deadlines(relationship.id) == []

        assert sink.kinds == [
            NotificationKind.TASK_ASSIGNED,
            NotificationKind.DEADLINE_APPROACHING,
            NotificationKind.DEADLINE_PASSED,
        ]

    async def test_custom_warning_window(self, services, relationship, clock):
        await services.tasks.create_task(
            relationship.id,
            {"text": "Report", "due_date": clock.now() + timedelta(hours=3)},
            KEYHOLDER,
        )

        assert await services.tasks.check_deadlines(relationship.id, timedelta(hours=1)) == []
        sent = await services.tasks.check_deadlines(relationship.id, timedelta(hours=4))
        assert len(sent) == 1

    async def test_submitted_task_still_watched_but_approved_not(
        self, services, relationship, clock
    ):
        due = clock.now() + timedelta(hours=1)
        watched = await services.tasks.create_task(
            relationship.id, {"text": "a", "due_date": due}, KEYHOLDER
        )
        done = await services.tasks.create_task(
            relationship.id, {"text": "b", "due_date": due}, KEYHOLDER
        )
        for task_id in (watched.id, done.id):
            await services.tasks.update_task_status(
                relationship.id, task_id, TaskStatus.SUBMITTED, SUBMISSIVE
            )
        await services.tasks.update_task_status(
            relationship.id, done.id, TaskStatus.APPROVED, KEYHOLDER
        )

        clock.advance(hours=2)
        sent = await services.tasks.check_deadlines(relationship.id)

        assert [n.task_id for n in sent] == [watched.id]
        assert sent[0].new_status == TaskStatus.SUBMITTED


@pytest.mark.unit
class TestTaskSubscriptions:
    """Test live task list snapshots."""

    async def test_snapshots_follow_changes(self, services, relationship, hub):
        snapshots = []
        unsubscribe = await services.tasks.subscribe_to_tasks(relationship.id, snapshots.append)
        assert snapshots[0].items == []
        assert snapshots[0].sequence == 1

        task = await services.tasks.create_task(relationship.id, {"text": "x"}, KEYHOLDER)
        await services.tasks.update_task_status(
            relationship.id, task.id, TaskStatus.SUBMITTED, SUBMISSIVE
        )

        assert [s.sequence for s in snapshots] == [1, 2, 3]
        assert snapshots[-1].items[0].status == TaskStatus.SUBMITTED

        unsubscribe()
        await services.tasks.create_task(relationship.id, {"text": "y"}, KEYHOLDER)
        assert len(snapshots) == 3
        assert not hub.has_subscribers(SubscriptionHub.TASKS, relationship.id)

    async def test_async_callback(self, services, relationship):
        seen = []

        async def on_change(snapshot):
            seen.append(len(snapshot.items))

        await services.tasks.subscribe_to_tasks(relationship.id, on_change)
        await services.tasks.create_task(relationship.id, {"text": "x"}, KEYHOLDER)

        assert seen == [0, 1]
