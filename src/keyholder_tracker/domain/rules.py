"""
Pure functions for the relationship, session and task state machines.

Nothing here touches storage or the clock; callers pass ``now`` in and get
new entity versions back. Services own persistence and permission checks.
"""

import math
import re
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.enums import (
    KEYHOLDER_EDIT_ACTIONS,
    DeadlineNotice,
    PermissionAction,
    RelationshipStatus,
    Role,
    SessionEventType,
    TaskStatus,
)
from ..core.errors import (
    AlreadyActiveError,
    AlreadyPausedError,
    InvalidTransitionError,
    NotPausedError,
    PermissionDeniedError,
    ValidationError,
)
from .models import (
    ChastityData,
    CurrentSession,
    Relationship,
    Session,
    SessionEvent,
    Task,
)

ModelT = TypeVar("ModelT", bound=BaseModel)
EnumT = TypeVar("EnumT", bound=Enum)


def parse_enum(enum_type: Type[EnumT], value: Any, name: str) -> EnumT:
    """Coerce a caller-supplied value, raising ValidationError for unknown ones."""
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(str(member.value) for member in enum_type)
        raise ValidationError(f"Invalid {name} {value!r}; expected one of: {allowed}") from exc


# ==================== INVITE CODES ====================

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_PATTERN = re.compile(r"[A-Z0-9]{6}")


def validate_invite_code_format(code: Any) -> bool:
    """Return True for exactly six uppercase alphanumeric characters."""
    return isinstance(code, str) and INVITE_CODE_PATTERN.fullmatch(code) is not None


# ==================== ROLES & PERMISSIONS ====================


def role_of(relationship: Relationship, user_id: str) -> Role:
    """Resolve which side of the relationship ``user_id`` is on."""
    if user_id == relationship.keyholder_id:
        return Role.KEYHOLDER
    if user_id == relationship.submissive_id:
        return Role.SUBMISSIVE
    return Role.NONE


def is_participant(relationship: Relationship, user_id: str) -> bool:
    return role_of(relationship, user_id) != Role.NONE


def resolve_permission(
    relationship: Relationship, user_id: str, action: PermissionAction
) -> bool:
    """Decide whether ``user_id`` may perform ``action`` on the relationship.

    Pause and emergency unlock belong to the submissive and are gated by
    their flags; edit actions belong to the keyholder and are gated by
    ``keyholder_can_edit``. Non-participants are always refused.
    """
    role = role_of(relationship, user_id)
    if role == Role.NONE:
        return False

    permissions = relationship.permissions
    if action == PermissionAction.PAUSE_SESSION:
        return role == Role.SUBMISSIVE and permissions.submissive_can_pause
    if action == PermissionAction.EMERGENCY_UNLOCK:
        return role == Role.SUBMISSIVE and permissions.emergency_unlock
    if action in KEYHOLDER_EDIT_ACTIONS:
        return role == Role.KEYHOLDER and getattr(
            permissions.keyholder_can_edit, action.value
        )
    return False


# ==================== RELATIONSHIP STATUS ====================

RELATIONSHIP_TRANSITIONS: Dict[RelationshipStatus, FrozenSet[RelationshipStatus]] = {
    RelationshipStatus.PENDING: frozenset({RelationshipStatus.ACTIVE, RelationshipStatus.ENDED}),
    RelationshipStatus.ACTIVE: frozenset({RelationshipStatus.PAUSED, RelationshipStatus.ENDED}),
    RelationshipStatus.PAUSED: frozenset({RelationshipStatus.ACTIVE, RelationshipStatus.ENDED}),
    RelationshipStatus.ENDED: frozenset(),  # terminal
}


def validate_status_transition(
    current: RelationshipStatus, new: RelationshipStatus
) -> None:
    if new not in RELATIONSHIP_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot transition relationship from {current.value} to {new.value}"
        )


# ==================== TASKS ====================

# (from, to) -> role required, None meaning either participant
TASK_TRANSITIONS: Dict[Tuple[TaskStatus, TaskStatus], Optional[Role]] = {
    (TaskStatus.PENDING, TaskStatus.SUBMITTED): Role.SUBMISSIVE,
    (TaskStatus.SUBMITTED, TaskStatus.APPROVED): Role.KEYHOLDER,
    (TaskStatus.SUBMITTED, TaskStatus.REJECTED): Role.KEYHOLDER,
    (TaskStatus.APPROVED, TaskStatus.COMPLETED): None,
}


def validate_task_transition(current: TaskStatus, new: TaskStatus, role: Role) -> None:
    if role == Role.NONE:
        raise PermissionDeniedError("Only relationship participants can update tasks")

    key = (current, new)
    if key not in TASK_TRANSITIONS:
        raise InvalidTransitionError(
            f"Cannot transition task from {current.value} to {new.value}"
        )

    required = TASK_TRANSITIONS[key]
    if required is not None and role != required:
        raise PermissionDeniedError(
            f"Only the {required.value} can move a task from {current.value} to {new.value}"
        )


def apply_task_transition(
    task: Task, new_status: TaskStatus, role: Role, note: Optional[str], now: datetime
) -> Task:
    """Validate and apply a status change, stamping the matching timestamp."""
    validate_task_transition(task.status, new_status, role)

    update: Dict[str, Any] = {"status": new_status, "updated_at": now}
    if new_status == TaskStatus.SUBMITTED:
        update["submitted_at"] = now
        if note:
            update["submissive_note"] = note
    elif new_status in (TaskStatus.APPROVED, TaskStatus.REJECTED):
        update["approved_at"] = now
        if note:
            update["keyholder_feedback"] = note
    elif new_status == TaskStatus.COMPLETED:
        update["completed_at"] = now

    return task.model_copy(update=update)


def next_deadline_notice(
    task: Task, now: datetime, warning_window: timedelta
) -> Optional[DeadlineNotice]:
    """Return the deadline notice the task is due for, if any.

    Each notice is sent at most once; an overdue task that was never warned
    goes straight to OVERDUE.
    """
    if not task.is_open or task.due_date is None:
        return None
    if now >= task.due_date:
        if task.deadline_notice != DeadlineNotice.OVERDUE:
            return DeadlineNotice.OVERDUE
        return None
    if now >= task.due_date - warning_window and task.deadline_notice == DeadlineNotice.NONE:
        return DeadlineNotice.APPROACHING
    return None


# ==================== SESSIONS ====================


@dataclass(frozen=True)
class SessionOptions:
    """Caller-supplied options for starting a session."""

    goal_duration: Optional[int] = None
    is_hardcore_mode: bool = False
    notes: Optional[str] = None


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants, never negative."""
    return max(0, math.floor((end - start).total_seconds()))


def next_event_timestamp(events: List[SessionEvent], now: datetime) -> datetime:
    """Keep session event timestamps non-decreasing even if the clock steps back."""
    if events and events[-1].timestamp > now:
        return events[-1].timestamp
    return now


def begin_session(
    data: ChastityData,
    session_id: str,
    role: Role,
    options: SessionOptions,
    approval_required: bool,
    now: datetime,
) -> Tuple[Session, ChastityData]:
    """Create a new session and point ``current_session`` at it."""
    if data.current_session.is_active:
        raise AlreadyActiveError()
    if options.goal_duration is not None and options.goal_duration < 0:
        raise ValidationError("goal_duration must not be negative")

    session = Session(
        id=session_id,
        relationship_id=data.relationship_id,
        start_time=now,
        events=[
            SessionEvent(
                type=SessionEventType.START,
                timestamp=now,
                initiated_by=role,
                reason=options.notes,
            )
        ],
        keyholder_approval={"required": approval_required},
        goal_duration=options.goal_duration,
        is_hardcore_mode=options.is_hardcore_mode,
        notes=options.notes,
        created_at=now,
        updated_at=now,
    )
    current = CurrentSession(
        id=session_id,
        is_active=True,
        start_time=now,
        accumulated_pause_time=0,
        keyholder_approval_required=data.settings.require_reason_for_end,
    )
    return session, data.model_copy(update={"current_session": current, "updated_at": now})


def _require_current(data: ChastityData, session: Session) -> None:
    if session.is_ended:
        raise InvalidTransitionError(f"Session {session.id} has already ended")
    if not data.current_session.is_active or data.current_session.id != session.id:
        raise InvalidTransitionError(f"Session {session.id} is not the active session")


def pause_session_state(
    data: ChastityData, session: Session, role: Role, reason: Optional[str], now: datetime
) -> Tuple[Session, ChastityData]:
    _require_current(data, session)
    if data.current_session.is_paused:
        raise AlreadyPausedError()

    timestamp = next_event_timestamp(session.events, now)
    event = SessionEvent(
        type=SessionEventType.PAUSE, timestamp=timestamp, initiated_by=role, reason=reason
    )
    new_session = session.model_copy(
        update={"events": [*session.events, event], "updated_at": now}
    )
    current = data.current_session.model_copy(update={"paused_at": timestamp})
    return new_session, data.model_copy(update={"current_session": current, "updated_at": now})


def resume_session_state(
    data: ChastityData, session: Session, role: Role, now: datetime
) -> Tuple[Session, ChastityData, int]:
    """Close the open pause and return the pause length that was added."""
    _require_current(data, session)
    paused_at = data.current_session.paused_at
    if paused_at is None:
        raise NotPausedError()

    timestamp = next_event_timestamp(session.events, now)
    delta = elapsed_seconds(paused_at, timestamp)
    event = SessionEvent(type=SessionEventType.RESUME, timestamp=timestamp, initiated_by=role)
    accumulated = data.current_session.accumulated_pause_time + delta

    new_session = session.model_copy(
        update={
            "events": [*session.events, event],
            "accumulated_pause_time": accumulated,
            "updated_at": now,
        }
    )
    current = data.current_session.model_copy(
        update={"paused_at": None, "accumulated_pause_time": accumulated}
    )
    return (
        new_session,
        data.model_copy(update={"current_session": current, "updated_at": now}),
        delta,
    )


def end_session_state(
    data: ChastityData, session: Session, role: Role, reason: Optional[str], now: datetime
) -> Tuple[Session, ChastityData]:
    """Finish the session, folding any open pause into the pause total."""
    _require_current(data, session)

    timestamp = next_event_timestamp(session.events, now)
    accumulated = data.current_session.accumulated_pause_time
    if data.current_session.paused_at is not None:
        accumulated += elapsed_seconds(data.current_session.paused_at, timestamp)

    duration = elapsed_seconds(session.start_time, timestamp)
    event = SessionEvent(
        type=SessionEventType.END, timestamp=timestamp, initiated_by=role, reason=reason
    )

    approval = session.keyholder_approval
    if approval.required and role == Role.KEYHOLDER:
        approval = approval.model_copy(update={"granted": True, "granted_at": timestamp})

    ended = session.model_copy(
        update={
            "events": [*session.events, event],
            "end_time": timestamp,
            "duration": duration,
            "accumulated_pause_time": accumulated,
            "keyholder_approval": approval,
            "updated_at": now,
        }
    )
    goal_met = ended.goal_duration is not None and ended.effective_duration >= ended.goal_duration
    ended = ended.model_copy(update={"goal_met": goal_met})

    return ended, data.model_copy(update={"current_session": CurrentSession(), "updated_at": now})


# ==================== PARTIAL UPDATES ====================


def _merge(base: Dict[str, Any], changes: Mapping[str, Any], path: str) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in changes.items():
        if key not in base:
            raise ValidationError(f"Unknown field: {path}{key}")
        if isinstance(base[key], dict):
            if not isinstance(value, Mapping):
                raise ValidationError(f"{path}{key} must be an object")
            merged[key] = _merge(base[key], value, f"{path}{key}.")
        else:
            merged[key] = value
    return merged


def apply_partial_update(model: ModelT, changes: Mapping[str, Any]) -> ModelT:
    """Merge a nested partial dict into a model, rejecting unknown or mistyped fields."""
    if not changes:
        raise ValidationError("No changes supplied")
    merged = _merge(model.model_dump(mode="python"), changes, "")
    try:
        return type(model).model_validate(merged)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"{location}: {first['msg']}") from exc
