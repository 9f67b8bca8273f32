"""Domain entities for relationships, sessions, tasks and the audit log.

Entities are pydantic models so they can be copied, validated and dumped to
JSON columns without extra glue. Services never mutate a loaded entity in
place; they derive a new version with ``model_copy(update=...)`` and hand it
to a transaction.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, computed_field

from ..core.enums import (
    ConsequenceType,
    DeadlineNotice,
    GoalType,
    NotificationKind,
    RelationshipStatus,
    RequestStatus,
    Role,
    SessionEventType,
    TaskStatus,
)


class DomainModel(BaseModel):
    """Base class for domain entities."""

    model_config = ConfigDict(extra="forbid")


# ==================== PERMISSIONS ====================


class KeyholderEditPermissions(DomainModel):
    """What the keyholder is allowed to edit."""

    sessions: StrictBool = True
    tasks: StrictBool = True
    goals: StrictBool = True
    punishments: StrictBool = True
    settings: StrictBool = False  # Keep settings private by default


class ApprovalRequirements(DomainModel):
    """Actions that need keyholder approval."""

    session_end: StrictBool = False
    task_completion: StrictBool = True
    goal_changes: StrictBool = True


class Permissions(DomainModel):
    """Permissions owned by a relationship. Only the keyholder changes them."""

    keyholder_can_edit: KeyholderEditPermissions = Field(default_factory=KeyholderEditPermissions)
    submissive_can_pause: StrictBool = True
    emergency_unlock: StrictBool = True
    require_approval: ApprovalRequirements = Field(default_factory=ApprovalRequirements)


# ==================== RELATIONSHIPS ====================


class Relationship(DomainModel):
    """A keyholder/submissive pairing."""

    id: str
    submissive_id: str
    keyholder_id: str
    status: RelationshipStatus
    permissions: Permissions = Field(default_factory=Permissions)
    created_at: datetime
    established_at: datetime
    updated_at: datetime
    ended_at: Optional[datetime] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @property
    def participant_ids(self) -> tuple:
        return (self.submissive_id, self.keyholder_id)


class RelationshipRequest(DomainModel):
    """An invitation from one user to another to form a relationship."""

    id: str
    from_user_id: str
    to_user_id: str
    from_role: Role
    to_role: Role
    status: RequestStatus = RequestStatus.PENDING
    message: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    responded_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.status == RequestStatus.PENDING and now >= self.expires_at

    def effective_status(self, now: datetime) -> RequestStatus:
        """Status as seen by callers; stale pending requests read as expired."""
        if self.is_expired(now):
            return RequestStatus.EXPIRED
        return self.status


class InviteCode(DomainModel):
    """A short-lived, single-use pairing code issued by a submissive."""

    id: str
    code: str
    submissive_id: str
    created_at: datetime
    expires_at: datetime
    is_used: bool = False
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    is_revoked: bool = False

    def is_active(self, now: datetime) -> bool:
        return not self.is_used and not self.is_revoked and now < self.expires_at


# ==================== CHASTITY DATA ====================


class CurrentSession(DomainModel):
    """Pointer to the running session, embedded in ChastityData."""

    id: str = ""
    is_active: bool = False
    start_time: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    accumulated_pause_time: int = 0
    keyholder_approval_required: bool = False

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None


class PersonalGoal(DomainModel):
    duration: StrictInt = Field(default=0, ge=0)
    type: GoalType = GoalType.SOFT
    set_by: Role = Role.SUBMISSIVE


class KeyholderGoal(DomainModel):
    minimum_duration: StrictInt = Field(default=0, ge=0)
    can_be_modified: StrictBool = True


class Goals(DomainModel):
    personal: PersonalGoal = Field(default_factory=PersonalGoal)
    keyholder: KeyholderGoal = Field(default_factory=KeyholderGoal)


class ChastitySettings(DomainModel):
    allow_pausing: StrictBool = True
    pause_cooldown: StrictInt = Field(default=300, ge=0)  # seconds
    require_reason_for_end: StrictBool = False
    tracking_enabled: StrictBool = True


class ChastityData(DomainModel):
    """Per-relationship session state, goals and settings.

    ``revision`` is bumped on every write and is what conditional writes
    compare against.
    """

    relationship_id: str
    submissive_id: str
    keyholder_id: str
    current_session: CurrentSession = Field(default_factory=CurrentSession)
    goals: Goals = Field(default_factory=Goals)
    settings: ChastitySettings = Field(default_factory=ChastitySettings)
    revision: int = 0
    created_at: datetime
    updated_at: datetime


# ==================== SESSIONS ====================


class SessionEvent(DomainModel):
    type: SessionEventType
    timestamp: datetime
    initiated_by: Role
    reason: Optional[str] = None


class KeyholderApproval(DomainModel):
    required: bool = False
    granted: bool = False
    granted_at: Optional[datetime] = None


class Session(DomainModel):
    """One continuous, possibly paused, wearing period."""

    # Dumps carry the computed effective_duration
    model_config = ConfigDict(extra="ignore")

    id: str
    relationship_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: int = 0  # seconds, set when the session ends
    accumulated_pause_time: int = 0
    events: List[SessionEvent] = Field(default_factory=list)
    goal_met: bool = False
    keyholder_approval: KeyholderApproval = Field(default_factory=KeyholderApproval)
    goal_duration: Optional[int] = None
    is_hardcore_mode: bool = False
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def effective_duration(self) -> int:
        return max(0, self.duration - self.accumulated_pause_time)

    @property
    def is_ended(self) -> bool:
        return self.end_time is not None


# ==================== TASKS ====================


class Consequence(DomainModel):
    type: ConsequenceType
    duration: Optional[int] = None  # Additional/reduced chastity time in seconds
    description: Optional[str] = None


class Task(DomainModel):
    """An action item assigned to the submissive."""

    id: str
    relationship_id: str
    text: str
    assigned_by: Role
    assigned_to: Role = Role.SUBMISSIVE
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[datetime] = None
    consequence: Optional[Consequence] = None
    submissive_note: Optional[str] = None
    keyholder_feedback: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    deadline_notice: DeadlineNotice = DeadlineNotice.NONE
    created_at: datetime
    updated_at: datetime

    @property
    def is_open(self) -> bool:
        return self.status in (TaskStatus.PENDING, TaskStatus.SUBMITTED)


# ==================== AUDIT LOG ====================


class Event(DomainModel):
    """Immutable audit record."""

    id: str
    relationship_id: str
    type: str
    timestamp: datetime
    details: Dict[str, Any] = Field(default_factory=dict)
    logged_by: Role
    is_private: bool = False
    tags: List[str] = Field(default_factory=list)
    created_at: datetime


# ==================== NOTIFICATIONS ====================


class TaskNotification(DomainModel):
    """Facts handed to the external notification sink."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: NotificationKind
    task_id: str
    relationship_id: str
    actor_role: Role
    new_status: TaskStatus
