"""SQLAlchemy models for the Keyholder tracker.

Each model maps to one domain entity through ``from_entity``/``to_entity``.
Nested value objects (permissions, goals, settings, session events) live in
JSON columns; the current-session flags on ``chastity_data`` are real
columns so conditional updates can filter on them.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import TypeDecorator

from ..core.enums import RelationshipStatus
from ..domain.models import (
    ChastityData,
    Event,
    InviteCode,
    Relationship,
    RelationshipRequest,
    Session,
    Task,
)
from .database import Base


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, including on SQLite which drops tzinfo."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def active_pair_key(relationship: Relationship) -> Optional[str]:
    """Unordered pair key, set only while the relationship is ACTIVE.

    A unique index on this column enforces one active relationship per pair.
    """
    if relationship.status != RelationshipStatus.ACTIVE:
        return None
    first, second = sorted((relationship.submissive_id, relationship.keyholder_id))
    return f"{first}|{second}"


class RelationshipModel(Base):
    """A keyholder/submissive pairing."""

    __tablename__ = "relationships"

    id = Column(String(36), primary_key=True)
    submissive_id = Column(String(128), nullable=False, index=True)
    keyholder_id = Column(String(128), nullable=False, index=True)
    status = Column(String(16), nullable=False)
    permissions = Column(JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    active_pair_key = Column(String(300), nullable=True, unique=True)
    created_at = Column(UTCDateTime(), nullable=False)
    established_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)
    ended_at = Column(UTCDateTime(), nullable=True)

    @classmethod
    def from_entity(cls, relationship: Relationship) -> "RelationshipModel":
        model = cls(id=relationship.id)
        model.apply(relationship)
        return model

    def apply(self, relationship: Relationship) -> None:
        self.submissive_id = relationship.submissive_id
        self.keyholder_id = relationship.keyholder_id
        self.status = relationship.status.value
        self.permissions = relationship.permissions.model_dump(mode="json")
        self.notes = relationship.notes
        self.tags = list(relationship.tags)
        self.active_pair_key = active_pair_key(relationship)
        self.created_at = relationship.created_at
        self.established_at = relationship.established_at
        self.updated_at = relationship.updated_at
        self.ended_at = relationship.ended_at

    def to_entity(self) -> Relationship:
        return Relationship(
            id=self.id,
            submissive_id=self.submissive_id,
            keyholder_id=self.keyholder_id,
            status=self.status,
            permissions=self.permissions,
            notes=self.notes,
            tags=self.tags or [],
            created_at=self.created_at,
            established_at=self.established_at,
            updated_at=self.updated_at,
            ended_at=self.ended_at,
        )


class RelationshipRequestModel(Base):
    """An invitation to form a relationship."""

    __tablename__ = "relationship_requests"

    id = Column(String(36), primary_key=True)
    from_user_id = Column(String(128), nullable=False, index=True)
    to_user_id = Column(String(128), nullable=False, index=True)
    from_role = Column(String(16), nullable=False)
    to_role = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False)
    responded_at = Column(UTCDateTime(), nullable=True)

    @classmethod
    def from_entity(cls, request: RelationshipRequest) -> "RelationshipRequestModel":
        model = cls(id=request.id)
        model.apply(request)
        return model

    def apply(self, request: RelationshipRequest) -> None:
        self.from_user_id = request.from_user_id
        self.to_user_id = request.to_user_id
        self.from_role = request.from_role.value
        self.to_role = request.to_role.value
        self.status = request.status.value
        self.message = request.message
        self.created_at = request.created_at
        self.expires_at = request.expires_at
        self.responded_at = request.responded_at

    def to_entity(self) -> RelationshipRequest:
        return RelationshipRequest(
            id=self.id,
            from_user_id=self.from_user_id,
            to_user_id=self.to_user_id,
            from_role=self.from_role,
            to_role=self.to_role,
            status=self.status,
            message=self.message,
            created_at=self.created_at,
            expires_at=self.expires_at,
            responded_at=self.responded_at,
        )


class InviteCodeModel(Base):
    """A short-lived pairing code."""

    __tablename__ = "invite_codes"

    id = Column(String(36), primary_key=True)
    code = Column(String(16), nullable=False, index=True)
    submissive_id = Column(String(128), nullable=False, index=True)
    is_used = Column(Boolean, nullable=False, default=False)
    used_by = Column(String(128), nullable=True)
    is_revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False)
    used_at = Column(UTCDateTime(), nullable=True)

    @classmethod
    def from_entity(cls, invite: InviteCode) -> "InviteCodeModel":
        return cls(
            id=invite.id,
            code=invite.code,
            submissive_id=invite.submissive_id,
            is_used=invite.is_used,
            used_by=invite.used_by,
            is_revoked=invite.is_revoked,
            created_at=invite.created_at,
            expires_at=invite.expires_at,
            used_at=invite.used_at,
        )

    def to_entity(self) -> InviteCode:
        return InviteCode(
            id=self.id,
            code=self.code,
            submissive_id=self.submissive_id,
            is_used=self.is_used,
            used_by=self.used_by,
            is_revoked=self.is_revoked,
            created_at=self.created_at,
            expires_at=self.expires_at,
            used_at=self.used_at,
        )


class ChastityDataModel(Base):
    """Per-relationship session pointer, goals and settings."""

    __tablename__ = "chastity_data"

    relationship_id = Column(String(36), ForeignKey("relationships.id"), primary_key=True)
    submissive_id = Column(String(128), nullable=False)
    keyholder_id = Column(String(128), nullable=False)

    current_session_id = Column(String(36), nullable=False, default="")
    current_is_active = Column(Boolean, nullable=False, default=False)
    current_start_time = Column(UTCDateTime(), nullable=True)
    current_paused_at = Column(UTCDateTime(), nullable=True)
    current_accumulated_pause_time = Column(Integer, nullable=False, default=0)
    current_keyholder_approval_required = Column(Boolean, nullable=False, default=False)

    goals = Column(JSON, nullable=False, default=dict)
    settings = Column(JSON, nullable=False, default=dict)
    revision = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)

    @staticmethod
    def column_values(data: ChastityData) -> dict:
        """Column/value mapping used for inserts and guarded updates."""
        current = data.current_session
        return {
            "submissive_id": data.submissive_id,
            "keyholder_id": data.keyholder_id,
            "current_session_id": current.id,
            "current_is_active": current.is_active,
            "current_start_time": current.start_time,
            "current_paused_at": current.paused_at,
            "current_accumulated_pause_time": current.accumulated_pause_time,
            "current_keyholder_approval_required": current.keyholder_approval_required,
            "goals": data.goals.model_dump(mode="json"),
            "settings": data.settings.model_dump(mode="json"),
            "revision": data.revision,
            "created_at": data.created_at,
            "updated_at": data.updated_at,
        }

    @classmethod
    def from_entity(cls, data: ChastityData) -> "ChastityDataModel":
        return cls(relationship_id=data.relationship_id, **cls.column_values(data))

    def to_entity(self) -> ChastityData:
        return ChastityData(
            relationship_id=self.relationship_id,
            submissive_id=self.submissive_id,
            keyholder_id=self.keyholder_id,
            current_session={
                "id": self.current_session_id,
                "is_active": self.current_is_active,
                "start_time": self.current_start_time,
                "paused_at": self.current_paused_at,
                "accumulated_pause_time": self.current_accumulated_pause_time,
                "keyholder_approval_required": self.current_keyholder_approval_required,
            },
            goals=self.goals or {},
            settings=self.settings or {},
            revision=self.revision,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SessionModel(Base):
    """Session history record."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True)
    relationship_id = Column(String(36), ForeignKey("relationships.id"), nullable=False)
    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=True)
    duration = Column(Integer, nullable=False, default=0)
    accumulated_pause_time = Column(Integer, nullable=False, default=0)
    events = Column(JSON, nullable=False, default=list)
    goal_met = Column(Boolean, nullable=False, default=False)
    keyholder_approval = Column(JSON, nullable=False, default=dict)
    goal_duration = Column(Integer, nullable=True)
    is_hardcore_mode = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (Index("ix_sessions_relationship_start", "relationship_id", "start_time"),)

    @classmethod
    def from_entity(cls, session: Session) -> "SessionModel":
        model = cls(id=session.id, relationship_id=session.relationship_id)
        model.apply(session)
        return model

    def apply(self, session: Session) -> None:
        self.start_time = session.start_time
        self.end_time = session.end_time
        self.duration = session.duration
        self.accumulated_pause_time = session.accumulated_pause_time
        self.events = [event.model_dump(mode="json") for event in session.events]
        self.goal_met = session.goal_met
        self.keyholder_approval = session.keyholder_approval.model_dump(mode="json")
        self.goal_duration = session.goal_duration
        self.is_hardcore_mode = session.is_hardcore_mode
        self.notes = session.notes
        self.created_at = session.created_at
        self.updated_at = session.updated_at

    def to_entity(self) -> Session:
        return Session(
            id=self.id,
            relationship_id=self.relationship_id,
            start_time=self.start_time,
            end_time=self.end_time,
            duration=self.duration,
            accumulated_pause_time=self.accumulated_pause_time,
            events=self.events or [],
            goal_met=self.goal_met,
            keyholder_approval=self.keyholder_approval or {},
            goal_duration=self.goal_duration,
            is_hardcore_mode=self.is_hardcore_mode,
            notes=self.notes,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class TaskModel(Base):
    """Task assigned within a relationship."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    relationship_id = Column(String(36), ForeignKey("relationships.id"), nullable=False)
    text = Column(Text, nullable=False)
    assigned_by = Column(String(16), nullable=False)
    assigned_to = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    due_date = Column(UTCDateTime(), nullable=True)
    consequence = Column(JSON, nullable=True)
    submissive_note = Column(Text, nullable=True)
    keyholder_feedback = Column(Text, nullable=True)
    submitted_at = Column(UTCDateTime(), nullable=True)
    approved_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    deadline_notice = Column(String(16), nullable=False, default="none")
    created_at = Column(UTCDateTime(), nullable=False)
    updated_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (Index("ix_tasks_relationship_created", "relationship_id", "created_at"),)

    @classmethod
    def from_entity(cls, task: Task) -> "TaskModel":
        model = cls(id=task.id, relationship_id=task.relationship_id)
        model.apply(task)
        return model

    def apply(self, task: Task) -> None:
        self.text = task.text
        self.assigned_by = task.assigned_by.value
        self.assigned_to = task.assigned_to.value
        self.status = task.status.value
        self.due_date = task.due_date
        self.consequence = task.consequence.model_dump(mode="json") if task.consequence else None
        self.submissive_note = task.submissive_note
        self.keyholder_feedback = task.keyholder_feedback
        self.submitted_at = task.submitted_at
        self.approved_at = task.approved_at
        self.completed_at = task.completed_at
        self.deadline_notice = task.deadline_notice.value
        self.created_at = task.created_at
        self.updated_at = task.updated_at

    def to_entity(self) -> Task:
        return Task(
            id=self.id,
            relationship_id=self.relationship_id,
            text=self.text,
            assigned_by=self.assigned_by,
            assigned_to=self.assigned_to,
            status=self.status,
            due_date=self.due_date,
            consequence=self.consequence,
            submissive_note=self.submissive_note,
            keyholder_feedback=self.keyholder_feedback,
            submitted_at=self.submitted_at,
            approved_at=self.approved_at,
            completed_at=self.completed_at,
            deadline_notice=self.deadline_notice,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class EventModel(Base):
    """Append-only audit log entry."""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True)
    relationship_id = Column(String(36), ForeignKey("relationships.id"), nullable=False)
    type = Column(String(64), nullable=False)
    timestamp = Column(UTCDateTime(), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    logged_by = Column(String(16), nullable=False)
    is_private = Column(Boolean, nullable=False, default=False)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (Index("ix_events_relationship_timestamp", "relationship_id", "timestamp"),)

    @classmethod
    def from_entity(cls, event: Event) -> "EventModel":
        return cls(
            id=event.id,
            relationship_id=event.relationship_id,
            type=event.type,
            timestamp=event.timestamp,
            details=event.details,
            logged_by=event.logged_by.value,
            is_private=event.is_private,
            tags=list(event.tags),
            created_at=event.created_at,
        )

    def to_entity(self) -> Event:
        return Event(
            id=self.id,
            relationship_id=self.relationship_id,
            type=self.type,
            timestamp=self.timestamp,
            details=self.details or {},
            logged_by=self.logged_by,
            is_private=self.is_private,
            tags=self.tags or [],
            created_at=self.created_at,
        )
