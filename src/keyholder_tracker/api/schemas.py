"""Pydantic models for API request/response validation."""

from typing import Any, Dict, List, Optional

from pydantic import AwareDatetime, BaseModel, Field

from ..core.enums import Role, TaskStatus
from ..domain.history import HistoryEntry, KeyholderAccess, SharingSettings
from ..domain.models import (
    Consequence,
    Event,
    InviteCode,
    Relationship,
    RelationshipRequest,
    Session,
    Task,
    TaskNotification,
)


class ProblemDetails(BaseModel):
    """RFC 9457 Problem Details for HTTP APIs."""

    type: str = Field(description="A URI reference that identifies the problem type")
    title: str = Field(
        description="A short, human-readable summary of the problem type"
    )
    status: int = Field(description="The HTTP status code")
    detail: Optional[str] = Field(
        None, description="A human-readable explanation specific to this occurrence"
    )
    instance: Optional[str] = Field(
        None, description="A URI reference that identifies the specific occurrence"
    )
    code: Optional[str] = Field(None, description="Machine-readable domain error code")
    retryable: Optional[bool] = Field(
        None, description="Whether repeating the same request may succeed"
    )


# Invite code schemas
class InviteCodeCreate(BaseModel):
    """Schema for issuing an invite code."""

    expiration_hours: Optional[int] = Field(
        None, ge=1, le=24 * 7, description="Hours until the code expires (default 24)"
    )


class InviteCodeAccept(BaseModel):
    """Schema for redeeming an invite code."""

    code: str = Field(description="Six character invite code", min_length=1, max_length=16)


class InviteCodeListResponse(BaseModel):
    invite_codes: List[InviteCode]


# Relationship schemas
class RelationshipListResponse(BaseModel):
    relationships: List[Relationship]


class RelationshipRequestCreate(BaseModel):
    """Schema for sending a relationship request."""

    to_user_id: str = Field(description="User the request is addressed to", min_length=1)
    from_role: Role = Field(description="Role the sender will take")
    message: Optional[str] = Field(None, max_length=500)


class RelationshipRequestListResponse(BaseModel):
    requests: List[RelationshipRequest]


# Session schemas
class SessionStartRequest(BaseModel):
    """Schema for starting a session."""

    goal_duration: Optional[int] = Field(None, ge=0, description="Goal in seconds")
    is_hardcore_mode: bool = False
    notes: Optional[str] = Field(None, max_length=1000)


class SessionActionRequest(BaseModel):
    """Optional reason attached to pause or end."""

    reason: Optional[str] = Field(None, max_length=500)


class EmergencyUnlockRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class SessionListResponse(BaseModel):
    sessions: List[Session]


# Task schemas
class TaskCreate(BaseModel):
    """Schema for assigning a task."""

    text: str = Field(min_length=1, max_length=2000)
    due_date: Optional[AwareDatetime] = None
    consequence: Optional[Consequence] = None


class TaskStatusUpdate(BaseModel):
    """Schema for moving a task to a new status."""

    status: TaskStatus
    note: Optional[str] = Field(None, max_length=2000)


class TaskListResponse(BaseModel):
    tasks: List[Task]


class DeadlineCheckResponse(BaseModel):
    notifications: List[TaskNotification]


# Event schemas
class EventCreate(BaseModel):
    """Schema for logging an event."""

    type: str = Field(min_length=1, max_length=100)
    details: Dict[str, Any] = Field(default_factory=dict)
    is_private: bool = False
    tags: List[str] = Field(default_factory=list)


class EventCreatedResponse(BaseModel):
    id: str


class EventListResponse(BaseModel):
    events: List[Event]


class HistorySearchResponse(BaseModel):
    entries: List[HistoryEntry]


class KeyholderViewRequest(BaseModel):
    """Sharing choices applied to the keyholder's view of session history."""

    sharing: SharingSettings = Field(default_factory=SharingSettings)
    access: Optional[KeyholderAccess] = None
