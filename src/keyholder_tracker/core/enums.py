"""Enums for the Keyholder tracker application."""

from enum import Enum


class Role(str, Enum):
    """Role a user plays inside a relationship."""

    SUBMISSIVE = "submissive"
    KEYHOLDER = "keyholder"
    NONE = "none"


class RelationshipStatus(str, Enum):
    """Lifecycle status of a relationship."""

    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class RequestStatus(str, Enum):
    """Status of a relationship request."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TaskStatus(str, Enum):
    """Status of a relationship task."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class SessionEventType(str, Enum):
    """Entries recorded in a session's event list."""

    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    END = "end"


class PermissionAction(str, Enum):
    """Actions resolved by the permission evaluator."""

    SESSIONS = "sessions"
    TASKS = "tasks"
    GOALS = "goals"
    PUNISHMENTS = "punishments"
    SETTINGS = "settings"
    PAUSE_SESSION = "pauseSession"
    EMERGENCY_UNLOCK = "emergencyUnlock"


KEYHOLDER_EDIT_ACTIONS = frozenset(
    {
        PermissionAction.SESSIONS,
        PermissionAction.TASKS,
        PermissionAction.GOALS,
        PermissionAction.PUNISHMENTS,
        PermissionAction.SETTINGS,
    }
)


class GoalType(str, Enum):
    """Personal goal strictness."""

    SOFT = "soft"
    HARDCORE = "hardcore"


class ConsequenceType(str, Enum):
    """Consequence attached to a task."""

    REWARD = "reward"
    PUNISHMENT = "punishment"


class DeadlineNotice(str, Enum):
    """Last deadline notification sent for a task."""

    NONE = "none"
    APPROACHING = "approaching"
    OVERDUE = "overdue"


class SystemEventType(str, Enum):
    """Audit event types written by the core itself."""

    RELATIONSHIP_ESTABLISHED = "relationship_established"
    RELATIONSHIP_PAUSED = "relationship_paused"
    RELATIONSHIP_RESUMED = "relationship_resumed"
    RELATIONSHIP_ENDED = "relationship_ended"
    PERMISSIONS_UPDATED = "permissions_updated"
    SETTINGS_UPDATED = "settings_updated"
    GOALS_UPDATED = "goals_updated"
    SESSION_START = "session_start"
    SESSION_PAUSE = "session_pause"
    SESSION_RESUME = "session_resume"
    SESSION_END = "session_end"
    EMERGENCY_UNLOCK = "emergency_unlock"
    TASK_CREATED = "task_created"
    TASK_STATUS_CHANGED = "task_status_changed"


class NotificationKind(str, Enum):
    """Facts pushed to the external notification sink."""

    TASK_ASSIGNED = "task_assigned"
    TASK_SUBMITTED = "task_submitted"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    TASK_COMPLETED = "task_completed"
    DEADLINE_APPROACHING = "deadline_approaching"
    DEADLINE_PASSED = "deadline_passed"
