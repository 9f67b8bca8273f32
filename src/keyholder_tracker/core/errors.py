"""Domain error types.

Every public service operation raises exactly one of these. The HTTP layer
maps them onto Problem Details responses; ``retryable`` tells callers whether
repeating the same request may succeed.
"""

from typing import Optional


class DomainError(Exception):
    """Base domain error."""

    code = "domain_error"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource not found."""

    code = "not_found"

    def __init__(self, resource: str, identifier: str, message: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(message or f"{resource} with id {identifier} not found")


class PermissionDeniedError(DomainError):
    """Caller lacks the permission required for the action."""

    code = "permission_denied"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class InvalidTransitionError(DomainError):
    """A state machine rule was violated."""

    code = "invalid_transition"


class AlreadyActiveError(InvalidTransitionError):
    """A session is already active for the relationship."""

    code = "already_active"

    def __init__(self, message: str = "A session is already active for this relationship"):
        super().__init__(message)


class AlreadyPausedError(InvalidTransitionError):
    """The current session is already paused."""

    code = "already_paused"

    def __init__(self, message: str = "Session is already paused"):
        super().__init__(message)


class NotPausedError(InvalidTransitionError):
    """The current session is not paused."""

    code = "not_paused"

    def __init__(self, message: str = "Session is not paused"):
        super().__init__(message)


class LimitExceededError(DomainError):
    """A per-user quota was exhausted."""

    code = "limit_exceeded"


class AlreadyLinkedError(DomainError):
    """The users are already linked by a live relationship."""

    code = "already_linked"

    def __init__(self, message: str, existing_relationship_id: Optional[str] = None):
        self.existing_relationship_id = existing_relationship_id
        super().__init__(message)


class SelfLinkError(DomainError):
    """A user tried to pair with themselves."""

    code = "self_link"

    def __init__(self, message: str = "Users cannot establish relationships with themselves"):
        super().__init__(message)


class ValidationError(DomainError):
    """Malformed input, detected before any write."""

    code = "validation_error"


class ConflictError(DomainError):
    """A conditional write lost a race; safe to retry."""

    code = "conflict"
    retryable = True

    def __init__(self, message: str = "The record was modified concurrently, please retry"):
        super().__init__(message)
