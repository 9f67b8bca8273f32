"""Abstract repository interfaces for data access layer.

Reads go through the per-entity repositories. Writes are staged on a
``Transaction`` obtained from ``RepositoryContainer.transaction()``, which
either commits every staged write or none of them. Update methods that take
an expectation are conditional writes: if the stored record no longer
matches, the transaction fails with ``ConflictError``.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional

from ..core.enums import DeadlineNotice, RelationshipStatus, RequestStatus, TaskStatus
from ..domain.models import (
    ChastityData,
    Event,
    InviteCode,
    Relationship,
    RelationshipRequest,
    Session,
    Task,
)


@dataclass(frozen=True)
class SessionGuard:
    """Precondition on the current-session flags of a ChastityData record."""

    revision: int
    is_active: bool
    is_paused: bool

    @classmethod
    def from_data(cls, data: ChastityData) -> "SessionGuard":
        return cls(
            revision=data.revision,
            is_active=data.current_session.is_active,
            is_paused=data.current_session.is_paused,
        )

    def matches(self, data: ChastityData) -> bool:
        return (
            data.revision == self.revision
            and data.current_session.is_active == self.is_active
            and data.current_session.is_paused == self.is_paused
        )


class RelationshipRepository(ABC):
    """Repository interface for Relationship entities."""

    @abstractmethod
    async def get_by_id(self, relationship_id: str) -> Optional[Relationship]:
        """Get a relationship by ID."""
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[Relationship]:
        """Relationships where the user is either participant, newest first."""
        pass

    @abstractmethod
    async def list_between(self, user_a: str, user_b: str) -> List[Relationship]:
        """Relationships linking the two users in either orientation, newest first."""
        pass

    @abstractmethod
    async def list_for_submissive(
        self, submissive_id: str, status: Optional[RelationshipStatus] = None
    ) -> List[Relationship]:
        """Relationships where the user is the submissive."""
        pass


class RelationshipRequestRepository(ABC):
    """Repository interface for RelationshipRequest entities."""

    @abstractmethod
    async def get_by_id(self, request_id: str) -> Optional[RelationshipRequest]:
        """Get a request by ID."""
        pass

    @abstractmethod
    async def list_pending_from_to(
        self, from_user_id: str, to_user_id: str
    ) -> List[RelationshipRequest]:
        """Stored-pending requests from one user to another."""
        pass

    @abstractmethod
    async def list_incoming(
        self, user_id: str, status: Optional[RequestStatus] = None
    ) -> List[RelationshipRequest]:
        """Requests addressed to the user, newest first."""
        pass

    @abstractmethod
    async def list_outgoing(self, user_id: str) -> List[RelationshipRequest]:
        """Requests sent by the user, newest first."""
        pass


class InviteCodeRepository(ABC):
    """Repository interface for InviteCode entities."""

    @abstractmethod
    async def get_by_id(self, code_id: str) -> Optional[InviteCode]:
        pass

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[InviteCode]:
        """Newest invite carrying this code string."""
        pass

    @abstractmethod
    async def list_for_submissive(self, submissive_id: str) -> List[InviteCode]:
        pass


class ChastityDataRepository(ABC):
    """Repository interface for per-relationship ChastityData."""

    @abstractmethod
    async def get(self, relationship_id: str) -> Optional[ChastityData]:
        pass


class SessionRepository(ABC):
    """Repository interface for Session history."""

    @abstractmethod
    async def get_by_id(self, relationship_id: str, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Session]:
        """Sessions newest first by start time."""
        pass


class TaskRepository(ABC):
    """Repository interface for Task entities."""

    @abstractmethod
    async def get_by_id(self, relationship_id: str, task_id: str) -> Optional[Task]:
        pass

    @abstractmethod
    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Task]:
        """Tasks newest first by creation time."""
        pass

    @abstractmethod
    async def list_open(self, relationship_id: str) -> List[Task]:
        """PENDING and SUBMITTED tasks, oldest first."""
        pass


class EventRepository(ABC):
    """Repository interface for the append-only audit log."""

    @abstractmethod
    async def get_by_id(self, relationship_id: str, event_id: str) -> Optional[Event]:
        pass

    @abstractmethod
    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Event]:
        """Events newest first by timestamp."""
        pass


class Transaction(ABC):
    """Unit of work: staged writes that commit together or not at all."""

    @abstractmethod
    async def add_relationship(self, relationship: Relationship) -> None:
        pass

    @abstractmethod
    async def update_relationship(
        self,
        relationship: Relationship,
        expected_status: Optional[RelationshipStatus] = None,
    ) -> None:
        pass

    @abstractmethod
    async def add_request(self, request: RelationshipRequest) -> None:
        pass

    @abstractmethod
    async def update_request(
        self, request: RelationshipRequest, expected_status: RequestStatus
    ) -> None:
        pass

    @abstractmethod
    async def add_invite_code(self, invite: InviteCode) -> None:
        pass

    @abstractmethod
    async def update_invite_code(self, invite: InviteCode) -> None:
        """Conditional on the stored code still being unused and unrevoked."""
        pass

    @abstractmethod
    async def add_chastity_data(self, data: ChastityData) -> None:
        pass

    @abstractmethod
    async def update_chastity_data(self, data: ChastityData, guard: SessionGuard) -> ChastityData:
        """Write ``data`` if the stored record still matches ``guard``.

        Returns the written record with its revision bumped.
        """
        pass

    @abstractmethod
    async def add_session(self, session: Session) -> None:
        pass

    @abstractmethod
    async def update_session(self, session: Session) -> None:
        pass

    @abstractmethod
    async def add_task(self, task: Task) -> None:
        pass

    @abstractmethod
    async def update_task(
        self,
        task: Task,
        expected_status: TaskStatus,
        expected_notice: Optional[DeadlineNotice] = None,
    ) -> None:
        pass

    @abstractmethod
    async def add_event(self, event: Event) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        """Commit the current transaction."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the current transaction."""
        pass


class RepositoryContainer:
    """Container for all repository interfaces to support dependency injection."""

    def __init__(
        self,
        relationship_repo: RelationshipRepository,
        request_repo: RelationshipRequestRepository,
        invite_code_repo: InviteCodeRepository,
        chastity_data_repo: ChastityDataRepository,
        session_repo: SessionRepository,
        task_repo: TaskRepository,
        event_repo: EventRepository,
        transaction_factory: Callable[[], Transaction],
    ):
        self.relationship = relationship_repo
        self.request = request_repo
        self.invite_code = invite_code_repo
        self.chastity_data = chastity_data_repo
        self.session = session_repo
        self.task = task_repo
        self.event = event_repo
        self._transaction_factory = transaction_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Open a unit of work; commit on clean exit, roll back on any error."""
        tx = self._transaction_factory()
        try:
            yield tx
        except BaseException:
            await tx.rollback()
            raise
        await tx.commit()
