"""In-memory implementations of repository interfaces for testing."""

import threading
from typing import Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel

from ..core.enums import DeadlineNotice, RelationshipStatus, RequestStatus, TaskStatus
from ..core.errors import ConflictError
from ..domain.models import (
    ChastityData,
    Event,
    InviteCode,
    Relationship,
    RelationshipRequest,
    Session,
    Task,
)
from .interfaces import (
    ChastityDataRepository,
    EventRepository,
    InviteCodeRepository,
    RelationshipRepository,
    RelationshipRequestRepository,
    RepositoryContainer,
    SessionGuard,
    SessionRepository,
    TaskRepository,
    Transaction,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _copy(entity: ModelT) -> ModelT:
    return entity.model_copy(deep=True)


class MemoryStore:
    """Shared backing dictionaries; replaced wholesale on every commit."""

    def __init__(self):
        self.lock = threading.Lock()
        self.relationships: Dict[str, Relationship] = {}
        self.requests: Dict[str, RelationshipRequest] = {}
        self.invite_codes: Dict[str, InviteCode] = {}
        self.chastity_data: Dict[str, ChastityData] = {}
        self.sessions: Dict[str, Session] = {}
        self.tasks: Dict[str, Task] = {}
        self.events: Dict[str, Event] = {}

    _TABLES = (
        "relationships",
        "requests",
        "invite_codes",
        "chastity_data",
        "sessions",
        "tasks",
        "events",
    )

    def working_copy(self) -> Dict[str, Dict[str, BaseModel]]:
        return {table: dict(getattr(self, table)) for table in self._TABLES}

    def install(self, tables: Dict[str, Dict[str, BaseModel]]) -> None:
        for table, rows in tables.items():
            setattr(self, table, rows)


class BaseMemoryRepository:
    """Base in-memory repository implementation."""

    def __init__(self, store: MemoryStore):
        self._store = store


class MemoryRelationshipRepository(BaseMemoryRepository, RelationshipRepository):
    """In-memory implementation of RelationshipRepository."""

    def _newest_first(self, relationships: List[Relationship]) -> List[Relationship]:
        return [_copy(r) for r in sorted(relationships, key=lambda r: r.created_at, reverse=True)]

    async def get_by_id(self, relationship_id: str) -> Optional[Relationship]:
        relationship = self._store.relationships.get(relationship_id)
        return _copy(relationship) if relationship else None

    async def list_for_user(self, user_id: str) -> List[Relationship]:
        return self._newest_first(
            [
                r
                for r in self._store.relationships.values()
                if user_id in (r.submissive_id, r.keyholder_id)
            ]
        )

    async def list_between(self, user_a: str, user_b: str) -> List[Relationship]:
        pair = {user_a, user_b}
        return self._newest_first(
            [
                r
                for r in self._store.relationships.values()
                if {r.submissive_id, r.keyholder_id} == pair
            ]
        )

    async def list_for_submissive(
        self, submissive_id: str, status: Optional[RelationshipStatus] = None
    ) -> List[Relationship]:
        return self._newest_first(
            [
                r
                for r in self._store.relationships.values()
                if r.submissive_id == submissive_id and (status is None or r.status == status)
            ]
        )


class MemoryRelationshipRequestRepository(BaseMemoryRepository, RelationshipRequestRepository):
    """In-memory implementation of RelationshipRequestRepository."""

    def _newest_first(self, requests: List[RelationshipRequest]) -> List[RelationshipRequest]:
        return [_copy(r) for r in sorted(requests, key=lambda r: r.created_at, reverse=True)]

    async def get_by_id(self, request_id: str) -> Optional[RelationshipRequest]:
        request = self._store.requests.get(request_id)
        return _copy(request) if request else None

    async def list_pending_from_to(
        self, from_user_id: str, to_user_id: str
    ) -> List[RelationshipRequest]:
        return self._newest_first(
            [
                r
                for r in self._store.requests.values()
                if r.from_user_id == from_user_id
                and r.to_user_id == to_user_id
                and r.status == RequestStatus.PENDING
            ]
        )

    async def list_incoming(
        self, user_id: str, status: Optional[RequestStatus] = None
    ) -> List[RelationshipRequest]:
        return self._newest_first(
            [
                r
                for r in self._store.requests.values()
                if r.to_user_id == user_id and (status is None or r.status == status)
            ]
        )

    async def list_outgoing(self, user_id: str) -> List[RelationshipRequest]:
        return self._newest_first(
            [r for r in self._store.requests.values() if r.from_user_id == user_id]
        )


class MemoryInviteCodeRepository(BaseMemoryRepository, InviteCodeRepository):
    """In-memory implementation of InviteCodeRepository."""

    async def get_by_id(self, code_id: str) -> Optional[InviteCode]:
        invite = self._store.invite_codes.get(code_id)
        return _copy(invite) if invite else None

    async def get_by_code(self, code: str) -> Optional[InviteCode]:
        matches = [i for i in self._store.invite_codes.values() if i.code == code]
        if not matches:
            return None
        return _copy(max(matches, key=lambda i: i.created_at))

    async def list_for_submissive(self, submissive_id: str) -> List[InviteCode]:
        return [
            _copy(i)
            for i in sorted(
                self._store.invite_codes.values(), key=lambda i: i.created_at, reverse=True
            )
            if i.submissive_id == submissive_id
        ]


class MemoryChastityDataRepository(BaseMemoryRepository, ChastityDataRepository):
    """In-memory implementation of ChastityDataRepository."""

    async def get(self, relationship_id: str) -> Optional[ChastityData]:
        data = self._store.chastity_data.get(relationship_id)
        return _copy(data) if data else None


class MemorySessionRepository(BaseMemoryRepository, SessionRepository):
    """In-memory implementation of SessionRepository."""

    async def get_by_id(self, relationship_id: str, session_id: str) -> Optional[Session]:
        session = self._store.sessions.get(session_id)
        if session is None or session.relationship_id != relationship_id:
            return None
        return _copy(session)

    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Session]:
        sessions = [
            s for s in self._store.sessions.values() if s.relationship_id == relationship_id
        ]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return [_copy(s) for s in sessions[:limit]]


class MemoryTaskRepository(BaseMemoryRepository, TaskRepository):
    """In-memory implementation of TaskRepository."""

    async def get_by_id(self, relationship_id: str, task_id: str) -> Optional[Task]:
        task = self._store.tasks.get(task_id)
        if task is None or task.relationship_id != relationship_id:
            return None
        return _copy(task)

    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Task]:
        tasks = [t for t in self._store.tasks.values() if t.relationship_id == relationship_id]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return [_copy(t) for t in tasks[:limit]]

    async def list_open(self, relationship_id: str) -> List[Task]:
        tasks = [
            t
            for t in self._store.tasks.values()
            if t.relationship_id == relationship_id and t.is_open
        ]
        tasks.sort(key=lambda t: t.created_at)
        return [_copy(t) for t in tasks]


class MemoryEventRepository(BaseMemoryRepository, EventRepository):
    """In-memory implementation of EventRepository."""

    async def get_by_id(self, relationship_id: str, event_id: str) -> Optional[Event]:
        event = self._store.events.get(event_id)
        if event is None or event.relationship_id != relationship_id:
            return None
        return _copy(event)

    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Event]:
        events = [e for e in self._store.events.values() if e.relationship_id == relationship_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return [_copy(e) for e in events[:limit]]


Tables = Dict[str, Dict[str, BaseModel]]


class MemoryTransaction(Transaction):
    """Stages operations and applies them to a working copy on commit.

    Every staged operation re-checks its precondition against the working
    copy under the store lock, so a lost race surfaces as ConflictError and
    the store is left untouched.
    """

    def __init__(self, store: MemoryStore):
        self._store = store
        self._ops: List[Callable[[Tables], None]] = []
        self._done = False

    def _stage(self, op: Callable[[Tables], None]) -> None:
        if self._done:
            raise RuntimeError("Transaction already finished")
        self._ops.append(op)

    @staticmethod
    def _check_active_pair(tables: Tables, relationship: Relationship) -> None:
        if relationship.status != RelationshipStatus.ACTIVE:
            return
        pair = {relationship.submissive_id, relationship.keyholder_id}
        for other in tables["relationships"].values():
            if (
                other.id != relationship.id
                and other.status == RelationshipStatus.ACTIVE
                and {other.submissive_id, other.keyholder_id} == pair
            ):
                raise ConflictError("An active relationship already exists between these users")

    async def add_relationship(self, relationship: Relationship) -> None:
        stored = _copy(relationship)

        def op(tables: Tables) -> None:
            if stored.id in tables["relationships"]:
                raise ConflictError(f"Relationship {stored.id} already exists")
            self._check_active_pair(tables, stored)
            tables["relationships"][stored.id] = stored

        self._stage(op)

    async def update_relationship(
        self,
        relationship: Relationship,
        expected_status: Optional[RelationshipStatus] = None,
    ) -> None:
        stored = _copy(relationship)

        def op(tables: Tables) -> None:
            current = tables["relationships"].get(stored.id)
            if current is None or (
                expected_status is not None and current.status != expected_status
            ):
                raise ConflictError()
            self._check_active_pair(tables, stored)
            tables["relationships"][stored.id] = stored

        self._stage(op)

    async def add_request(self, request: RelationshipRequest) -> None:
        stored = _copy(request)
        self._stage(lambda tables: tables["requests"].__setitem__(stored.id, stored))

    async def update_request(
        self, request: RelationshipRequest, expected_status: RequestStatus
    ) -> None:
        stored = _copy(request)

        def op(tables: Tables) -> None:
            current = tables["requests"].get(stored.id)
            if current is None or current.status != expected_status:
                raise ConflictError()
            tables["requests"][stored.id] = stored

        self._stage(op)

    async def add_invite_code(self, invite: InviteCode) -> None:
        stored = _copy(invite)
        self._stage(lambda tables: tables["invite_codes"].__setitem__(stored.id, stored))

    async def update_invite_code(self, invite: InviteCode) -> None:
        stored = _copy(invite)

        def op(tables: Tables) -> None:
            current = tables["invite_codes"].get(stored.id)
            if current is None or current.is_used or current.is_revoked:
                raise ConflictError("Invite code was already used or revoked")
            tables["invite_codes"][stored.id] = stored

        self._stage(op)

    async def add_chastity_data(self, data: ChastityData) -> None:
        stored = _copy(data)
        self._stage(lambda tables: tables["chastity_data"].__setitem__(stored.relationship_id, stored))

    async def update_chastity_data(self, data: ChastityData, guard: SessionGuard) -> ChastityData:
        stored = data.model_copy(update={"revision": guard.revision + 1}, deep=True)

        def op(tables: Tables) -> None:
            current = tables["chastity_data"].get(stored.relationship_id)
            if current is None or not guard.matches(current):
                raise ConflictError()
            tables["chastity_data"][stored.relationship_id] = stored

        self._stage(op)
        return _copy(stored)

    async def add_session(self, session: Session) -> None:
        stored = _copy(session)
        self._stage(lambda tables: tables["sessions"].__setitem__(stored.id, stored))

    async def update_session(self, session: Session) -> None:
        stored = _copy(session)

        def op(tables: Tables) -> None:
            if stored.id not in tables["sessions"]:
                raise ConflictError()
            tables["sessions"][stored.id] = stored

        self._stage(op)

    async def add_task(self, task: Task) -> None:
        stored = _copy(task)
        self._stage(lambda tables: tables["tasks"].__setitem__(stored.id, stored))

    async def update_task(
        self,
        task: Task,
        expected_status: TaskStatus,
        expected_notice: Optional[DeadlineNotice] = None,
    ) -> None:
        stored = _copy(task)

        def op(tables: Tables) -> None:
            current = tables["tasks"].get(stored.id)
            if (
                current is None
                or current.status != expected_status
                or (expected_notice is not None and current.deadline_notice != expected_notice)
            ):
                raise ConflictError()
            tables["tasks"][stored.id] = stored

        self._stage(op)

    async def add_event(self, event: Event) -> None:
        stored = _copy(event)

        def op(tables: Tables) -> None:
            if stored.id in tables["events"]:
                raise ConflictError(f"Event {stored.id} already exists")
            tables["events"][stored.id] = stored

        self._stage(op)

    async def commit(self) -> None:
        if self._done:
            return
        self._done = True
        with self._store.lock:
            tables = self._store.working_copy()
            for op in self._ops:
                op(tables)
            self._store.install(tables)
        self._ops.clear()

    async def rollback(self) -> None:
        self._done = True
        self._ops.clear()


def create_memory_container(store: Optional[MemoryStore] = None) -> RepositoryContainer:
    """Build a container over a (possibly shared) in-memory store."""
    store = store or MemoryStore()
    return RepositoryContainer(
        relationship_repo=MemoryRelationshipRepository(store),
        request_repo=MemoryRelationshipRequestRepository(store),
        invite_code_repo=MemoryInviteCodeRepository(store),
        chastity_data_repo=MemoryChastityDataRepository(store),
        session_repo=MemorySessionRepository(store),
        task_repo=MemoryTaskRepository(store),
        event_repo=MemoryEventRepository(store),
        transaction_factory=lambda: MemoryTransaction(store),
    )
