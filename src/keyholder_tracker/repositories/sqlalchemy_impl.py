"""SQLAlchemy concrete implementations of repository interfaces."""

from typing import Any, Dict, List, Optional

from sqlalchemy import and_, desc, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query
from sqlalchemy.orm import Session as DbSession

from ..core.enums import DeadlineNotice, RelationshipStatus, RequestStatus, TaskStatus
from ..core.errors import ConflictError
from ..db.models import (
    ChastityDataModel,
    EventModel,
    InviteCodeModel,
    RelationshipModel,
    RelationshipRequestModel,
    SessionModel,
    TaskModel,
)
from ..domain.models import (
    ChastityData,
    Event,
    InviteCode,
    Relationship,
    RelationshipRequest,
    Session,
    Task,
)
from ..utils.logging_config import get_logger
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

logger = get_logger("database")


class BaseSQLAlchemyRepository:
    """Base SQLAlchemy repository implementation."""

    def __init__(self, session: DbSession):
        self._session = session


class SQLAlchemyRelationshipRepository(BaseSQLAlchemyRepository, RelationshipRepository):
    """SQLAlchemy implementation of RelationshipRepository."""

    async def get_by_id(self, relationship_id: str) -> Optional[Relationship]:
        model = self._session.get(RelationshipModel, relationship_id)
        return model.to_entity() if model else None

    async def list_for_user(self, user_id: str) -> List[Relationship]:
        models = (
            self._session.query(RelationshipModel)
            .filter(
                or_(
                    RelationshipModel.submissive_id == user_id,
                    RelationshipModel.keyholder_id == user_id,
                )
            )
            .order_by(desc(RelationshipModel.created_at))
            .all()
        )
        return [m.to_entity() for m in models]

    async def list_between(self, user_a: str, user_b: str) -> List[Relationship]:
        models = (
            self._session.query(RelationshipModel)
            .filter(
                or_(
                    and_(
                        RelationshipModel.submissive_id == user_a,
                        RelationshipModel.keyholder_id == user_b,
                    ),
                    and_(
                        RelationshipModel.submissive_id == user_b,
                        RelationshipModel.keyholder_id == user_a,
                    ),
                )
            )
            .order_by(desc(RelationshipModel.created_at))
            .all()
        )
        return [m.to_entity() for m in models]

    async def list_for_submissive(
        self, submissive_id: str, status: Optional[RelationshipStatus] = None
    ) -> List[Relationship]:
        query = self._session.query(RelationshipModel).filter(
            RelationshipModel.submissive_id == submissive_id
        )
        if status is not None:
            query = query.filter(RelationshipModel.status == status.value)
        return [m.to_entity() for m in query.order_by(desc(RelationshipModel.created_at)).all()]


class SQLAlchemyRelationshipRequestRepository(
    BaseSQLAlchemyRepository, RelationshipRequestRepository
):
    """SQLAlchemy implementation of RelationshipRequestRepository."""

    def _newest_first(self, query: Query) -> List[RelationshipRequest]:
        return [
            m.to_entity()
            for m in query.order_by(desc(RelationshipRequestModel.created_at)).all()
        ]

    async def get_by_id(self, request_id: str) -> Optional[RelationshipRequest]:
        model = self._session.get(RelationshipRequestModel, request_id)
        return model.to_entity() if model else None

    async def list_pending_from_to(
        self, from_user_id: str, to_user_id: str
    ) -> List[RelationshipRequest]:
        return self._newest_first(
            self._session.query(RelationshipRequestModel).filter(
                RelationshipRequestModel.from_user_id == from_user_id,
                RelationshipRequestModel.to_user_id == to_user_id,
                RelationshipRequestModel.status == RequestStatus.PENDING.value,
            )
        )

    async def list_incoming(
        self, user_id: str, status: Optional[RequestStatus] = None
    ) -> List[RelationshipRequest]:
        query = self._session.query(RelationshipRequestModel).filter(
            RelationshipRequestModel.to_user_id == user_id
        )
        if status is not None:
            query = query.filter(RelationshipRequestModel.status == status.value)
        return self._newest_first(query)

    async def list_outgoing(self, user_id: str) -> List[RelationshipRequest]:
        return self._newest_first(
            self._session.query(RelationshipRequestModel).filter(
                RelationshipRequestModel.from_user_id == user_id
            )
        )


class SQLAlchemyInviteCodeRepository(BaseSQLAlchemyRepository, InviteCodeRepository):
    """SQLAlchemy implementation of InviteCodeRepository."""

    async def get_by_id(self, code_id: str) -> Optional[InviteCode]:
        model = self._session.get(InviteCodeModel, code_id)
        return model.to_entity() if model else None

    async def get_by_code(self, code: str) -> Optional[InviteCode]:
        model = (
            self._session.query(InviteCodeModel)
            .filter(InviteCodeModel.code == code)
            .order_by(desc(InviteCodeModel.created_at))
            .first()
        )
        return model.to_entity() if model else None

    async def list_for_submissive(self, submissive_id: str) -> List[InviteCode]:
        models = (
            self._session.query(InviteCodeModel)
            .filter(InviteCodeModel.submissive_id == submissive_id)
            .order_by(desc(InviteCodeModel.created_at))
            .all()
        )
        return [m.to_entity() for m in models]


class SQLAlchemyChastityDataRepository(BaseSQLAlchemyRepository, ChastityDataRepository):
    """SQLAlchemy implementation of ChastityDataRepository."""

    async def get(self, relationship_id: str) -> Optional[ChastityData]:
        model = self._session.get(ChastityDataModel, relationship_id)
        return model.to_entity() if model else None


class SQLAlchemySessionRepository(BaseSQLAlchemyRepository, SessionRepository):
    """SQLAlchemy implementation of SessionRepository."""

    async def get_by_id(self, relationship_id: str, session_id: str) -> Optional[Session]:
        model = (
            self._session.query(SessionModel)
            .filter(SessionModel.id == session_id, SessionModel.relationship_id == relationship_id)
            .first()
        )
        return model.to_entity() if model else None

    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Session]:
        models = (
            self._session.query(SessionModel)
            .filter(SessionModel.relationship_id == relationship_id)
            .order_by(desc(SessionModel.start_time))
            .limit(limit)
            .all()
        )
        return [m.to_entity() for m in models]


class SQLAlchemyTaskRepository(BaseSQLAlchemyRepository, TaskRepository):
    """SQLAlchemy implementation of TaskRepository."""

    async def get_by_id(self, relationship_id: str, task_id: str) -> Optional[Task]:
        model = (
            self._session.query(TaskModel)
            .filter(TaskModel.id == task_id, TaskModel.relationship_id == relationship_id)
            .first()
        )
        return model.to_entity() if model else None

    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Task]:
        models = (
            self._session.query(TaskModel)
            .filter(TaskModel.relationship_id == relationship_id)
            .order_by(desc(TaskModel.created_at))
            .limit(limit)
            .all()
        )
        return [m.to_entity() for m in models]

    async def list_open(self, relationship_id: str) -> List[Task]:
        models = (
            self._session.query(TaskModel)
            .filter(
                TaskModel.relationship_id == relationship_id,
                TaskModel.status.in_([TaskStatus.PENDING.value, TaskStatus.SUBMITTED.value]),
            )
            .order_by(TaskModel.created_at)
            .all()
        )
        return [m.to_entity() for m in models]


class SQLAlchemyEventRepository(BaseSQLAlchemyRepository, EventRepository):
    """SQLAlchemy implementation of EventRepository."""

    async def get_by_id(self, relationship_id: str, event_id: str) -> Optional[Event]:
        model = (
            self._session.query(EventModel)
            .filter(EventModel.id == event_id, EventModel.relationship_id == relationship_id)
            .first()
        )
        return model.to_entity() if model else None

    async def list_for_relationship(self, relationship_id: str, limit: int) -> List[Event]:
        models = (
            self._session.query(EventModel)
            .filter(EventModel.relationship_id == relationship_id)
            .order_by(desc(EventModel.timestamp))
            .limit(limit)
            .all()
        )
        return [m.to_entity() for m in models]


def _column_values(model, exclude: tuple = ()) -> Dict[str, Any]:
    """Non-key column values of a transient model, keyed by attribute name."""
    return {
        column.key: getattr(model, column.key)
        for column in model.__table__.columns
        if not column.primary_key and column.key not in exclude
    }


class SQLAlchemyTransaction(Transaction):
    """Unit of work over a single database session.

    Inserts are added to the session and flushed on commit. Conditional
    updates are issued immediately as ``UPDATE ... WHERE <expectation>``;
    zero matched rows means another writer got there first. Unique
    constraint violations are reported as ConflictError too.
    """

    def __init__(self, session: DbSession):
        self._session = session
        self._done = False

    def _guarded_update(self, query: Query, values: Dict[str, Any], what: str) -> None:
        try:
            self._session.flush()
            matched = query.update(values, synchronize_session=False)
        except IntegrityError as e:
            logger.warning(f"Constraint violation updating {what}: {e.orig}")
            raise ConflictError() from e
        if matched != 1:
            logger.info(f"Conditional update on {what} matched {matched} rows")
            raise ConflictError()

    async def add_relationship(self, relationship: Relationship) -> None:
        self._session.add(RelationshipModel.from_entity(relationship))

    async def update_relationship(
        self,
        relationship: Relationship,
        expected_status: Optional[RelationshipStatus] = None,
    ) -> None:
        query = self._session.query(RelationshipModel).filter(
            RelationshipModel.id == relationship.id
        )
        if expected_status is not None:
            query = query.filter(RelationshipModel.status == expected_status.value)
        values = _column_values(RelationshipModel.from_entity(relationship))
        self._guarded_update(query, values, f"relationship {relationship.id}")

    async def add_request(self, request: RelationshipRequest) -> None:
        self._session.add(RelationshipRequestModel.from_entity(request))

    async def update_request(
        self, request: RelationshipRequest, expected_status: RequestStatus
    ) -> None:
        query = self._session.query(RelationshipRequestModel).filter(
            RelationshipRequestModel.id == request.id,
            RelationshipRequestModel.status == expected_status.value,
        )
        values = _column_values(RelationshipRequestModel.from_entity(request))
        self._guarded_update(query, values, f"request {request.id}")

    async def add_invite_code(self, invite: InviteCode) -> None:
        self._session.add(InviteCodeModel.from_entity(invite))

    async def update_invite_code(self, invite: InviteCode) -> None:
        query = self._session.query(InviteCodeModel).filter(
            InviteCodeModel.id == invite.id,
            InviteCodeModel.is_used.is_(False),
            InviteCodeModel.is_revoked.is_(False),
        )
        values = _column_values(InviteCodeModel.from_entity(invite))
        self._guarded_update(query, values, f"invite code {invite.id}")

    async def add_chastity_data(self, data: ChastityData) -> None:
        self._session.add(ChastityDataModel.from_entity(data))

    async def update_chastity_data(self, data: ChastityData, guard: SessionGuard) -> ChastityData:
        written = data.model_copy(update={"revision": guard.revision + 1}, deep=True)
        paused_at = ChastityDataModel.current_paused_at
        query = self._session.query(ChastityDataModel).filter(
            ChastityDataModel.relationship_id == data.relationship_id,
            ChastityDataModel.revision == guard.revision,
            ChastityDataModel.current_is_active == guard.is_active,
            paused_at.isnot(None) if guard.is_paused else paused_at.is_(None),
        )
        self._guarded_update(
            query,
            ChastityDataModel.column_values(written),
            f"chastity data {data.relationship_id}",
        )
        return written

    async def add_session(self, session: Session) -> None:
        self._session.add(SessionModel.from_entity(session))

    async def update_session(self, session: Session) -> None:
        query = self._session.query(SessionModel).filter(SessionModel.id == session.id)
        values = _column_values(SessionModel.from_entity(session))
        self._guarded_update(query, values, f"session {session.id}")

    async def add_task(self, task: Task) -> None:
        self._session.add(TaskModel.from_entity(task))

    async def update_task(
        self,
        task: Task,
        expected_status: TaskStatus,
        expected_notice: Optional[DeadlineNotice] = None,
    ) -> None:
        query = self._session.query(TaskModel).filter(
            TaskModel.id == task.id, TaskModel.status == expected_status.value
        )
        if expected_notice is not None:
            query = query.filter(TaskModel.deadline_notice == expected_notice.value)
        values = _column_values(TaskModel.from_entity(task))
        self._guarded_update(query, values, f"task {task.id}")

    async def add_event(self, event: Event) -> None:
        self._session.add(EventModel.from_entity(event))

    async def commit(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            self._session.commit()
        except IntegrityError as e:
            self._session.rollback()
            logger.warning(f"Constraint violation on commit: {e.orig}")
            raise ConflictError() from e

    async def rollback(self) -> None:
        self._done = True
        self._session.rollback()


def create_sqlalchemy_container(session: DbSession) -> RepositoryContainer:
    """Build a container whose repositories share one database session."""
    return RepositoryContainer(
        relationship_repo=SQLAlchemyRelationshipRepository(session),
        request_repo=SQLAlchemyRelationshipRequestRepository(session),
        invite_code_repo=SQLAlchemyInviteCodeRepository(session),
        chastity_data_repo=SQLAlchemyChastityDataRepository(session),
        session_repo=SQLAlchemySessionRepository(session),
        task_repo=SQLAlchemyTaskRepository(session),
        event_repo=SQLAlchemyEventRepository(session),
        transaction_factory=lambda: SQLAlchemyTransaction(session),
    )
