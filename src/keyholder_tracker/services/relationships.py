"""Relationship storage, status transitions, requests and statistics."""

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Literal, Mapping, Optional, Sequence, TypeVar, Union

from pydantic import AwareDatetime, BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import DomainConfig
from ..core.clock import Clock
from ..core.enums import RelationshipStatus, RequestStatus, Role, SystemEventType
from ..core.errors import (
    AlreadyLinkedError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SelfLinkError,
    ValidationError,
)
from ..domain.models import ChastityData, Relationship, RelationshipRequest
from ..domain.rules import parse_enum, role_of, validate_status_transition
from ..events.subscriptions import OnChange, SubscriptionHub, Unsubscribe
from ..repositories.interfaces import RepositoryContainer, Transaction
from ..utils.logging_config import get_logger
from .base import BaseService, audit_event, new_id

logger = get_logger("services")

SECONDS_PER_DAY = 60 * 60 * 24

ModelT = TypeVar("ModelT", Relationship, RelationshipRequest)


def new_relationship(
    submissive_id: str, keyholder_id: str, now: datetime, notes: Optional[str] = None
) -> Relationship:
    """An ACTIVE relationship with default permissions."""
    return Relationship(
        id=new_id(),
        submissive_id=submissive_id,
        keyholder_id=keyholder_id,
        status=RelationshipStatus.ACTIVE,
        created_at=now,
        established_at=now,
        updated_at=now,
        notes=notes,
    )


def initial_chastity_data(relationship: Relationship, now: datetime) -> ChastityData:
    """ChastityData with no running session and default goals and settings."""
    return ChastityData(
        relationship_id=relationship.id,
        submissive_id=relationship.submissive_id,
        keyholder_id=relationship.keyholder_id,
        created_at=now,
        updated_at=now,
    )


async def stage_new_relationship(
    tx: Transaction, relationship: Relationship, actor: Role, now: datetime, **details
) -> None:
    """Stage the relationship, its ChastityData and the establishing audit event."""
    await tx.add_relationship(relationship)
    await tx.add_chastity_data(initial_chastity_data(relationship, now))
    await tx.add_event(
        audit_event(
            relationship.id,
            SystemEventType.RELATIONSHIP_ESTABLISHED.value,
            actor,
            now,
            details={
                "submissive_id": relationship.submissive_id,
                "keyholder_id": relationship.keyholder_id,
                **details,
            },
        )
    )


# ==================== STATISTICS ====================


class RelationshipStats(BaseModel):
    total_relationships: int = 0
    active_relationships: int = 0
    paused_relationships: int = 0
    ended_relationships: int = 0
    average_relationship_duration: Optional[float] = None  # days
    longest_relationship: Optional[float] = None
    shortest_relationship: Optional[float] = None


class RequestStats(BaseModel):
    total_requests: int = 0
    pending_requests: int = 0
    accepted_requests: int = 0
    rejected_requests: int = 0
    expired_requests: int = 0
    acceptance_rate: float = 0.0  # accepted / (accepted + rejected), percent


class DirectionalRequestStats(BaseModel):
    sent: RequestStats
    received: RequestStats


class UserRelationshipStats(BaseModel):
    as_submissive: RelationshipStats
    as_keyholder: RelationshipStats
    request_stats: DirectionalRequestStats


def relationship_stats(relationships: Sequence[Relationship], now: datetime) -> RelationshipStats:
    """Counts by status plus durations (in days) of ended and active relationships."""
    stats = RelationshipStats(total_relationships=len(relationships))
    durations: List[float] = []
    for relationship in relationships:
        if relationship.status == RelationshipStatus.ACTIVE:
            stats.active_relationships += 1
            durations.append((now - relationship.established_at).total_seconds())
        elif relationship.status == RelationshipStatus.PAUSED:
            stats.paused_relationships += 1
        elif relationship.status == RelationshipStatus.ENDED:
            stats.ended_relationships += 1
            if relationship.ended_at is not None:
                durations.append(
                    (relationship.ended_at - relationship.established_at).total_seconds()
                )

    if durations:
        days = [max(0.0, d) / SECONDS_PER_DAY for d in durations]
        stats.average_relationship_duration = sum(days) / len(days)
        stats.longest_relationship = max(days)
        stats.shortest_relationship = min(days)
    return stats


def request_stats(requests: Sequence[RelationshipRequest], now: datetime) -> RequestStats:
    stats = RequestStats(total_requests=len(requests))
    for request in requests:
        status = request.effective_status(now)
        if status == RequestStatus.PENDING:
            stats.pending_requests += 1
        elif status == RequestStatus.ACCEPTED:
            stats.accepted_requests += 1
        elif status == RequestStatus.REJECTED:
            stats.rejected_requests += 1
        elif status == RequestStatus.EXPIRED:
            stats.expired_requests += 1

    decided = stats.accepted_requests + stats.rejected_requests
    if decided:
        stats.acceptance_rate = stats.accepted_requests / decided * 100
    return stats


# ==================== SEARCH ====================

SearchRole = Literal["submissive", "keyholder", "both"]
RequestDirection = Literal["sent", "received", "both"]
REQUEST_DIRECTIONS = ("sent", "received", "both")


class RelationshipSearchFilters(BaseModel):
    """Filters over the caller's relationships; unset filters match everything."""

    status: Optional[List[RelationshipStatus]] = None
    role: SearchRole = "both"
    start_date: Optional[AwareDatetime] = None  # created_at lower bound, inclusive
    end_date: Optional[AwareDatetime] = None  # created_at upper bound, inclusive


class RelationshipSearchResult(BaseModel):
    relationships: List[Relationship]
    has_more: bool = False
    next_cursor: Optional[str] = None


class RecentActivity(BaseModel):
    recent_relationships: List[Relationship]
    recent_requests: List[RelationshipRequest]


def relationship_matches(
    relationship: Relationship, user_id: str, filters: RelationshipSearchFilters
) -> bool:
    if filters.status and relationship.status not in filters.status:
        return False
    if filters.role == "submissive" and relationship.submissive_id != user_id:
        return False
    if filters.role == "keyholder" and relationship.keyholder_id != user_id:
        return False
    if filters.start_date is not None and relationship.created_at < filters.start_date:
        return False
    if filters.end_date is not None and relationship.created_at > filters.end_date:
        return False
    return True


def unique_newest_first(items: Iterable[ModelT], key: str) -> List[ModelT]:
    """Drop repeated ids, then order by the ``key`` timestamp, newest first."""
    seen = set()
    unique = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            unique.append(item)
    return sorted(unique, key=lambda item: getattr(item, key), reverse=True)


# ==================== SERVICE ====================


class RelationshipStore(BaseService):
    """Relationship CRUD, status lifecycle and relationship requests."""

    def __init__(
        self,
        container: RepositoryContainer,
        clock: Clock,
        hub: SubscriptionHub,
        config: Optional[DomainConfig] = None,
    ):
        super().__init__(container, clock, config)
        self.hub = hub

    async def get_relationship(self, relationship_id: str) -> Relationship:
        return await self._get_relationship(relationship_id)

    async def get_user_relationships(self, user_id: str) -> List[Relationship]:
        """Relationships in either role, newest first."""
        seen = set()
        relationships = []
        for relationship in await self.container.relationship.list_for_user(user_id):
            if relationship.id not in seen:
                seen.add(relationship.id)
                relationships.append(relationship)
        return relationships

    async def get_relationship_between_users(
        self, user_a: str, user_b: str
    ) -> Optional[Relationship]:
        relationships = await self.container.relationship.list_between(user_a, user_b)
        return relationships[0] if relationships else None

    async def validate_relationship_creation(self, user_a: str, user_b: str) -> None:
        """Raise if the two users may not form a new relationship."""
        if user_a == user_b:
            raise SelfLinkError()

        for existing in await self.container.relationship.list_between(user_a, user_b):
            if existing.status == RelationshipStatus.ACTIVE:
                raise AlreadyLinkedError(
                    "An active relationship already exists between these users",
                    existing_relationship_id=existing.id,
                )
            if existing.status == RelationshipStatus.PAUSED:
                raise AlreadyLinkedError(
                    "A paused relationship exists between these users. Resume it instead.",
                    existing_relationship_id=existing.id,
                )

    # ---------- status transitions ----------

    async def _transition(
        self,
        relationship_id: str,
        user_id: str,
        new_status: RelationshipStatus,
        event_type: SystemEventType,
    ) -> Relationship:
        relationship = await self._get_relationship(relationship_id)
        role = role_of(relationship, user_id)
        if role == Role.NONE:
            raise PermissionDeniedError("Only relationship participants can change its status")

        validate_status_transition(relationship.status, new_status)

        if new_status == RelationshipStatus.ACTIVE:
            for other in await self.container.relationship.list_between(*relationship.participant_ids):
                if other.id != relationship.id and other.status == RelationshipStatus.ACTIVE:
                    raise AlreadyLinkedError(
                        "An active relationship already exists between these users",
                        existing_relationship_id=other.id,
                    )

        now = self.clock.now()
        update = {"status": new_status, "updated_at": now}
        if new_status == RelationshipStatus.ENDED:
            update["ended_at"] = now
        updated = relationship.model_copy(update=update)

        async with self.container.transaction() as tx:
            await tx.update_relationship(updated, expected_status=relationship.status)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    event_type.value,
                    role,
                    now,
                    details={"from": relationship.status.value, "to": new_status.value},
                )
            )

        logger.info(
            f"Relationship {relationship_id}: {relationship.status.value} -> "
            f"{new_status.value} by {role.value}"
        )
        await self.publish_user_relationships(relationship.participant_ids)
        return updated

    async def end_relationship(self, relationship_id: str, user_id: str) -> Relationship:
        return await self._transition(
            relationship_id, user_id, RelationshipStatus.ENDED, SystemEventType.RELATIONSHIP_ENDED
        )

    async def pause_relationship(self, relationship_id: str, user_id: str) -> Relationship:
        return await self._transition(
            relationship_id, user_id, RelationshipStatus.PAUSED, SystemEventType.RELATIONSHIP_PAUSED
        )

    async def resume_relationship(self, relationship_id: str, user_id: str) -> Relationship:
        return await self._transition(
            relationship_id, user_id, RelationshipStatus.ACTIVE, SystemEventType.RELATIONSHIP_RESUMED
        )

    # ---------- requests ----------

    async def send_relationship_request(
        self,
        from_user_id: str,
        to_user_id: str,
        from_role: Role,
        message: Optional[str] = None,
    ) -> RelationshipRequest:
        from_role = parse_enum(Role, from_role, "role")
        if from_role == Role.NONE:
            raise ValidationError("from_role must be submissive or keyholder")
        if from_user_id == to_user_id:
            raise SelfLinkError("Users cannot send relationship requests to themselves")

        now = self.clock.now()
        pending = await self.container.request.list_pending_from_to(from_user_id, to_user_id)
        if any(not r.is_expired(now) for r in pending):
            raise ValidationError("A pending request to this user already exists")

        for existing in await self.container.relationship.list_between(from_user_id, to_user_id):
            if existing.status == RelationshipStatus.ACTIVE:
                raise AlreadyLinkedError(
                    "An active relationship already exists between these users",
                    existing_relationship_id=existing.id,
                )

        request = RelationshipRequest(
            id=new_id(),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            from_role=from_role,
            to_role=Role.KEYHOLDER if from_role == Role.SUBMISSIVE else Role.SUBMISSIVE,
            message=message,
            created_at=now,
            expires_at=now + timedelta(days=self.config.request_expiration_days),
        )
        async with self.container.transaction() as tx:
            await tx.add_request(request)

        logger.info(f"Relationship request {request.id} sent from {from_user_id} to {to_user_id}")
        return request

    async def _get_actionable_request(
        self, request_id: str, user_id: str, now: datetime
    ) -> RelationshipRequest:
        request = await self.container.request.get_by_id(request_id)
        if request is None:
            raise NotFoundError("RelationshipRequest", request_id)
        if request.to_user_id != user_id:
            raise PermissionDeniedError("Only the recipient can respond to this request")
        status = request.effective_status(now)
        if status != RequestStatus.PENDING:
            raise InvalidTransitionError(f"Request is {status.value}, not pending")
        return request

    async def accept_relationship_request(self, request_id: str, user_id: str) -> Relationship:
        """Accept a pending request, creating the relationship atomically."""
        now = self.clock.now()
        request = await self._get_actionable_request(request_id, user_id, now)

        if request.from_role == Role.SUBMISSIVE:
            submissive_id, keyholder_id = request.from_user_id, request.to_user_id
        else:
            submissive_id, keyholder_id = request.to_user_id, request.from_user_id
        await self.validate_relationship_creation(submissive_id, keyholder_id)

        relationship = new_relationship(submissive_id, keyholder_id, now, notes=request.message)
        accepted = request.model_copy(
            update={"status": RequestStatus.ACCEPTED, "responded_at": now}
        )

        async with self.container.transaction() as tx:
            await tx.update_request(accepted, expected_status=RequestStatus.PENDING)
            await stage_new_relationship(
                tx, relationship, request.to_role, now, request_id=request.id
            )

        logger.info(f"Request {request_id} accepted, relationship {relationship.id} established")
        await self.publish_user_relationships(relationship.participant_ids)
        return relationship

    async def reject_relationship_request(
        self, request_id: str, user_id: str
    ) -> RelationshipRequest:
        now = self.clock.now()
        request = await self._get_actionable_request(request_id, user_id, now)
        rejected = request.model_copy(
            update={"status": RequestStatus.REJECTED, "responded_at": now}
        )
        async with self.container.transaction() as tx:
            await tx.update_request(rejected, expected_status=RequestStatus.PENDING)

        logger.info(f"Request {request_id} rejected")
        return rejected

    async def get_pending_requests(self, user_id: str) -> List[RelationshipRequest]:
        """Incoming requests that are still pending and unexpired, newest first."""
        now = self.clock.now()
        incoming = await self.container.request.list_incoming(user_id, RequestStatus.PENDING)
        return [r for r in incoming if not r.is_expired(now)]

    # ---------- statistics ----------

    async def get_user_relationship_stats(self, user_id: str) -> UserRelationshipStats:
        now = self.clock.now()
        relationships = await self.container.relationship.list_for_user(user_id)
        sent = await self.container.request.list_outgoing(user_id)
        received = await self.container.request.list_incoming(user_id)
        return UserRelationshipStats(
            as_submissive=relationship_stats(
                [r for r in relationships if r.submissive_id == user_id], now
            ),
            as_keyholder=relationship_stats(
                [r for r in relationships if r.keyholder_id == user_id], now
            ),
            request_stats=DirectionalRequestStats(
                sent=request_stats(sent, now),
                received=request_stats(received, now),
            ),
        )

    # ---------- search ----------

    async def search_relationships(
        self,
        user_id: str,
        filters: Union[RelationshipSearchFilters, Mapping[str, Any], None] = None,
        page_size: int = 20,
        cursor: Optional[str] = None,
    ) -> RelationshipSearchResult:
        """One page of the user's relationships matching ``filters``, newest first.

        ``cursor`` is the ``next_cursor`` of the previous page: the id of its
        last relationship. An id not in the filtered result is rejected.
        """
        if filters is None:
            filters = RelationshipSearchFilters()
        elif not isinstance(filters, RelationshipSearchFilters):
            try:
                filters = RelationshipSearchFilters.model_validate(filters)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid search filters: {exc.errors()[0]['msg']}") from exc
        if page_size < 1:
            raise ValidationError("page_size must be at least 1")

        relationships = await self.container.relationship.list_for_user(user_id)
        matches = unique_newest_first(
            (r for r in relationships if relationship_matches(r, user_id, filters)), "created_at"
        )

        start = 0
        if cursor is not None:
            ids = [r.id for r in matches]
            if cursor not in ids:
                raise ValidationError(f"Unknown cursor {cursor!r}")
            start = ids.index(cursor) + 1

        page = matches[start : start + page_size]
        has_more = len(matches) > start + page_size
        return RelationshipSearchResult(
            relationships=page,
            has_more=has_more,
            next_cursor=page[-1].id if has_more else None,
        )

    async def get_relationship_history(
        self, user_id: str, page_size: int = 20, cursor: Optional[str] = None
    ) -> RelationshipSearchResult:
        """Ended relationships in either role, newest first."""
        filters = RelationshipSearchFilters(status=[RelationshipStatus.ENDED], role="both")
        return await self.search_relationships(user_id, filters, page_size, cursor)

    async def search_relationship_requests(
        self,
        user_id: str,
        direction: RequestDirection = "both",
        statuses: Optional[Iterable[Any]] = None,
        limit: int = 20,
    ) -> List[RelationshipRequest]:
        """Sent and/or received requests, newest first.

        Status filtering uses the effective status, so an unanswered request
        past its expiry counts as EXPIRED.
        """
        if direction not in REQUEST_DIRECTIONS:
            raise ValidationError(
                f"Invalid direction {direction!r}; expected one of: {', '.join(REQUEST_DIRECTIONS)}"
            )
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        wanted = (
            {parse_enum(RequestStatus, s, "request status") for s in statuses} if statuses else None
        )

        requests: List[RelationshipRequest] = []
        if direction in ("sent", "both"):
            requests.extend(await self.container.request.list_outgoing(user_id))
        if direction in ("received", "both"):
            requests.extend(await self.container.request.list_incoming(user_id))

        now = self.clock.now()
        matches = [
            r for r in unique_newest_first(requests, "created_at")
            if wanted is None or r.effective_status(now) in wanted
        ]
        return matches[:limit]

    async def get_recent_activity(self, user_id: str, limit: int = 10) -> RecentActivity:
        """Most recently updated relationships and most recently sent or received requests."""
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        relationships = await self.container.relationship.list_for_user(user_id)
        requests = list(await self.container.request.list_outgoing(user_id))
        requests.extend(await self.container.request.list_incoming(user_id))
        return RecentActivity(
            recent_relationships=unique_newest_first(relationships, "updated_at")[:limit],
            recent_requests=unique_newest_first(requests, "created_at")[:limit],
        )

    # ---------- subscriptions ----------

    async def subscribe_to_user_relationships(
        self, user_id: str, on_change: OnChange
    ) -> Unsubscribe:
        """Push the user's relationship list now and after every change."""
        current = await self.get_user_relationships(user_id)
        return await self.hub.subscribe(
            SubscriptionHub.RELATIONSHIPS, user_id, on_change, initial=current
        )

    async def publish_user_relationships(self, user_ids: Iterable[str]) -> None:
        for user_id in user_ids:
            if self.hub.has_subscribers(SubscriptionHub.RELATIONSHIPS, user_id):
                await self.hub.publish(
                    SubscriptionHub.RELATIONSHIPS,
                    user_id,
                    await self.get_user_relationships(user_id),
                )
