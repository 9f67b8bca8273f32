"""Tests for relationship lifecycle, requests and statistics."""

import pytest

from keyholder_tracker.core.enums import RelationshipStatus, RequestStatus, Role
from keyholder_tracker.core.errors import (
    AlreadyLinkedError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    SelfLinkError,
    ValidationError,
)
from keyholder_tracker.events.subscriptions import SubscriptionHub

from tests.helpers.factories import KEYHOLDER, OUTSIDER, SUBMISSIVE, link


@pytest.mark.unit
class TestRelationshipQueries:
    async def test_get_relationship(self, services, relationship):
        loaded = await services.relationships.get_relationship(relationship.id)
        assert loaded == relationship

    async def test_get_unknown_relationship(self, services):
        with pytest.raises(NotFoundError):
            await services.relationships.get_relationship("nope")

    async def test_user_relationships_in_either_role(self, services, relationship, clock):
        clock.advance(minutes=1)
        second = await link(services, submissive_id=KEYHOLDER, keyholder_id=OUTSIDER)

        mine = await services.relationships.get_user_relationships(KEYHOLDER)

        assert [r.id for r in mine] == [second.id, relationship.id]

    async def test_relationship_between_users(self, services, relationship):
        found = await services.relationships.get_relationship_between_users(KEYHOLDER, SUBMISSIVE)
        assert found.id == relationship.id
        assert await services.relationships.get_relationship_between_users(SUBMISSIVE, OUTSIDER) is None


@pytest.mark.unit
class TestRelationshipLifecycle:
    """Test pause, resume and end transitions."""

    async def test_pause_and_resume(self, services, relationship, clock):
        clock.advance(minutes=1)
        paused = await services.relationships.pause_relationship(relationship.id, SUBMISSIVE)
        assert paused.status == RelationshipStatus.PAUSED

        clock.advance(minutes=1)
        resumed = await services.relationships.resume_relationship(relationship.id, KEYHOLDER)
        assert resumed.status == RelationshipStatus.ACTIVE

        events = await services.events.get_events(relationship.id)
        assert [e.type for e in events[:2]] == ["relationship_resumed", "relationship_paused"]

    async def test_end_sets_ended_at(self, services, relationship, clock):
        clock.advance(days=3)
        ended = await services.relationships.end_relationship(relationship.id, KEYHOLDER)

        assert ended.status == RelationshipStatus.ENDED
        assert ended.ended_at == clock.now()

    async def test_ended_is_terminal(self, services, relationship):
        await services.relationships.end_relationship(relationship.id, SUBMISSIVE)

        with pytest.raises(InvalidTransitionError):
            await services.relationships.resume_relationship(relationship.id, SUBMISSIVE)
        with pytest.raises(InvalidTransitionError):
            await services.relationships.end_relationship(relationship.id, SUBMISSIVE)

    async def test_cannot_resume_active(self, services, relationship):
        with pytest.raises(InvalidTransitionError):
            await services.relationships.resume_relationship(relationship.id, SUBMISSIVE)

    async def test_outsider_cannot_change_status(self, services, relationship):
        with pytest.raises(PermissionDeniedError):
            await services.relationships.end_relationship(relationship.id, OUTSIDER)

    async def test_validate_creation(self, services, relationship):
        with pytest.raises(SelfLinkError):
            await services.relationships.validate_relationship_creation(SUBMISSIVE, SUBMISSIVE)
        with pytest.raises(AlreadyLinkedError):
            await services.relationships.validate_relationship_creation(KEYHOLDER, SUBMISSIVE)

        await services.relationships.validate_relationship_creation(SUBMISSIVE, OUTSIDER)


@pytest.mark.unit
class TestRelationshipRequests:
    """Test sending, accepting and rejecting relationship requests."""

    async def test_send_request_sets_opposite_role_and_expiry(self, services, clock):
        request = await services.relationships.send_relationship_request(
            SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE, "be my keyholder"
        )

        assert request.to_role == Role.KEYHOLDER
        assert request.status == RequestStatus.PENDING
        assert (request.expires_at - clock.now()).days == 7

    async def test_request_to_self(self, services):
        with pytest.raises(SelfLinkError):
            await services.relationships.send_relationship_request(
                SUBMISSIVE, SUBMISSIVE, Role.SUBMISSIVE
            )

    async def test_role_none_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.relationships.send_relationship_request(SUBMISSIVE, KEYHOLDER, Role.NONE)

    async def test_unknown_role_rejected(self, services):
        with pytest.raises(ValidationError, match="overlord"):
            await services.relationships.send_relationship_request(SUBMISSIVE, KEYHOLDER, "overlord")
        assert await services.relationships.get_pending_requests(KEYHOLDER) == []

    async def test_duplicate_pending_request(self, services):
        await services.relationships.send_relationship_request(SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE)

        with pytest.raises(ValidationError):
            await services.relationships.send_relationship_request(
                SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE
            )

    async def test_duplicate_allowed_once_previous_expired(self, services, clock):
        await services.relationships.send_relationship_request(SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE)
        clock.advance(days=8)

        await services.relationships.send_relationship_request(SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE)

    async def test_request_when_already_linked(self, services, relationship):
        with pytest.raises(AlreadyLinkedError):
            await services.relationships.send_relationship_request(
                KEYHOLDER, SUBMISSIVE, Role.KEYHOLDER
            )

    async def test_accept_request_from_keyholder(self, services):
        """Test that the roles come from the request, not from who accepts it."""
        request = await services.relationships.send_relationship_request(
            KEYHOLDER, SUBMISSIVE, Role.KEYHOLDER, "hello"
        )

        relationship = await services.relationships.accept_relationship_request(
            request.id, SUBMISSIVE
        )

        assert relationship.keyholder_id == KEYHOLDER
        assert relationship.submissive_id == SUBMISSIVE
        assert relationship.notes == "hello"
        assert await services.sessions.get_chastity_data(relationship.id) is not None
        assert await services.relationships.get_pending_requests(SUBMISSIVE) == []

    async def test_only_recipient_may_respond(self, services):
        request = await services.relationships.send_relationship_request(
            SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE
        )
        with pytest.raises(PermissionDeniedError):
            await services.relationships.accept_relationship_request(request.id, SUBMISSIVE)

    async def test_reject_then_respond_again(self, services):
        request = await services.relationships.send_relationship_request(
            SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE
        )
        rejected = await services.relationships.reject_relationship_request(request.id, KEYHOLDER)
        assert rejected.status == RequestStatus.REJECTED

        with pytest.raises(InvalidTransitionError):
            await services.relationships.accept_relationship_request(request.id, KEYHOLDER)

    async def test_expired_request_cannot_be_accepted(self, services, clock):
        request = await services.relationships.send_relationship_request(
            SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE
        )
        clock.advance(days=7)

        assert await services.relationships.get_pending_requests(KEYHOLDER) == []
        with pytest.raises(InvalidTransitionError, match="expired"):
            await services.relationships.accept_relationship_request(request.id, KEYHOLDER)

    async def test_unknown_request(self, services):
        with pytest.raises(NotFoundError):
            await services.relationships.reject_relationship_request("missing", KEYHOLDER)


@pytest.mark.unit
class TestRelationshipStats:
    async def test_stats_by_role_and_requests(self, services, relationship, clock):
        clock.advance(days=2)
        await services.relationships.end_relationship(relationship.id, SUBMISSIVE)
        request = await services.relationships.send_relationship_request(
            OUTSIDER, SUBMISSIVE, Role.KEYHOLDER
        )
        await services.relationships.accept_relationship_request(request.id, SUBMISSIVE)
        await services.relationships.send_relationship_request(SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE)

        stats = await services.relationships.get_user_relationship_stats(SUBMISSIVE)

        assert stats.as_submissive.total_relationships == 2
        assert stats.as_submissive.active_relationships == 1
        assert stats.as_submissive.ended_relationships == 1
        assert stats.as_submissive.longest_relationship == pytest.approx(2.0)
        assert stats.as_keyholder.total_relationships == 0
        assert stats.request_stats.received.accepted_requests == 1
        assert stats.request_stats.received.acceptance_rate == 100.0
        assert stats.request_stats.sent.pending_requests == 1


@pytest.fixture
async def three_links(services, relationship, clock):
    """SUBMISSIVE in three relationships: submissive, keyholder, submissive, oldest first."""
    clock.advance(minutes=1)
    as_keyholder = await link(services, submissive_id=OUTSIDER, keyholder_id=SUBMISSIVE)
    clock.advance(minutes=1)
    latest = await link(services, submissive_id=SUBMISSIVE, keyholder_id="dave")
    return relationship, as_keyholder, latest


@pytest.mark.unit
class TestRelationshipSearch:
    """Test filtered, paged relationship search and the views built on it."""

    async def test_role_filter(self, services, three_links):
        first, as_keyholder, latest = three_links

        keyholder = await services.relationships.search_relationships(
            SUBMISSIVE, {"role": "keyholder"}
        )
        submissive = await services.relationships.search_relationships(
            SUBMISSIVE, {"role": "submissive"}
        )

        assert [r.id for r in keyholder.relationships] == [as_keyholder.id]
        assert [r.id for r in submissive.relationships] == [latest.id, first.id]

    async def test_pages_follow_cursor(self, services, three_links):
        first, as_keyholder, latest = three_links

        page = await services.relationships.search_relationships(SUBMISSIVE, page_size=2)
        assert [r.id for r in page.relationships] == [latest.id, as_keyholder.id]
        assert page.has_more is True
        assert page.next_cursor == as_keyholder.id

        rest = await services.relationships.search_relationships(
            SUBMISSIVE, page_size=2, cursor=page.next_cursor
        )
        assert [r.id for r in rest.relationships] == [first.id]
        assert rest.has_more is False
        assert rest.next_cursor is None

    async def test_status_and_created_range(self, services, three_links):
        first, as_keyholder, latest = three_links
        await services.relationships.end_relationship(first.id, SUBMISSIVE)

        ended = await services.relationships.search_relationships(
            SUBMISSIVE, {"status": [RelationshipStatus.ENDED]}
        )
        recent = await services.relationships.search_relationships(
            SUBMISSIVE, {"start_date": as_keyholder.created_at}
        )
        older = await services.relationships.search_relationships(
            SUBMISSIVE, {"end_date": as_keyholder.created_at}
        )

        assert [r.id for r in ended.relationships] == [first.id]
        assert [r.id for r in recent.relationships] == [latest.id, as_keyholder.id]
        assert [r.id for r in older.relationships] == [as_keyholder.id, first.id]

    async def test_outsider_sees_only_own(self, services, three_links):
        _, as_keyholder, _ = three_links

        result = await services.relationships.search_relationships(OUTSIDER)

        assert [r.id for r in result.relationships] == [as_keyholder.id]

    async def test_invalid_search_arguments(self, services, three_links, clock):
        with pytest.raises(ValidationError):
            await services.relationships.search_relationships(SUBMISSIVE, {"role": "boss"})
        with pytest.raises(ValidationError):
            await services.relationships.search_relationships(
                SUBMISSIVE, {"start_date": clock.now().replace(tzinfo=None)}
            )
        with pytest.raises(ValidationError, match="cursor"):
            await services.relationships.search_relationships(SUBMISSIVE, cursor="nope")
        with pytest.raises(ValidationError):
            await services.relationships.search_relationships(SUBMISSIVE, page_size=0)

    async def test_history_lists_ended_only(self, services, three_links):
        first, as_keyholder, latest = three_links
        await services.relationships.end_relationship(first.id, SUBMISSIVE)
        await services.relationships.end_relationship(as_keyholder.id, OUTSIDER)

        history = await services.relationships.get_relationship_history(SUBMISSIVE)

        assert [r.id for r in history.relationships] == [as_keyholder.id, first.id]
        assert all(r.status == RelationshipStatus.ENDED for r in history.relationships)


@pytest.mark.unit
class TestRequestSearch:
    async def test_direction_filter(self, services, clock):
        sent = await services.relationships.send_relationship_request(
            SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE
        )
        clock.advance(minutes=1)
        received = await services.relationships.send_relationship_request(
            OUTSIDER, SUBMISSIVE, Role.KEYHOLDER
        )
        search = services.relationships.search_relationship_requests

        assert [r.id for r in await search(SUBMISSIVE, "sent")] == [sent.id]
        assert [r.id for r in await search(SUBMISSIVE, "received")] == [received.id]
        assert [r.id for r in await search(SUBMISSIVE)] == [received.id, sent.id]
        assert [r.id for r in await search(SUBMISSIVE, limit=1)] == [received.id]

    async def test_status_filter_counts_expiry(self, services, clock):
        """Test that an unanswered request past its expiry matches EXPIRED, not PENDING."""
        request = await services.relationships.send_relationship_request(
            SUBMISSIVE, KEYHOLDER, Role.SUBMISSIVE
        )
        clock.advance(days=8)
        search = services.relationships.search_relationship_requests

        assert await search(SUBMISSIVE, statuses=[RequestStatus.PENDING]) == []
        assert [r.id for r in await search(SUBMISSIVE, statuses=["expired"])] == [request.id]

    async def test_invalid_request_search(self, services):
        with pytest.raises(ValidationError, match="direction"):
            await services.relationships.search_relationship_requests(SUBMISSIVE, "sideways")
        with pytest.raises(ValidationError, match="request status"):
            await services.relationships.search_relationship_requests(
                SUBMISSIVE, statuses=["maybe"]
            )


@pytest.mark.unit
class TestRecentActivity:
    async def test_most_recently_updated_first(self, services, three_links, clock):
        first, _, latest = three_links
        clock.advance(minutes=1)
        await services.relationships.pause_relationship(first.id, SUBMISSIVE)
        request = await services.relationships.send_relationship_request(
            "erin", SUBMISSIVE, Role.KEYHOLDER
        )

        activity = await services.relationships.get_recent_activity(SUBMISSIVE, limit=2)

        assert [r.id for r in activity.recent_relationships] == [first.id, latest.id]
        assert [r.id for r in activity.recent_requests] == [request.id]

    async def test_limit_must_be_positive(self, services):
        with pytest.raises(ValidationError):
            await services.relationships.get_recent_activity(SUBMISSIVE, limit=0)


@pytest.mark.unit
class TestRelationshipSubscriptions:
    async def test_subscriber_sees_new_relationship(self, services, hub):
        received = []
        unsubscribe = await services.relationships.subscribe_to_user_relationships(
            KEYHOLDER, received.append
        )

        relationship = await link(services)

        assert received[0].items == []
        assert [r.id for r in received[-1].items] == [relationship.id]
        assert [s.sequence for s in received] == [1, 2]

        unsubscribe()
        assert not hub.has_subscribers(SubscriptionHub.RELATIONSHIPS, KEYHOLDER)
