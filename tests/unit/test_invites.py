"""Tests for invite code issuing, redemption and revocation."""

import pytest

from keyholder_tracker.core.enums import RelationshipStatus, Role
from keyholder_tracker.core.errors import (
    AlreadyLinkedError,
    InvalidTransitionError,
    LimitExceededError,
    NotFoundError,
    PermissionDeniedError,
    SelfLinkError,
    ValidationError,
)
from keyholder_tracker.domain.rules import validate_invite_code_format
from keyholder_tracker.services import invites as invites_module

from tests.helpers.factories import KEYHOLDER, OUTSIDER, SUBMISSIVE


@pytest.mark.unit
class TestCreateInviteCode:
    """Test issuing invite codes."""

    async def test_code_is_well_formed_and_expires_after_a_day(self, services, clock):
        """Test that a new code has the expected format and default expiry."""
        invite = await services.invites.create_invite_code(SUBMISSIVE)

        assert validate_invite_code_format(invite.code)
        assert invite.submissive_id == SUBMISSIVE
        assert (invite.expires_at - clock.now()).total_seconds() == 24 * 3600
        assert invite.is_active(clock.now())

    async def test_custom_expiration(self, services, clock):
        invite = await services.invites.create_invite_code(SUBMISSIVE, expiration_hours=2)
        assert (invite.expires_at - clock.now()).total_seconds() == 2 * 3600

    async def test_non_positive_expiration_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.invites.create_invite_code(SUBMISSIVE, expiration_hours=0)

    async def test_limit_of_three_active_codes(self, services):
        """Test that a fourth active code is refused."""
        for _ in range(3):
            await services.invites.create_invite_code(SUBMISSIVE)

        with pytest.raises(LimitExceededError):
            await services.invites.create_invite_code(SUBMISSIVE)

    async def test_expired_codes_do_not_count_towards_limit(self, services, clock):
        for _ in range(3):
            await services.invites.create_invite_code(SUBMISSIVE, expiration_hours=1)

        clock.advance(hours=2)

        assert await services.invites.get_active_invite_codes(SUBMISSIVE) == []
        await services.invites.create_invite_code(SUBMISSIVE)

    async def test_collision_regenerates_code(self, services, monkeypatch):
        """Test that a code clashing with an active one is regenerated."""
        first = await services.invites.create_invite_code(SUBMISSIVE)
        candidates = iter([first.code, "ZZZ999"])
        monkeypatch.setattr(invites_module, "generate_invite_code", lambda length: next(candidates))

        second = await services.invites.create_invite_code("sub-other")

        assert second.code == "ZZZ999"


@pytest.mark.unit
class TestAcceptInviteCode:
    """Test redeeming invite codes."""

    async def test_accept_creates_active_relationship_and_chastity_data(self, services, clock):
        invite = await services.invites.create_invite_code(SUBMISSIVE)

        relationship = await services.invites.accept_invite_code(invite.code, KEYHOLDER)

        assert relationship.status == RelationshipStatus.ACTIVE
        assert relationship.submissive_id == SUBMISSIVE
        assert relationship.keyholder_id == KEYHOLDER

        data = await services.sessions.get_chastity_data(relationship.id)
        assert data.current_session.is_active is False
        assert data.submissive_id == SUBMISSIVE

        events = await services.events.get_events(relationship.id)
        assert events[0].type == "relationship_established"
        assert events[0].logged_by == Role.KEYHOLDER

    async def test_code_is_single_use(self, services):
        invite = await services.invites.create_invite_code(SUBMISSIVE)
        await services.invites.accept_invite_code(invite.code, KEYHOLDER)

        with pytest.raises(NotFoundError):
            await services.invites.accept_invite_code(invite.code, OUTSIDER)

        assert await services.invites.get_active_invite_codes(SUBMISSIVE) == []

    async def test_malformed_code(self, services):
        with pytest.raises(ValidationError):
            await services.invites.accept_invite_code("abc", KEYHOLDER)

    async def test_unknown_code(self, services):
        with pytest.raises(NotFoundError):
            await services.invites.accept_invite_code("QQQQQQ", KEYHOLDER)

    async def test_expired_code(self, services, clock):
        invite = await services.invites.create_invite_code(SUBMISSIVE, expiration_hours=1)
        clock.advance(hours=1)

        with pytest.raises(NotFoundError):
            await services.invites.accept_invite_code(invite.code, KEYHOLDER)

    async def test_own_code(self, services):
        invite = await services.invites.create_invite_code(SUBMISSIVE)
        with pytest.raises(SelfLinkError):
            await services.invites.accept_invite_code(invite.code, SUBMISSIVE)

    async def test_submissive_with_active_keyholder(self, services, relationship):
        """Test that a submissive can only have one active keyholder."""
        invite = await services.invites.create_invite_code(SUBMISSIVE)

        with pytest.raises(AlreadyLinkedError) as exc_info:
            await services.invites.accept_invite_code(invite.code, OUTSIDER)

        assert exc_info.value.existing_relationship_id == relationship.id

    async def test_paused_pair_must_resume_instead(self, services, relationship):
        await services.relationships.pause_relationship(relationship.id, SUBMISSIVE)
        invite = await services.invites.create_invite_code(SUBMISSIVE)

        with pytest.raises(AlreadyLinkedError, match="Resume it instead"):
            await services.invites.accept_invite_code(invite.code, KEYHOLDER)

    async def test_relink_after_end(self, services, relationship):
        await services.relationships.end_relationship(relationship.id, KEYHOLDER)
        invite = await services.invites.create_invite_code(SUBMISSIVE)

        again = await services.invites.accept_invite_code(invite.code, KEYHOLDER)

        assert again.id != relationship.id
        assert again.status == RelationshipStatus.ACTIVE


@pytest.mark.unit
class TestRevokeInviteCode:
    """Test revoking invite codes."""

    async def test_revoke(self, services):
        invite = await services.invites.create_invite_code(SUBMISSIVE)

        revoked = await services.invites.revoke_invite_code(invite.id, SUBMISSIVE)

        assert revoked.is_revoked
        assert await services.invites.get_active_invite_codes(SUBMISSIVE) == []
        with pytest.raises(NotFoundError):
            await services.invites.accept_invite_code(invite.code, KEYHOLDER)

    async def test_revoke_twice_is_harmless(self, services):
        invite = await services.invites.create_invite_code(SUBMISSIVE)
        await services.invites.revoke_invite_code(invite.id, SUBMISSIVE)

        again = await services.invites.revoke_invite_code(invite.id, SUBMISSIVE)

        assert again.is_revoked

    async def test_only_issuer_can_revoke(self, services):
        invite = await services.invites.create_invite_code(SUBMISSIVE)
        with pytest.raises(PermissionDeniedError):
            await services.invites.revoke_invite_code(invite.id, KEYHOLDER)

    async def test_used_code_cannot_be_revoked(self, services):
        invite = await services.invites.create_invite_code(SUBMISSIVE)
        await services.invites.accept_invite_code(invite.code, KEYHOLDER)

        with pytest.raises(InvalidTransitionError):
            await services.invites.revoke_invite_code(invite.id, SUBMISSIVE)

    async def test_unknown_code_id(self, services):
        with pytest.raises(NotFoundError):
            await services.invites.revoke_invite_code("missing", SUBMISSIVE)
