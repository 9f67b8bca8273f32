"""Invite code issuing and redemption."""

import secrets
from datetime import timedelta
from typing import List, Optional

from ..config import DomainConfig
from ..core.clock import Clock
from ..core.enums import RelationshipStatus, Role
from ..core.errors import (
    AlreadyLinkedError,
    ConflictError,
    InvalidTransitionError,
    LimitExceededError,
    NotFoundError,
    PermissionDeniedError,
    SelfLinkError,
    ValidationError,
)
from ..domain.models import InviteCode, Relationship
from ..domain.rules import INVITE_CODE_ALPHABET, validate_invite_code_format
from ..repositories.interfaces import RepositoryContainer
from ..utils.logging_config import get_logger
from .base import BaseService, new_id
from .relationships import RelationshipStore, new_relationship, stage_new_relationship

logger = get_logger("services")

MAX_GENERATION_ATTEMPTS = 10


def generate_invite_code(length: int = 6) -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


class InviteCodeIssuer(BaseService):
    """Issues single-use codes a keyholder redeems to pair with a submissive."""

    def __init__(
        self,
        container: RepositoryContainer,
        clock: Clock,
        relationships: RelationshipStore,
        config: Optional[DomainConfig] = None,
    ):
        super().__init__(container, clock, config)
        self.relationships = relationships

    async def get_active_invite_codes(self, submissive_id: str) -> List[InviteCode]:
        now = self.clock.now()
        codes = await self.container.invite_code.list_for_submissive(submissive_id)
        return [code for code in codes if code.is_active(now)]

    async def _unused_code(self) -> str:
        now = self.clock.now()
        for _ in range(MAX_GENERATION_ATTEMPTS):
            code = generate_invite_code(self.config.invite_code_length)
            existing = await self.container.invite_code.get_by_code(code)
            if existing is None or not existing.is_active(now):
                return code
            logger.debug("Invite code collision, regenerating")
        raise ConflictError("Could not generate a unique invite code, please retry")

    async def create_invite_code(
        self, submissive_id: str, expiration_hours: Optional[int] = None
    ) -> InviteCode:
        """Issue a new code; at most ``max_active_invite_codes`` may be active at once."""
        if expiration_hours is None:
            expiration_hours = self.config.invite_expiration_hours
        if expiration_hours <= 0:
            raise ValidationError("expiration_hours must be positive")

        active = await self.get_active_invite_codes(submissive_id)
        if len(active) >= self.config.max_active_invite_codes:
            raise LimitExceededError(
                f"Maximum of {self.config.max_active_invite_codes} active invite codes reached"
            )

        code = await self._unused_code()
        now = self.clock.now()
        invite = InviteCode(
            id=new_id(),
            code=code,
            submissive_id=submissive_id,
            created_at=now,
            expires_at=now + timedelta(hours=expiration_hours),
        )
        async with self.container.transaction() as tx:
            await tx.add_invite_code(invite)

        logger.info(f"Invite code {invite.id} issued for submissive {submissive_id}")
        return invite

    async def accept_invite_code(self, code: str, keyholder_id: str) -> Relationship:
        """Redeem a code, creating an ACTIVE relationship and its ChastityData."""
        if not validate_invite_code_format(code):
            raise ValidationError("Invite code must be 6 uppercase letters or digits")

        now = self.clock.now()
        invite = await self.container.invite_code.get_by_code(code)
        if invite is None or not invite.is_active(now):
            raise NotFoundError("InviteCode", code, "Invalid or expired invite code")
        if invite.submissive_id == keyholder_id:
            raise SelfLinkError("You cannot accept your own invite code")

        active = await self.container.relationship.list_for_submissive(
            invite.submissive_id, RelationshipStatus.ACTIVE
        )
        if active:
            raise AlreadyLinkedError(
                "Submissive already has an active keyholder relationship",
                existing_relationship_id=active[0].id,
            )
        await self.relationships.validate_relationship_creation(
            invite.submissive_id, keyholder_id
        )

        relationship = new_relationship(invite.submissive_id, keyholder_id, now)
        used = invite.model_copy(update={"is_used": True, "used_by": keyholder_id, "used_at": now})

        async with self.container.transaction() as tx:
            await tx.update_invite_code(used)
            await stage_new_relationship(
                tx, relationship, Role.KEYHOLDER, now, invite_code_id=invite.id
            )

        logger.info(
            f"Invite code {invite.id} accepted by {keyholder_id}, "
            f"relationship {relationship.id} established"
        )
        await self.relationships.publish_user_relationships(relationship.participant_ids)
        return relationship

    async def revoke_invite_code(self, code_id: str, submissive_id: str) -> InviteCode:
        invite = await self.container.invite_code.get_by_id(code_id)
        if invite is None:
            raise NotFoundError("InviteCode", code_id)
        if invite.submissive_id != submissive_id:
            raise PermissionDeniedError("Only the issuing submissive can revoke this code")
        if invite.is_used:
            raise InvalidTransitionError("Invite code has already been used")
        if invite.is_revoked:
            return invite

        revoked = invite.model_copy(update={"is_revoked": True})
        async with self.container.transaction() as tx:
            await tx.update_invite_code(revoked)

        logger.info(f"Invite code {code_id} revoked")
        return revoked
