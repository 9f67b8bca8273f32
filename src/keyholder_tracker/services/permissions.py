"""Permission evaluation for relationship actions."""

from typing import Any, Mapping, Tuple

from ..core.enums import PermissionAction, Role, SystemEventType
from ..core.errors import NotFoundError, PermissionDeniedError, ValidationError
from ..domain.models import Relationship
from ..domain.rules import apply_partial_update, parse_enum, resolve_permission, role_of
from ..utils.logging_config import get_logger
from .base import BaseService, audit_event

logger = get_logger("services")

__all__ = ["PermissionEvaluator", "role_of"]


class PermissionEvaluator(BaseService):
    """Answers "may this user do that" for a relationship."""

    async def check_permission(
        self, relationship_id: str, user_id: str, action: PermissionAction
    ) -> bool:
        """True if ``user_id`` may perform ``action``; anything unknown yields False."""
        try:
            action = parse_enum(PermissionAction, action, "action")
            relationship = await self._get_relationship(relationship_id)
        except (NotFoundError, ValidationError) as e:
            logger.debug(f"Permission check for {user_id} on {relationship_id} denied: {e}")
            return False
        return resolve_permission(relationship, user_id, action)

    async def require_permission(
        self, relationship_id: str, user_id: str, action: PermissionAction
    ) -> Relationship:
        """Return the relationship, or raise PermissionDeniedError."""
        action = parse_enum(PermissionAction, action, "action")
        relationship = await self._get_relationship(relationship_id)
        if not resolve_permission(relationship, user_id, action):
            logger.info(
                f"Denied {action.value} for user {user_id} on relationship {relationship_id}"
            )
            raise PermissionDeniedError(f"Insufficient permissions for {action.value}")
        return relationship

    async def require_participant(
        self, relationship_id: str, user_id: str
    ) -> Tuple[Relationship, Role]:
        relationship = await self._get_relationship(relationship_id)
        role = role_of(relationship, user_id)
        if role == Role.NONE:
            raise PermissionDeniedError("Not a participant in this relationship")
        return relationship, role

    async def update_relationship_permissions(
        self, relationship_id: str, user_id: str, changes: Mapping[str, Any]
    ) -> Relationship:
        """Apply a nested partial update to the permissions. Keyholder only."""
        relationship = await self._get_relationship(relationship_id)
        if role_of(relationship, user_id) != Role.KEYHOLDER:
            raise PermissionDeniedError("Only the keyholder can update permissions")

        permissions = apply_partial_update(relationship.permissions, changes)
        now = self.clock.now()
        updated = relationship.model_copy(
            update={"permissions": permissions, "updated_at": now}
        )

        async with self.container.transaction() as tx:
            await tx.update_relationship(updated, expected_status=relationship.status)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    SystemEventType.PERMISSIONS_UPDATED.value,
                    Role.KEYHOLDER,
                    now,
                    details={"changes": dict(changes)},
                )
            )

        logger.info(f"Permissions updated on relationship {relationship_id}")
        return updated
