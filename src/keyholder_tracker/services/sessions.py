"""Session lifecycle: start, pause, resume, end and emergency unlock.

Every transition reads ChastityData and the Session record, computes the new
versions with the pure functions in ``domain.rules`` and writes both, plus
an audit event, in one transaction. The ChastityData write is conditional
on the revision and session flags that were read, so two racing requests
can never both succeed.
"""

from typing import Any, List, Mapping, Optional, Tuple

from ..core.enums import PermissionAction, Role, SystemEventType
from ..core.errors import NotFoundError, PermissionDeniedError, ValidationError
from ..domain.models import ChastityData, Relationship, Session
from ..domain.rules import (
    SessionOptions,
    apply_partial_update,
    begin_session,
    end_session_state,
    pause_session_state,
    resolve_permission,
    resume_session_state,
    role_of,
)
from ..repositories.interfaces import SessionGuard
from ..utils.logging_config import get_logger
from .base import BaseService, audit_event, new_id

logger = get_logger("services")


def can_control_session(relationship: Relationship, user_id: str) -> bool:
    """The submissive always controls their own session; the keyholder needs ``sessions``."""
    role = role_of(relationship, user_id)
    if role == Role.SUBMISSIVE:
        return True
    return resolve_permission(relationship, user_id, PermissionAction.SESSIONS)


class SessionStateMachine(BaseService):
    """Drives the current session of a relationship."""

    async def get_chastity_data(self, relationship_id: str) -> ChastityData:
        data = await self.container.chastity_data.get(relationship_id)
        if data is None:
            raise NotFoundError("ChastityData", relationship_id)
        return data

    async def get_session_history(
        self, relationship_id: str, limit: Optional[int] = None
    ) -> List[Session]:
        """Sessions newest first, at most ``limit`` of them."""
        limit = limit or self.config.default_list_limit
        return await self.container.session.list_for_relationship(relationship_id, limit)

    async def _load(
        self, relationship_id: str, session_id: str
    ) -> Tuple[ChastityData, Session]:
        data = await self.get_chastity_data(relationship_id)
        session = await self.container.session.get_by_id(relationship_id, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return data, session

    async def _require_control(self, relationship_id: str, user_id: str) -> Tuple[Relationship, Role]:
        relationship = await self._get_relationship(relationship_id)
        if not can_control_session(relationship, user_id):
            raise PermissionDeniedError("Insufficient permissions for sessions")
        return relationship, role_of(relationship, user_id)

    async def start_session(
        self,
        relationship_id: str,
        user_id: str,
        options: Optional[SessionOptions] = None,
    ) -> Session:
        relationship, role = await self._require_control(relationship_id, user_id)
        options = options or SessionOptions()
        data = await self.get_chastity_data(relationship_id)

        now = self.clock.now()
        session, new_data = begin_session(
            data,
            new_id(),
            role,
            options,
            approval_required=relationship.permissions.require_approval.session_end,
            now=now,
        )

        async with self.container.transaction() as tx:
            await tx.update_chastity_data(new_data, SessionGuard.from_data(data))
            await tx.add_session(session)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    SystemEventType.SESSION_START.value,
                    role,
                    now,
                    details={
                        "session_id": session.id,
                        "goal_duration": session.goal_duration,
                        "is_hardcore_mode": session.is_hardcore_mode,
                    },
                )
            )

        logger.info(f"Session {session.id} started on relationship {relationship_id} by {role.value}")
        return session

    async def pause_session(
        self,
        relationship_id: str,
        session_id: str,
        user_id: str,
        reason: Optional[str] = None,
    ) -> Session:
        relationship = await self._get_relationship(relationship_id)
        if not resolve_permission(relationship, user_id, PermissionAction.PAUSE_SESSION):
            raise PermissionDeniedError("Insufficient permissions for pauseSession")
        role = role_of(relationship, user_id)

        data, session = await self._load(relationship_id, session_id)
        if not data.settings.allow_pausing:
            raise PermissionDeniedError("Pausing is disabled in the chastity settings")

        now = self.clock.now()
        paused, new_data = pause_session_state(data, session, role, reason, now)

        async with self.container.transaction() as tx:
            await tx.update_chastity_data(new_data, SessionGuard.from_data(data))
            await tx.update_session(paused)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    SystemEventType.SESSION_PAUSE.value,
                    role,
                    now,
                    details={"session_id": session_id, "reason": reason},
                )
            )

        logger.info(f"Session {session_id} paused by {role.value}")
        return paused

    async def resume_session(self, relationship_id: str, session_id: str, user_id: str) -> Session:
        relationship = await self._get_relationship(relationship_id)
        if not (
            can_control_session(relationship, user_id)
            or resolve_permission(relationship, user_id, PermissionAction.PAUSE_SESSION)
        ):
            raise PermissionDeniedError("Insufficient permissions to resume the session")
        role = role_of(relationship, user_id)

        data, session = await self._load(relationship_id, session_id)
        now = self.clock.now()
        resumed, new_data, delta = resume_session_state(data, session, role, now)

        async with self.container.transaction() as tx:
            await tx.update_chastity_data(new_data, SessionGuard.from_data(data))
            await tx.update_session(resumed)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    SystemEventType.SESSION_RESUME.value,
                    role,
                    now,
                    details={"session_id": session_id, "pause_seconds": delta},
                )
            )

        logger.info(f"Session {session_id} resumed by {role.value} after {delta}s pause")
        return resumed

    async def _finish(
        self,
        relationship_id: str,
        session_id: str,
        role: Role,
        reason: Optional[str],
        event_type: SystemEventType,
    ) -> Session:
        data, session = await self._load(relationship_id, session_id)
        now = self.clock.now()
        ended, new_data = end_session_state(data, session, role, reason, now)

        async with self.container.transaction() as tx:
            await tx.update_chastity_data(new_data, SessionGuard.from_data(data))
            await tx.update_session(ended)
            await tx.add_event(
                audit_event(
                    relationship_id,
                    event_type.value,
                    role,
                    now,
                    details={
                        "session_id": session_id,
                        "reason": reason,
                        "duration": ended.duration,
                        "effective_duration": ended.effective_duration,
                        "goal_met": ended.goal_met,
                    },
                )
            )

        logger.info(
            f"Session {session_id} ended ({event_type.value}) by {role.value}: "
            f"duration={ended.duration}s effective={ended.effective_duration}s"
        )
        return ended

    async def end_session(
        self,
        relationship_id: str,
        session_id: str,
        user_id: str,
        reason: Optional[str] = None,
    ) -> Session:
        _, role = await self._require_control(relationship_id, user_id)
        data = await self.get_chastity_data(relationship_id)
        if data.settings.require_reason_for_end and not (reason and reason.strip()):
            raise ValidationError("A reason is required to end this session")
        return await self._finish(
            relationship_id, session_id, role, reason, SystemEventType.SESSION_END
        )

    async def emergency_unlock(
        self, relationship_id: str, session_id: str, user_id: str, reason: str
    ) -> Session:
        relationship = await self._get_relationship(relationship_id)
        if not resolve_permission(relationship, user_id, PermissionAction.EMERGENCY_UNLOCK):
            raise PermissionDeniedError("Insufficient permissions for emergencyUnlock")
        if not (reason and reason.strip()):
            raise ValidationError("Emergency unlock requires a reason")

        logger.warning(f"Emergency unlock requested for session {session_id}")
        return await self._finish(
            relationship_id,
            session_id,
            Role.SUBMISSIVE,
            reason,
            SystemEventType.EMERGENCY_UNLOCK,
        )

    # ---------- settings and goals ----------

    async def _write_data(
        self,
        relationship_id: str,
        data: ChastityData,
        new_data: ChastityData,
        role: Role,
        event_type: SystemEventType,
        changes: Mapping[str, Any],
    ) -> ChastityData:
        async with self.container.transaction() as tx:
            written = await tx.update_chastity_data(new_data, SessionGuard.from_data(data))
            await tx.add_event(
                audit_event(
                    relationship_id,
                    event_type.value,
                    role,
                    new_data.updated_at,
                    details={"changes": dict(changes)},
                )
            )
        logger.info(f"{event_type.value} on relationship {relationship_id} by {role.value}")
        return written

    async def update_chastity_settings(
        self, relationship_id: str, user_id: str, changes: Mapping[str, Any]
    ) -> ChastityData:
        """Submissive, or a keyholder holding the ``settings`` permission."""
        relationship = await self._get_relationship(relationship_id)
        role = role_of(relationship, user_id)
        if role != Role.SUBMISSIVE and not resolve_permission(
            relationship, user_id, PermissionAction.SETTINGS
        ):
            raise PermissionDeniedError("Insufficient permissions for settings")

        data = await self.get_chastity_data(relationship_id)
        settings = apply_partial_update(data.settings, changes)
        new_data = data.model_copy(update={"settings": settings, "updated_at": self.clock.now()})
        return await self._write_data(
            relationship_id, data, new_data, role, SystemEventType.SETTINGS_UPDATED, changes
        )

    async def update_goals(
        self, relationship_id: str, user_id: str, changes: Mapping[str, Any]
    ) -> ChastityData:
        """Submissive, or a keyholder holding ``goals``; only the keyholder sets keyholder goals."""
        relationship = await self._get_relationship(relationship_id)
        role = role_of(relationship, user_id)
        if role != Role.SUBMISSIVE and not resolve_permission(
            relationship, user_id, PermissionAction.GOALS
        ):
            raise PermissionDeniedError("Insufficient permissions for goals")
        if "keyholder" in changes and role != Role.KEYHOLDER:
            raise PermissionDeniedError("Only the keyholder can change keyholder goals")

        data = await self.get_chastity_data(relationship_id)
        if (
            role == Role.SUBMISSIVE
            and "personal" in changes
            and not data.goals.keyholder.can_be_modified
            and data.goals.personal.set_by == Role.KEYHOLDER
        ):
            raise PermissionDeniedError("This goal was locked by the keyholder")

        goals = apply_partial_update(data.goals, changes)
        if "personal" in changes:
            goals = goals.model_copy(
                update={"personal": goals.personal.model_copy(update={"set_by": role})}
            )
        new_data = data.model_copy(update={"goals": goals, "updated_at": self.clock.now()})
        return await self._write_data(
            relationship_id, data, new_data, role, SystemEventType.GOALS_UPDATED, changes
        )
