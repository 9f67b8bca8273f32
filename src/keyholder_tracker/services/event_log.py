"""Append-only audit log and history queries over it."""

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.enums import Role
from ..core.errors import PermissionDeniedError, ValidationError
from ..domain.history import (
    HistoryEntry,
    HistorySearchQuery,
    KeyholderAccess,
    KeyholderHistoryView,
    SharingSettings,
    entry_from_event,
    entry_from_session,
    keyholder_view,
    search,
)
from ..domain.models import Event
from ..domain.rules import role_of
from ..utils.logging_config import get_logger
from .base import BaseService, audit_event

logger = get_logger("services")


class EventDraft(BaseModel):
    """Input for a user-logged event."""

    type: str
    details: Dict[str, Any] = Field(default_factory=dict)
    is_private: bool = False
    tags: List[str] = Field(default_factory=list)


def visible_to(event: Event, viewer_role: Optional[Role]) -> bool:
    """Private events are only shown to the role that logged them."""
    if not event.is_private or viewer_role is None:
        return True
    return event.logged_by == viewer_role


class EventLog(BaseService):
    """Writes and reads the per-relationship audit log."""

    async def log_event(
        self,
        relationship_id: str,
        draft: Union[EventDraft, Mapping[str, Any]],
        user_id: str,
    ) -> str:
        """Append an event logged by a participant and return its id."""
        if not isinstance(draft, EventDraft):
            try:
                draft = EventDraft.model_validate(draft)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid event: {exc.errors()[0]['msg']}") from exc

        relationship = await self._get_relationship(relationship_id)
        role = role_of(relationship, user_id)
        if role == Role.NONE:
            raise PermissionDeniedError("Only relationship participants can log events")
        event_type = draft.type.strip()
        if not event_type:
            raise ValidationError("Event type must not be empty")

        event = audit_event(
            relationship_id,
            event_type,
            role,
            self.clock.now(),
            details=draft.details,
            is_private=draft.is_private,
            tags=draft.tags,
        )
        async with self.container.transaction() as tx:
            await tx.add_event(event)

        logger.info(f"Event {event.id} ({event_type}) logged by {role.value}")
        return event.id

    async def get_events(
        self,
        relationship_id: str,
        limit: Optional[int] = None,
        viewer_id: Optional[str] = None,
    ) -> List[Event]:
        """Events newest first; private events of the other role are hidden from ``viewer_id``."""
        limit = limit or self.config.default_list_limit
        if viewer_id is None:
            return await self.container.event.list_for_relationship(relationship_id, limit)

        viewer_role = role_of(await self._get_relationship(relationship_id), viewer_id)
        window = limit
        while True:
            events = await self.container.event.list_for_relationship(relationship_id, window)
            visible = [event for event in events if visible_to(event, viewer_role)]
            # Widen the window until the page is full or the log is exhausted
            if len(visible) >= limit or len(events) < window:
                return visible[:limit]
            window *= 2

    async def history_entries(
        self,
        relationship_id: str,
        viewer_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[HistoryEntry]:
        """Sessions and visible events as history entries, newest first."""
        limit = limit or self.config.default_list_limit
        sessions = await self.container.session.list_for_relationship(relationship_id, limit)
        events = await self.get_events(relationship_id, limit, viewer_id)
        entries = [entry_from_session(s) for s in sessions] + [entry_from_event(e) for e in events]
        entries.sort(key=lambda entry: entry.start_time, reverse=True)
        return entries[:limit]

    async def search_history(
        self,
        relationship_id: str,
        query: HistorySearchQuery,
        viewer_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[HistoryEntry]:
        return search(await self.history_entries(relationship_id, viewer_id, limit), query)

    async def keyholder_history_view(
        self,
        relationship_id: str,
        sharing: SharingSettings,
        access: Optional[KeyholderAccess] = None,
        limit: Optional[int] = None,
    ) -> KeyholderHistoryView:
        """The submissive's finished sessions, redacted for the keyholder."""
        limit = limit or self.config.default_list_limit
        # One extra row covers the running session, which is never listed
        sessions = await self.container.session.list_for_relationship(relationship_id, limit + 1)
        entries = [entry_from_session(s) for s in sessions if s.is_ended][:limit]
        return keyholder_view(entries, sharing, access)
