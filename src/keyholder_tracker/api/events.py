"""Event log and history API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth.dependencies import get_current_user_id
from ..core.enums import Role
from ..core.errors import PermissionDeniedError
from ..domain.history import HistorySearchQuery, KeyholderHistoryView
from ..services import ServiceRegistry
from ..services.event_log import EventDraft
from .dependencies import get_services
from .schemas import (
    EventCreate,
    EventCreatedResponse,
    EventListResponse,
    HistorySearchResponse,
    KeyholderViewRequest,
    ProblemDetails,
)

router = APIRouter(prefix="/v1/relationships/{relationship_id}", tags=["events"])

EVENT_RESPONSES = {
    403: {"model": ProblemDetails, "description": "Not a participant"},
    404: {"model": ProblemDetails, "description": "Relationship not found"},
}


@router.post(
    "/events",
    response_model=EventCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses=EVENT_RESPONSES,
)
async def log_event(
    relationship_id: str,
    body: EventCreate,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> EventCreatedResponse:
    """
    Append an event to the relationship's log.

    Private events are only returned to the role that logged them.
    """
    draft = EventDraft(
        type=body.type, details=body.details, is_private=body.is_private, tags=body.tags
    )
    event_id = await services.events.log_event(relationship_id, draft, user_id)
    return EventCreatedResponse(id=event_id)


@router.get("/events", response_model=EventListResponse, responses=EVENT_RESPONSES)
async def list_events(
    relationship_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> EventListResponse:
    await services.permissions.require_participant(relationship_id, user_id)
    events = await services.events.get_events(relationship_id, limit, viewer_id=user_id)
    return EventListResponse(events=events)


@router.post("/events/search", response_model=HistorySearchResponse, responses=EVENT_RESPONSES)
async def search_history(
    relationship_id: str,
    query: HistorySearchQuery,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> HistorySearchResponse:
    """Filter sessions and events; every predicate that is set must match."""
    await services.permissions.require_participant(relationship_id, user_id)
    entries = await services.events.search_history(relationship_id, query, user_id, limit)
    return HistorySearchResponse(entries=entries)


@router.post(
    "/history/keyholder-view",
    response_model=KeyholderHistoryView,
    responses=EVENT_RESPONSES,
)
async def keyholder_history_view(
    relationship_id: str,
    body: KeyholderViewRequest,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> KeyholderHistoryView:
    """
    Preview the keyholder's view of finished sessions.

    Only the submissive chooses what is shared, so only the submissive may
    request the view with a given set of sharing choices.
    """
    _, role = await services.permissions.require_participant(relationship_id, user_id)
    if role != Role.SUBMISSIVE:
        raise PermissionDeniedError("Only the submissive can choose what history is shared")
    return await services.events.keyholder_history_view(
        relationship_id, body.sharing, body.access, limit
    )
