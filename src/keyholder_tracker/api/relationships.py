"""Relationship, permission and chastity data API endpoints."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..auth.dependencies import get_current_user_id
from ..core.enums import RequestStatus
from ..domain.models import ChastityData, Relationship
from ..services import ServiceRegistry
from ..services.relationships import (
    RecentActivity,
    RelationshipSearchFilters,
    RelationshipSearchResult,
    RequestDirection,
    UserRelationshipStats,
)
from .dependencies import get_services
from .schemas import ProblemDetails, RelationshipListResponse, RelationshipRequestListResponse

router = APIRouter(prefix="/v1/relationships", tags=["relationships"])

PARTICIPANT_RESPONSES = {
    403: {"model": ProblemDetails, "description": "Not a participant"},
    404: {"model": ProblemDetails, "description": "Relationship not found"},
}


@router.get(
    "",
    response_model=RelationshipListResponse,
    responses={200: {"description": "Relationships retrieved successfully"}},
)
async def list_relationships(
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipListResponse:
    """List the caller's relationships in either role, newest first."""
    relationships = await services.relationships.get_user_relationships(user_id)
    return RelationshipListResponse(relationships=relationships)


@router.get("/stats", response_model=UserRelationshipStats)
async def get_relationship_stats(
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> UserRelationshipStats:
    """
    Relationship and request statistics for the caller.

    Relationship counts are split by role; request counts by direction,
    with the acceptance rate computed over answered requests only.
    """
    return await services.relationships.get_user_relationship_stats(user_id)


SEARCH_RESPONSES = {
    422: {"model": ProblemDetails, "description": "Invalid filters or cursor"},
}


@router.post("/search", response_model=RelationshipSearchResult, responses=SEARCH_RESPONSES)
async def search_relationships(
    filters: Optional[RelationshipSearchFilters] = None,
    page_size: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipSearchResult:
    """
    Search the caller's relationships.

    Filters on status, the caller's role and a created-at range. Pass the
    returned ``next_cursor`` back as ``cursor`` to fetch the next page.
    """
    return await services.relationships.search_relationships(user_id, filters, page_size, cursor)


@router.get("/history", response_model=RelationshipSearchResult, responses=SEARCH_RESPONSES)
async def get_relationship_history(
    page_size: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipSearchResult:
    """Ended relationships in either role, newest first."""
    return await services.relationships.get_relationship_history(user_id, page_size, cursor)


@router.get("/requests", response_model=RelationshipRequestListResponse)
async def search_relationship_requests(
    direction: RequestDirection = Query("both"),
    status: Optional[List[RequestStatus]] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipRequestListResponse:
    """Requests the caller sent and/or received, newest first."""
    requests = await services.relationships.search_relationship_requests(
        user_id, direction, status, limit
    )
    return RelationshipRequestListResponse(requests=requests)


@router.get("/activity", response_model=RecentActivity)
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RecentActivity:
    return await services.relationships.get_recent_activity(user_id, limit)


@router.get("/{relationship_id}", response_model=Relationship, responses=PARTICIPANT_RESPONSES)
async def get_relationship(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    relationship, _ = await services.permissions.require_participant(relationship_id, user_id)
    return relationship


TRANSITION_RESPONSES = {
    **PARTICIPANT_RESPONSES,
    409: {"model": ProblemDetails, "description": "Transition not allowed"},
}


@router.post("/{relationship_id}/end", response_model=Relationship, responses=TRANSITION_RESPONSES)
async def end_relationship(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    """End the relationship. Ended relationships cannot be resumed."""
    return await services.relationships.end_relationship(relationship_id, user_id)


@router.post("/{relationship_id}/pause", response_model=Relationship, responses=TRANSITION_RESPONSES)
async def pause_relationship(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    return await services.relationships.pause_relationship(relationship_id, user_id)


@router.post("/{relationship_id}/resume", response_model=Relationship, responses=TRANSITION_RESPONSES)
async def resume_relationship(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    """Resume a paused relationship unless another active one links the same users."""
    return await services.relationships.resume_relationship(relationship_id, user_id)


@router.put(
    "/{relationship_id}/permissions",
    response_model=Relationship,
    responses={
        **PARTICIPANT_RESPONSES,
        422: {"model": ProblemDetails, "description": "Unknown permission field"},
    },
)
async def update_permissions(
    relationship_id: str,
    changes: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    """
    Apply a partial update to the keyholder's permissions.

    Only the keyholder may call this. Nested objects are merged, so
    ``{"require_approval": {"tasks": true}}`` leaves the other approval
    flags untouched.
    """
    return await services.permissions.update_relationship_permissions(
        relationship_id, user_id, changes
    )


# ---------- chastity data ----------


@router.get(
    "/{relationship_id}/chastity",
    response_model=ChastityData,
    responses=PARTICIPANT_RESPONSES,
)
async def get_chastity_data(
    relationship_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> ChastityData:
    await services.permissions.require_participant(relationship_id, user_id)
    return await services.sessions.get_chastity_data(relationship_id)


@router.put(
    "/{relationship_id}/chastity/settings",
    response_model=ChastityData,
    responses={
        **PARTICIPANT_RESPONSES,
        409: {"model": ProblemDetails, "description": "Concurrent update, retry"},
    },
)
async def update_chastity_settings(
    relationship_id: str,
    changes: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> ChastityData:
    return await services.sessions.update_chastity_settings(relationship_id, user_id, changes)


@router.put(
    "/{relationship_id}/chastity/goals",
    response_model=ChastityData,
    responses={
        **PARTICIPANT_RESPONSES,
        409: {"model": ProblemDetails, "description": "Concurrent update, retry"},
    },
)
async def update_goals(
    relationship_id: str,
    changes: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> ChastityData:
    """
    Apply a partial update to the personal and keyholder goals.

    Only the keyholder may touch ``keyholder``. A personal goal set by the
    keyholder is locked for the submissive unless the keyholder goal allows
    modification.
    """
    return await services.sessions.update_goals(relationship_id, user_id, changes)
