"""Relationship request API endpoints."""

from fastapi import APIRouter, Depends, status

from ..auth.dependencies import get_current_user_id
from ..domain.models import Relationship, RelationshipRequest
from ..services import ServiceRegistry
from .dependencies import get_services
from .schemas import ProblemDetails, RelationshipRequestCreate, RelationshipRequestListResponse

router = APIRouter(prefix="/v1/relationship-requests", tags=["relationship-requests"])

RESPOND_RESPONSES = {
    403: {"model": ProblemDetails, "description": "Not the recipient"},
    404: {"model": ProblemDetails, "description": "Request not found"},
    409: {"model": ProblemDetails, "description": "Request no longer pending"},
}


@router.post(
    "",
    response_model=RelationshipRequest,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ProblemDetails, "description": "Request to self"},
        409: {"model": ProblemDetails, "description": "Users already linked"},
        422: {"model": ProblemDetails, "description": "Duplicate pending request"},
    },
)
async def send_request(
    body: RelationshipRequestCreate,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipRequest:
    """
    Ask another user to form a relationship.

    ``from_role`` is the role the caller will take; the recipient gets the
    other one. Requests expire after seven days.
    """
    return await services.relationships.send_relationship_request(
        user_id, body.to_user_id, body.from_role, body.message
    )


@router.get("/pending", response_model=RelationshipRequestListResponse)
async def list_pending_requests(
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipRequestListResponse:
    requests = await services.relationships.get_pending_requests(user_id)
    return RelationshipRequestListResponse(requests=requests)


@router.post(
    "/{request_id}/accept",
    response_model=Relationship,
    status_code=status.HTTP_201_CREATED,
    responses=RESPOND_RESPONSES,
)
async def accept_request(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    return await services.relationships.accept_relationship_request(request_id, user_id)


@router.post(
    "/{request_id}/reject",
    response_model=RelationshipRequest,
    responses=RESPOND_RESPONSES,
)
async def reject_request(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> RelationshipRequest:
    return await services.relationships.reject_relationship_request(request_id, user_id)
