"""Invite code API endpoints."""

from fastapi import APIRouter, Depends, status

from ..auth.dependencies import get_current_user_id
from ..domain.models import InviteCode, Relationship
from ..services import ServiceRegistry
from .dependencies import get_services
from .schemas import InviteCodeAccept, InviteCodeCreate, InviteCodeListResponse, ProblemDetails

router = APIRouter(prefix="/v1/invites", tags=["invites"])


@router.post(
    "",
    response_model=InviteCode,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Invite code issued"},
        401: {"model": ProblemDetails, "description": "Authentication required"},
        429: {"model": ProblemDetails, "description": "Too many active invite codes"},
    },
)
async def create_invite_code(
    body: InviteCodeCreate,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> InviteCode:
    """
    Issue an invite code for the calling submissive.

    The code is six uppercase letters or digits and can be redeemed once by a
    keyholder before it expires.
    """
    return await services.invites.create_invite_code(user_id, body.expiration_hours)


@router.get(
    "",
    response_model=InviteCodeListResponse,
    responses={200: {"description": "Active invite codes retrieved"}},
)
async def list_invite_codes(
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> InviteCodeListResponse:
    codes = await services.invites.get_active_invite_codes(user_id)
    return InviteCodeListResponse(invite_codes=codes)


@router.post(
    "/accept",
    response_model=Relationship,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Relationship established"},
        400: {"model": ProblemDetails, "description": "Own invite code"},
        404: {"model": ProblemDetails, "description": "Invalid or expired code"},
        409: {"model": ProblemDetails, "description": "Submissive already linked"},
        422: {"model": ProblemDetails, "description": "Malformed code"},
    },
)
async def accept_invite_code(
    body: InviteCodeAccept,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Relationship:
    """
    Redeem an invite code as keyholder.

    Creates the relationship, its chastity data and the audit entry in one
    transaction and marks the code as used.
    """
    return await services.invites.accept_invite_code(body.code, user_id)


@router.delete(
    "/{code_id}",
    response_model=InviteCode,
    responses={
        403: {"model": ProblemDetails, "description": "Not the issuing submissive"},
        404: {"model": ProblemDetails, "description": "Invite code not found"},
        409: {"model": ProblemDetails, "description": "Invite code already used"},
    },
)
async def revoke_invite_code(
    code_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> InviteCode:
    return await services.invites.revoke_invite_code(code_id, user_id)
