"""Chastity session API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..auth.dependencies import get_current_user_id
from ..domain.models import Session
from ..domain.rules import SessionOptions
from ..services import ServiceRegistry
from .dependencies import get_services
from .schemas import (
    EmergencyUnlockRequest,
    ProblemDetails,
    SessionActionRequest,
    SessionListResponse,
    SessionStartRequest,
)

router = APIRouter(prefix="/v1/relationships/{relationship_id}/sessions", tags=["sessions"])

SESSION_RESPONSES = {
    403: {"model": ProblemDetails, "description": "Insufficient permissions"},
    404: {"model": ProblemDetails, "description": "Relationship or session not found"},
    409: {"model": ProblemDetails, "description": "Invalid state or concurrent update"},
}


@router.post(
    "",
    response_model=Session,
    status_code=status.HTTP_201_CREATED,
    responses=SESSION_RESPONSES,
)
async def start_session(
    relationship_id: str,
    body: Optional[SessionStartRequest] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Session:
    """
    Start a session.

    The submissive may always start one; the keyholder needs the
    ``sessions`` permission. Fails with 409 while another session is active.
    """
    body = body or SessionStartRequest()
    options = SessionOptions(
        goal_duration=body.goal_duration,
        is_hardcore_mode=body.is_hardcore_mode,
        notes=body.notes,
    )
    return await services.sessions.start_session(relationship_id, user_id, options)


@router.get("", response_model=SessionListResponse, responses=SESSION_RESPONSES)
async def list_sessions(
    relationship_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> SessionListResponse:
    await services.permissions.require_participant(relationship_id, user_id)
    sessions = await services.sessions.get_session_history(relationship_id, limit)
    return SessionListResponse(sessions=sessions)


@router.post("/{session_id}/pause", response_model=Session, responses=SESSION_RESPONSES)
async def pause_session(
    relationship_id: str,
    session_id: str,
    body: Optional[SessionActionRequest] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Session:
    reason = body.reason if body else None
    return await services.sessions.pause_session(relationship_id, session_id, user_id, reason)


@router.post("/{session_id}/resume", response_model=Session, responses=SESSION_RESPONSES)
async def resume_session(
    relationship_id: str,
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Session:
    """Resume a paused session; the pause is added to the accumulated pause time."""
    return await services.sessions.resume_session(relationship_id, session_id, user_id)


@router.post("/{session_id}/end", response_model=Session, responses=SESSION_RESPONSES)
async def end_session(
    relationship_id: str,
    session_id: str,
    body: Optional[SessionActionRequest] = None,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Session:
    reason = body.reason if body else None
    return await services.sessions.end_session(relationship_id, session_id, user_id, reason)


@router.post("/{session_id}/emergency-unlock", response_model=Session, responses=SESSION_RESPONSES)
async def emergency_unlock(
    relationship_id: str,
    session_id: str,
    body: EmergencyUnlockRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> Session:
    """End the session immediately. Requires ``emergencyUnlock`` and a reason."""
    return await services.sessions.emergency_unlock(
        relationship_id, session_id, user_id, body.reason
    )
