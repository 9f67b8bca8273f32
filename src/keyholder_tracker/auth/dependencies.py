"""Authentication dependencies for FastAPI."""

from fastapi import Depends, HTTPException, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..utils.logging_config import get_logger
from .jwt_auth import jwt_manager

logger = get_logger("auth")

# Security scheme for Bearer token
security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """
    Resolve the authenticated user id from the Bearer token.

    This dependency supplies the "current user" input to every route that
    acts on behalf of a user.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return jwt_manager.extract_user_id(credentials.credentials)
    except HTTPException as e:
        logger.info(f"Rejected bearer token: {e.detail}")
        raise


def get_websocket_user_id(websocket: WebSocket, token: str) -> str:
    """Resolve the user id for a WebSocket connection from its ``token`` query parameter."""
    try:
        return jwt_manager.extract_user_id(token)
    except HTTPException as e:
        logger.info(f"Rejected WebSocket token from {websocket.client}: {e.detail}")
        raise
