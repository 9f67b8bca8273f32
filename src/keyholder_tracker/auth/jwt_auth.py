"""JWT access tokens identifying the calling user."""

import jwt
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from fastapi import HTTPException, status

from ..config import get_config


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTTokenManager:
    """Issues and verifies HS256 access tokens whose ``sub`` is the user id."""

    def __init__(self, secret_key: Optional[str] = None, expires_minutes: Optional[int] = None):
        """Initialize JWT token manager with configuration."""
        config = get_config()
        self.secret_key = secret_key or config.app.jwt_secret_key
        self.algorithm = "HS256"
        self.access_token_expires_minutes = (
            expires_minutes or config.app.jwt_access_token_expires_minutes
        )

    def create_access_token(
        self, user_id: str, additional_claims: Optional[Dict[str, Any]] = None
    ) -> Tuple[str, datetime]:
        """
        Create an access token for a user.

        Args:
            user_id: Identifier of the authenticated user
            additional_claims: Optional additional claims to include

        Returns:
            Tuple of (access_token, expires_at)
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(minutes=self.access_token_expires_minutes)
        payload = {
            "sub": str(user_id),
            "iat": now,
            "exp": expires_at,
            "jti": str(uuid4()),
            "type": "access",
        }
        if additional_claims:
            payload.update(additional_claims)

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return token, expires_at

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode access token.

        Raises:
            HTTPException: If token is invalid, expired, or wrong type
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise _unauthorized("Access token has expired")
        except jwt.InvalidTokenError:
            raise _unauthorized("Invalid access token")

        if payload.get("type") != "access" or not payload.get("sub"):
            raise _unauthorized("Invalid token type")
        return payload

    def extract_user_id(self, token: str) -> str:
        """Return the user id carried by a valid access token."""
        return self.verify_access_token(token)["sub"]


# Global instance
jwt_manager = JWTTokenManager()
