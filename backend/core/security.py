"""
Security utilities for the workflow engine API.

Includes:
- JWT access token generation and verification
- FastAPI dependency for bearer authentication

Users and sessions live in the practice-management app; this service only
trusts tokens signed with the shared SECRET_KEY, which carry the practice
(``org_id``) every request is scoped to.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials as HTTPAuthCredentials
from fastapi.security import HTTPBearer
from pydantic import BaseModel

from app.config import get_settings

settings = get_settings()

# JWT configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

# HTTP Bearer for API endpoints
security_scheme = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    """JWT token payload structure."""
    sub: str  # user id in the practice app
    org_id: str
    email: Optional[str] = None
    exp: datetime
    iat: datetime
    type: str  # "access"


def create_access_token(user_id: str, org_id: str, email: Optional[str] = None) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User ID
        org_id: Organization (practice) ID
        email: Optional user email, informational only

    Returns:
        Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "org_id": org_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, get_settings().SECRET_KEY, algorithm=ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_token(token: str) -> TokenPayload:
    """
    Verify and decode a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        payload = jwt.decode(token, get_settings().SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")

    user_id = payload.get("sub")
    org_id = payload.get("org_id")
    if user_id is None or org_id is None:
        raise _unauthorized("Invalid token payload")

    return TokenPayload(
        sub=user_id,
        org_id=org_id,
        email=payload.get("email"),
        exp=datetime.fromtimestamp(payload.get("exp"), tz=timezone.utc),
        iat=datetime.fromtimestamp(payload.get("iat"), tz=timezone.utc),
        type=payload.get("type", ""),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthCredentials] = Depends(security_scheme),
) -> TokenPayload:
    """
    FastAPI dependency returning the verified bearer token payload.

    Raises:
        HTTPException: If token is missing, invalid, or expired
    """
    if not credentials:
        raise _unauthorized("Missing authorization header")

    token_payload = verify_token(credentials.credentials)
    if token_payload.type != "access":
        raise _unauthorized("Invalid token type")
    return token_payload
