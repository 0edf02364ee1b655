"""FastAPI dependencies for database sessions and bearer authentication."""

from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..services.capacity import ReservationController
from .config import settings
from .database import get_db, get_session_factory
from .exceptions import AuthenticationError, AuthorizationError


def _decode_token(authorization: str) -> dict:
    """
    Validate a Bearer authorization header and return the user claims.

    Raises:
        AuthenticationError: If the header or token is invalid
    """
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}")

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError(detail="Invalid token payload")

    # PyJWT checks exp itself; this guards tokens minted with a string exp
    exp = payload.get("exp")
    if exp and datetime.now(timezone.utc).timestamp() > float(exp):
        raise AuthenticationError(detail="Token has expired")

    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "roles": payload.get("roles", []),
    }


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates Bearer tokens.

    Returns:
        dict: User information from validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")
    return _decode_token(authorization)


async def get_optional_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[dict]:
    """Like ``get_current_user`` but lets anonymous (guest checkout) requests through."""
    if not authorization:
        return None
    return _decode_token(authorization)


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """
    Authorization dependency for admin-only endpoints.

    Raises:
        AuthorizationError: If the token does not carry the admin role
    """
    if "admin" not in user.get("roles", []):
        raise AuthorizationError(required_permissions=["admin"])
    return user


RequiredAuth = Depends(get_current_user)
OptionalAuth = Depends(get_optional_user)
AdminAuth = Depends(require_admin)
DatabaseSession = Depends(get_db)
SessionFactory = Depends(get_session_factory)


def get_reservation_controller(
    session_factory: async_sessionmaker[AsyncSession] = SessionFactory,
) -> ReservationController:
    """Controller whose capacity writes run in their own short transactions."""
    return ReservationController.for_sessions(session_factory)


Controller = Depends(get_reservation_controller)
