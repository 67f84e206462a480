"""
Session token utilities (HS256 bearer JWTs).
"""
from datetime import datetime, timedelta, timezone

import jwt

from answly.core import config
from answly.core.exceptions import Unauthenticated
from answly.features.users.models import UserRole


def create_access_token(user_id: str, role: UserRole, expires_in: timedelta | None = None) -> str:
    """Issue a bearer token for ``user_id``."""
    expire = datetime.now(timezone.utc) + (expires_in or timedelta(minutes=config.JWT_EXPIRE_MINUTES))
    payload = {"sub": user_id, "role": UserRole(role).value, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> dict:
    """
    Verify a bearer token and return its payload.

    Args:
        token: JWT from the Authorization header

    Returns:
        Decoded payload; ``sub`` holds the user id

    Raises:
        Unauthenticated: If the token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError as e:
        raise Unauthenticated(f"Invalid token: {e}")

    if not payload.get("sub"):
        raise Unauthenticated("Invalid token payload")
    return payload
