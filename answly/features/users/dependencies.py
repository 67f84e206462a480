"""
FastAPI dependencies for authentication and role checks.
"""
from typing import Annotated
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from slowapi import Limiter
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core import config
from answly.core.clock import Clock, get_clock
from answly.core.database.engine import get_db
from answly.core.exceptions import Forbidden, Unauthenticated
from answly.features.users.auth import verify_jwt_token
from answly.features.users.models import User, UserRole


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> User:
    """
    Get the current authenticated user from the bearer token.

    This dependency:
    1. Extracts the JWT from the Authorization header
    2. Verifies signature and expiry
    3. Loads the user and records last_login_at

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None or not credentials.credentials.strip():
        raise Unauthenticated("Not authenticated. Send header: Authorization: Bearer <token>")

    payload = verify_jwt_token(credentials.credentials)

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()

    if user is None:
        raise Unauthenticated("User not found")

    if not user.is_active:
        raise Unauthenticated("User account is deactivated")

    user.last_login_at = clock.now()
    await db.commit()
    await db.refresh(user)
    return user


async def get_current_admin_user(
    user: Annotated[User, Depends(get_current_user)]
) -> User:
    """
    Require the ADMIN role.

    Usage:
        @router.patch("/users/{user_id}/role")
        async def update_role(admin: User = Depends(get_current_admin_user)):
            ...
    """
    if not user.is_admin:
        raise Forbidden("Admin privileges required")
    return user


def require_roles(*roles: UserRole):
    """
    FastAPI dependency factory allowing only the listed roles.

    Usage:
        @router.post("/exams")
        async def create_exam(user: User = Depends(require_roles(UserRole.ADMIN, UserRole.INSTRUCTOR))):
            ...
    """
    allowed = frozenset(roles)

    async def role_dependency(
        user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        if user.role not in allowed:
            raise Forbidden(f"Requires one of roles: {', '.join(sorted(r.value for r in allowed))}")
        return user

    return role_dependency


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"


# Throttles session endpoints that evaluate permissions, keyed per bearer token
limiter = Limiter(key_func=get_authorization_header, enabled=config.SESSION_RATE_LIMIT_ENABLED)
