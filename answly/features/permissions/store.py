"""
Permission grant store.

Creates, revokes and looks up (user, organization, scope) grants. The store
flushes but never commits; the request's session decides when to commit.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.clock import Clock, to_utc
from answly.core.exceptions import DuplicateGrant, GrantNotFound
from answly.features.permissions.models import PermissionGrant, PermissionScope
from answly.utils import get_logger


log = get_logger(__name__)


GRANT_UNIQUE_CONSTRAINT = "uq_permission_grants_user_org_scope"


def _is_duplicate(exc: IntegrityError) -> bool:
    """True for a violation of the (user, organization, scope) unique constraint."""
    message = str(exc.orig)
    # PostgreSQL names the constraint, SQLite lists the columns
    return GRANT_UNIQUE_CONSTRAINT in message or "UNIQUE constraint failed: permission_grants" in message


def _is_active_clause(now: datetime):
    return or_(PermissionGrant.expires_at.is_(None), PermissionGrant.expires_at > now)


class GrantStore:
    def __init__(self, db: AsyncSession, clock: Clock):
        self.db = db
        self.clock = clock

    async def get(
        self,
        user_id: str,
        organization_id: str,
        scope: PermissionScope
    ) -> Optional[PermissionGrant]:
        """Return the grant for the key tuple, active or not."""
        stmt = select(PermissionGrant).where(
            and_(
                PermissionGrant.user_id == user_id,
                PermissionGrant.organization_id == organization_id,
                PermissionGrant.scope == scope
            )
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def find_active(
        self,
        user_id: str,
        organization_id: str,
        scope: PermissionScope
    ) -> Optional[PermissionGrant]:
        """Return the grant if it has no expiry or expires strictly after now."""
        stmt = select(PermissionGrant).where(
            and_(
                PermissionGrant.user_id == user_id,
                PermissionGrant.organization_id == organization_id,
                PermissionGrant.scope == scope,
                _is_active_clause(self.clock.now())
            )
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def grant(
        self,
        user_id: str,
        organization_id: str,
        scope: PermissionScope,
        granted_by: Optional[str],
        expires_at: Optional[datetime] = None
    ) -> PermissionGrant:
        """
        Create a grant.

        Raises:
            DuplicateGrant: a grant for (user, organization, scope) already
                exists, expired or not. Revoke it first.
        """
        scope = PermissionScope(scope)
        if await self.get(user_id, organization_id, scope) is not None:
            raise DuplicateGrant(f"{scope.value} already granted to user {user_id} in organization {organization_id}")

        grant = PermissionGrant(
            user_id=user_id,
            organization_id=organization_id,
            scope=scope,
            granted_by_id=granted_by,
            expires_at=to_utc(expires_at) if expires_at else None
        )
        self.db.add(grant)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            if not _is_duplicate(e):
                raise
            # Lost a race against a concurrent grant for the same tuple
            raise DuplicateGrant(f"{scope.value} already granted to user {user_id} in organization {organization_id}")

        log.info(
            f"Granted {scope.value} to user={user_id} org={organization_id} "
            f"by={granted_by} expires_at={grant.expires_at}"
        )
        return grant

    async def revoke(
        self,
        user_id: str,
        organization_id: str,
        scope: PermissionScope
    ) -> None:
        """
        Delete a grant.

        Raises:
            GrantNotFound: nothing to revoke
        """
        grant = await self.get(user_id, organization_id, PermissionScope(scope))
        if grant is None:
            raise GrantNotFound()

        await self.db.delete(grant)
        await self.db.flush()
        log.info(f"Revoked {grant.scope.value} from user={user_id} org={organization_id}")

    async def list_grants(
        self,
        organization_id: str,
        user_id: Optional[str] = None,
        include_expired: bool = False
    ) -> List[PermissionGrant]:
        stmt = select(PermissionGrant).where(PermissionGrant.organization_id == organization_id)
        if user_id:
            stmt = stmt.where(PermissionGrant.user_id == user_id)
        if not include_expired:
            stmt = stmt.where(_is_active_clause(self.clock.now()))
        stmt = stmt.order_by(PermissionGrant.user_id, PermissionGrant.scope)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
