"""
Authorization evaluator.

Decides whether a user may act with a scope inside an organization by asking
a sequence of access rules; the first rule that allows wins:

1. RoleBypassRule - platform ADMINs are allowed everything, no lookup
2. GrantRule      - the user is active and an active PermissionGrant exists
                    for the tuple

Lookup failures never escape: an unknown user or a database error evaluates
to "no permission".
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.clock import Clock
from answly.features.permissions.models import PermissionScope
from answly.features.permissions.store import GrantStore
from answly.features.users.models import User, UserRole
from answly.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class Subject:
    """The identity being authorized."""
    user_id: str
    role: UserRole
    is_active: bool = True


class AccessRule(Protocol):
    name: str

    async def allows(self, subject: Subject, organization_id: str, scope: PermissionScope) -> bool:
        ...


class RoleBypassRule:
    """Allows subjects whose role is in ``roles`` regardless of scope."""
    name = "role"

    def __init__(self, roles: Iterable[UserRole] = (UserRole.ADMIN,)):
        self.roles = frozenset(roles)

    async def allows(self, subject: Subject, organization_id: str, scope: PermissionScope) -> bool:
        return subject.role in self.roles


class GrantRule:
    """Allows subjects holding an unexpired grant for the scope in the organization."""
    name = "grant"

    def __init__(self, store: GrantStore):
        self.store = store

    async def allows(self, subject: Subject, organization_id: str, scope: PermissionScope) -> bool:
        if not subject.is_active:
            return False
        grant = await self.store.find_active(subject.user_id, organization_id, scope)
        return grant is not None


class PermissionEvaluator:
    def __init__(self, db: AsyncSession, rules: Sequence[AccessRule]):
        self.db = db
        self.rules = list(rules)

    @classmethod
    def default(cls, db: AsyncSession, clock: Clock) -> "PermissionEvaluator":
        """Role check first, then the grant store."""
        return cls(db, [RoleBypassRule(), GrantRule(GrantStore(db, clock))])

    async def _load_subject(self, user_id: str) -> Optional[Subject]:
        result = await self.db.execute(
            select(User.id, User.role, User.is_active).where(User.id == user_id)
        )
        row = result.first()
        if row is None:
            return None
        return Subject(user_id=row.id, role=row.role, is_active=row.is_active)

    async def has_permission(
        self,
        user_id: str,
        organization_id: str,
        scope: PermissionScope
    ) -> bool:
        """
        Check whether ``user_id`` may use ``scope`` in ``organization_id``.

        Returns:
            True if any rule allows, False otherwise (including unknown users
            and lookup errors)
        """
        scope = PermissionScope(scope)
        try:
            subject = await self._load_subject(user_id)
            if subject is None:
                log.debug(f"Unknown user {user_id} - denied {scope.value} in org {organization_id}")
                return False

            for rule in self.rules:
                if await rule.allows(subject, organization_id, scope):
                    log.debug(
                        f"User {user_id} granted {scope.value} in org {organization_id} via {rule.name} rule"
                    )
                    return True
        except SQLAlchemyError:
            log.exception(f"Permission lookup failed for user {user_id} scope {scope.value} org {organization_id}")
            return False

        log.debug(f"User {user_id} denied {scope.value} in org {organization_id}")
        return False
