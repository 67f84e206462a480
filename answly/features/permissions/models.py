"""
Scoped permission grants and the audit log.

A grant gives one user one capability (scope) inside one organization,
optionally until an expiry time. Platform admins never need grants.
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, DateTime, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from answly.core.database.base import Base, TimestampMixin, generate_ulid


class PermissionScope(str, enum.Enum):
    """Capability tags that can be granted inside an organization."""
    VIEW_REPORTS = "VIEW_REPORTS"
    MANAGE_MEMBERS = "MANAGE_MEMBERS"
    MANAGE_PERMISSIONS = "MANAGE_PERMISSIONS"
    MANAGE_API_KEYS = "MANAGE_API_KEYS"
    MANAGE_EXAMS = "MANAGE_EXAMS"
    GRADE_SUBMISSIONS = "GRADE_SUBMISSIONS"
    EXPORT_DATA = "EXPORT_DATA"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"


class PermissionGrant(Base, TimestampMixin):
    """
    One (user, organization, scope) grant.

    expires_at NULL means the grant never expires; otherwise it is active
    only while now < expires_at.
    """
    __tablename__ = "permission_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", "scope", name="uq_permission_grants_user_org_scope"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    scope: Mapped[PermissionScope] = mapped_column(SQLEnum(PermissionScope), nullable=False, index=True)

    granted_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self) -> str:
        return (
            f"<PermissionGrant(user_id={self.user_id}, org_id={self.organization_id}, "
            f"scope={self.scope}, expires_at={self.expires_at})>"
        )


class AuditLog(Base, TimestampMixin):
    """
    Audit log for tracking access-control changes.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
