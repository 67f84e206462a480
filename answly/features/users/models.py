"""
User model with ULID primary keys and a platform role.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from answly.core.database.base import Base, TimestampMixin, generate_ulid


class UserRole(str, enum.Enum):
    """Platform-wide role. ADMIN bypasses every scope check."""
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    TEST_TAKER = "TEST_TAKER"
    REVIEWER = "REVIEWER"


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    A user belongs to at most one organization. The role is only changed by
    an admin action.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole),
        default=UserRole.TEST_TAKER,
        nullable=False,
        index=True
    )

    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    organization: Mapped["Organization | None"] = relationship(  # type: ignore
        "Organization",
        back_populates="members",
        lazy="selectin"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
