"""
API keys for machine-to-machine access, their window counters and usage log.
"""
from datetime import datetime
from typing import List
from sqlalchemy import String, Boolean, Integer, ForeignKey, JSON, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from answly.core.database.base import Base, TimestampMixin, generate_ulid


class ApiKey(Base, TimestampMixin):
    """
    An organization-owned API key.

    Only the SHA-256 hash of the raw key is stored; the raw key is shown once
    at creation.
    """
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    created_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    key_prefix: Mapped[str] = mapped_column(String(12), nullable=False)
    scopes: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Requests per rate window / per calendar day
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_quota: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ApiKey(id={self.id}, name={self.name!r}, org_id={self.organization_id}, active={self.is_active})>"


class ApiKeyCounter(Base):
    """
    Request count of one key inside one window.

    bucket is "rate" (short fixed window) or "daily" (calendar day). A row
    whose window_start is older than the current window is reset on the next
    hit.
    """
    __tablename__ = "api_key_counters"

    api_key_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        primary_key=True
    )
    bucket: Mapped[str] = mapped_column(String(16), primary_key=True)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ApiKeyCounter(key={self.api_key_id}, bucket={self.bucket}, start={self.window_start}, count={self.count})>"


class ApiKeyUsage(Base):
    """One admitted request made with an API key."""
    __tablename__ = "api_key_usage"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    api_key_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
