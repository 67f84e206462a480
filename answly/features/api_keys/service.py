"""
API key lifecycle and the request gate behind ``x-api-key``.

Raw keys look like ``ak_<64 hex chars>``. Only their SHA-256 hash is stored,
so a leaked database does not leak usable keys.

Every request presented with a key goes through ``admit``:

1. validate_key        unknown, inactive or expired keys are rejected (401)
2. rate window         at most ``rate_limit`` requests per rate window (403)
3. daily quota         at most ``daily_quota`` requests per UTC day (403)

A request rejected at step 3 gives back the rate slot it took at step 2, so
rejected requests never count against either budget.
"""
import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core import config
from answly.core.clock import Clock, to_utc
from answly.core.exceptions import ApiKeyNotFound, QuotaExceeded, RateLimitExceeded, Unauthenticated
from answly.features.api_keys.counters import (
    CalendarDay,
    CounterStore,
    DAILY_BUCKET,
    EPOCH,
    FixedWindow,
    RATE_BUCKET,
    WindowState,
    WindowedCounter,
)
from answly.features.api_keys.models import ApiKey, ApiKeyCounter, ApiKeyUsage
from answly.features.permissions.models import PermissionScope
from answly.utils import get_logger


log = get_logger(__name__)

KEY_PREFIX = "ak_"


def hash_key(raw_key: str) -> str:
    """Hash an API key for storage and lookup."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def generate_raw_key() -> str:
    """Generate a new random API key."""
    return f"{KEY_PREFIX}{secrets.token_hex(32)}"


class ApiKeyService:
    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        counters: CounterStore,
        rate_window_seconds: int = config.API_KEY_RATE_WINDOW_SECONDS,
    ):
        self.db = db
        self.clock = clock
        self.rate_window = WindowedCounter(RATE_BUCKET, FixedWindow(rate_window_seconds), counters)
        self.daily_window = WindowedCounter(DAILY_BUCKET, CalendarDay(), counters)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_api_key(
        self,
        organization_id: str,
        created_by_id: Optional[str],
        name: str,
        scopes: Optional[List[PermissionScope]] = None,
        rate_limit: Optional[int] = None,
        daily_quota: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[ApiKey, str]:
        """
        Create a key for an organization.

        Returns:
            (ApiKey row, raw key). The raw key is not recoverable afterwards.
        """
        raw_key = generate_raw_key()
        api_key = ApiKey(
            organization_id=organization_id,
            created_by_id=created_by_id,
            name=name,
            key_hash=hash_key(raw_key),
            key_prefix=raw_key[:12],
            scopes=[PermissionScope(scope).value for scope in scopes or []],
            rate_limit=config.API_KEY_DEFAULT_RATE_LIMIT if rate_limit is None else rate_limit,
            daily_quota=config.API_KEY_DEFAULT_DAILY_QUOTA if daily_quota is None else daily_quota,
            expires_at=to_utc(expires_at) if expires_at else None,
        )
        self.db.add(api_key)
        await self.db.flush()

        # Counter rows exist from the start so consuming never races on INSERT
        for bucket in (RATE_BUCKET, DAILY_BUCKET):
            self.db.add(ApiKeyCounter(api_key_id=api_key.id, bucket=bucket, window_start=EPOCH, count=0))
        await self.db.flush()

        log.info(f"Created API key {api_key.id} ({api_key.key_prefix}...) for org {organization_id}")
        return api_key, raw_key

    async def get_key(self, key_id: str) -> ApiKey:
        result = await self.db.execute(select(ApiKey).where(ApiKey.id == key_id))
        api_key = result.scalar_one_or_none()
        if api_key is None:
            raise ApiKeyNotFound()
        return api_key

    async def list_organization_keys(self, organization_id: str) -> List[ApiKey]:
        result = await self.db.execute(
            select(ApiKey)
            .where(ApiKey.organization_id == organization_id)
            .order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
        )
        return list(result.scalars().all())

    async def revoke_key(self, key_id: str) -> ApiKey:
        """Deactivate a key. Revoked keys fail validation from the next request on."""
        api_key = await self.get_key(key_id)
        api_key.is_active = False
        await self.db.flush()
        log.info(f"Revoked API key {key_id}")
        return api_key

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def _is_expired(self, api_key: ApiKey) -> bool:
        return api_key.expires_at is not None and to_utc(api_key.expires_at) <= self.clock.now()

    async def validate_key(self, raw_key: str) -> ApiKey:
        """
        Resolve a raw key to its active row and stamp ``last_used_at``.

        Raises:
            Unauthenticated: unknown, revoked or expired key
        """
        result = await self.db.execute(select(ApiKey).where(ApiKey.key_hash == hash_key(raw_key)))
        api_key = result.scalar_one_or_none()

        if api_key is None:
            raise Unauthenticated("Invalid API key")
        if not api_key.is_active:
            raise Unauthenticated("API key has been revoked")
        if self._is_expired(api_key):
            raise Unauthenticated("API key has expired")

        api_key.last_used_at = self.clock.now()
        await self.db.flush()
        return api_key

    async def consume_rate_limit(self, api_key: ApiKey) -> WindowState:
        return await self.rate_window.hit(api_key.id, api_key.rate_limit, self.clock.now())

    async def consume_daily_quota(self, api_key: ApiKey) -> WindowState:
        return await self.daily_window.hit(api_key.id, api_key.daily_quota, self.clock.now())

    async def check_rate_limit(self, key_id: str) -> bool:
        """Take one request from the key's rate window; False when full or unknown."""
        result = await self.db.execute(select(ApiKey).where(ApiKey.id == key_id))
        api_key = result.scalar_one_or_none()
        if api_key is None:
            return False
        return (await self.consume_rate_limit(api_key)).allowed

    async def check_daily_quota(self, key_id: str) -> bool:
        """Take one request from the key's daily quota; False when used up or unknown."""
        result = await self.db.execute(select(ApiKey).where(ApiKey.id == key_id))
        api_key = result.scalar_one_or_none()
        if api_key is None:
            return False
        return (await self.consume_daily_quota(api_key)).allowed

    async def admit(self, raw_key: str) -> ApiKey:
        """
        Run the full gate for one request.

        Raises:
            Unauthenticated: key failed validation
            RateLimitExceeded: rate window is full
            QuotaExceeded: daily quota is used up
        """
        api_key = await self.validate_key(raw_key)
        now = self.clock.now()

        rate = await self.consume_rate_limit(api_key)
        if not rate.allowed:
            log.warning(f"Rate limit exceeded for API key {api_key.id} ({rate.count}/{rate.ceiling})")
            raise RateLimitExceeded(retry_after=rate.retry_after(now))

        quota = await self.consume_daily_quota(api_key)
        if not quota.allowed:
            await self.rate_window.release(api_key.id, rate)
            log.warning(f"Daily quota exceeded for API key {api_key.id} ({quota.count}/{quota.ceiling})")
            raise QuotaExceeded(retry_after=quota.retry_after(now))

        return api_key

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def track_usage(
        self,
        key_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: int = 0,
    ) -> ApiKeyUsage:
        usage = ApiKeyUsage(
            api_key_id=key_id,
            endpoint=endpoint[:255],
            method=method,
            status_code=status_code,
            response_time_ms=response_time_ms,
            created_at=self.clock.now(),
        )
        self.db.add(usage)
        await self.db.flush()
        return usage

    async def get_usage_stats(self, key_id: str, days: int = 30) -> Dict[str, Any]:
        """Request totals for the last ``days`` days."""
        await self.get_key(key_id)
        since = self.clock.now() - timedelta(days=days)

        in_range = (ApiKeyUsage.api_key_id == key_id, ApiKeyUsage.created_at >= since)

        result = await self.db.execute(
            select(func.count(), func.avg(ApiKeyUsage.response_time_ms)).where(*in_range)
        )
        total, avg_ms = result.one()

        result = await self.db.execute(
            select(func.count()).where(*in_range, ApiKeyUsage.status_code >= 400)
        )
        errors = result.scalar() or 0

        result = await self.db.execute(
            select(ApiKeyUsage.endpoint, func.count().label("requests"))
            .where(*in_range)
            .group_by(ApiKeyUsage.endpoint)
            .order_by(func.count().desc())
            .limit(10)
        )
        top_endpoints = [{"endpoint": endpoint, "requests": requests} for endpoint, requests in result.all()]

        total = total or 0
        successes = total - errors

        return {
            "api_key_id": key_id,
            "days": days,
            "total_requests": total,
            "success_requests": successes,
            "error_requests": errors,
            "success_rate": round(successes / total * 100, 2) if total else 0.0,
            "avg_response_time_ms": round(float(avg_ms), 2) if avg_ms is not None else 0.0,
            "top_endpoints": top_endpoints,
        }
