"""
API key dependencies: the ``x-api-key`` gate and service wiring.
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core import config
from answly.core.clock import Clock, get_clock
from answly.core.database.engine import get_db
from answly.core.exceptions import Forbidden, MissingApiKey
from answly.features.api_keys.counters import CounterStore, MemoryCounterStore, SqlCounterStore
from answly.features.api_keys.models import ApiKey
from answly.features.api_keys.service import ApiKeyService
from answly.utils import get_logger


log = get_logger(__name__)

API_KEY_HEADERS = ("x-api-key", "x-apikey")

_memory_counters = MemoryCounterStore()


async def get_counter_store(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CounterStore:
    if config.COUNTER_BACKEND == "memory":
        return _memory_counters
    return SqlCounterStore(db)


async def get_api_key_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
    counters: Annotated[CounterStore, Depends(get_counter_store)],
) -> ApiKeyService:
    return ApiKeyService(db, clock, counters)


def get_raw_api_key(request: Request) -> Optional[str]:
    for header in API_KEY_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return None


async def require_api_key(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    service: Annotated[ApiKeyService, Depends(get_api_key_service)],
) -> ApiKey:
    """
    Admit a machine request presented with an API key.

    On success the key is attached to ``request.state.api_key`` and its
    organization to ``request.state.organization_id``, where require_scope
    and the usage middleware pick them up.

    Usage:
        @router.get("/exams")
        async def list_exams(api_key: ApiKey = Depends(require_api_key)):
            ...

    Raises:
        MissingApiKey: 400 if no key header is present
        Unauthenticated: 401 for unknown, revoked or expired keys
        RateLimitExceeded: 403 when the rate window is full
        QuotaExceeded: 403 when the daily quota is used up
    """
    raw_key = get_raw_api_key(request)
    if raw_key is None:
        raise MissingApiKey()

    api_key = await service.admit(raw_key)
    # Counted requests stay counted even if the handler fails
    await db.commit()

    request.state.api_key = api_key
    request.state.organization_id = api_key.organization_id
    log.debug(f"Admitted API key {api_key.id} for {request.method} {request.url.path}")
    return api_key


def require_api_key_scope(scope: str):
    """
    Gate plus a check that the key was issued with ``scope``.

    Raises:
        Forbidden: 403 if the key lacks the scope
    """
    async def api_key_scope_dependency(
        api_key: Annotated[ApiKey, Depends(require_api_key)],
    ) -> ApiKey:
        if scope not in (api_key.scopes or []):
            raise Forbidden(f"API key lacks scope {scope}")
        return api_key

    return api_key_scope_dependency
