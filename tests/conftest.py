"""
Shared fixtures: a throwaway SQLite database, a frozen clock, an HTTP
client bound to the app, and factories for users and organizations.
"""
import os
import tempfile
from datetime import datetime, timezone

# Must be set before answly is imported; the engine reads it at import time
_TMP_DIR = tempfile.mkdtemp(prefix="answly-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/answly-test.db"
os.environ["SESSION_RATE_LIMIT_ENABLED"] = "0"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from httpx import ASGITransport, AsyncClient

from answly.core.clock import FrozenClock
from answly.core.database.engine import AsyncSessionLocal, drop_db, init_db
from answly.features.organizations.models import Organization
from answly.features.users.auth import create_access_token
from answly.features.users.models import User, UserRole
from answly.main import app


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test."""
    await drop_db()
    await init_db()
    yield
    await drop_db()


@pytest.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


# ============================================================================
# Clock / HTTP
# ============================================================================


@pytest.fixture
def clock():
    """Frozen 30 seconds into a minute, so the 60s rate window has 30s left."""
    return FrozenClock(datetime(2026, 3, 10, 12, 0, 30, tzinfo=timezone.utc))


@pytest.fixture
async def client(clock):
    previous = app.state.clock
    app.state.clock = clock
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.clock = previous


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
async def organization(db):
    org = Organization(name="Acme Prep", slug="acme")
    db.add(org)
    await db.commit()
    await db.refresh(org)
    return org


@pytest.fixture
async def other_organization(db):
    org = Organization(name="Globex Tutoring", slug="globex")
    db.add(org)
    await db.commit()
    await db.refresh(org)
    return org


@pytest.fixture
def make_user(db):
    """Factory creating committed users."""
    counter = {"n": 0}

    async def _make(role=UserRole.TEST_TAKER, organization_id=None, is_active=True, name=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            name=name or f"User {counter['n']}",
            role=role,
            organization_id=organization_id,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


@pytest.fixture
async def admin(make_user):
    return await make_user(role=UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
async def student(make_user, organization):
    return await make_user(role=UserRole.TEST_TAKER, organization_id=organization.id, name="Tess Taker")


@pytest.fixture
def auth():
    """Build Authorization headers for a user."""
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers
