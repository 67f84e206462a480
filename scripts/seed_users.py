"""
Seed script to create a demo organization with one user per role.

Run this script after database initialization to create:
- A "demo" organization
- One active user per platform role, all members of the demo organization
- A VIEW_REPORTS grant for the instructor

Prints a bearer token for every seeded user.

Usage:
    uv run python -m scripts.seed_users
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.clock import SystemClock
from answly.core.database.engine import get_db, init_db
from answly.core.exceptions import DuplicateGrant
from answly.features.organizations.models import Organization
from answly.features.permissions.models import PermissionScope
from answly.features.permissions.store import GrantStore
from answly.features.users.auth import create_access_token
from answly.features.users.models import User, UserRole
from answly.utils import get_logger


log = get_logger(__name__)


DEMO_ORGANIZATION = ("Answly Demo Academy", "demo")

DEMO_USERS = [
    ("admin@answly.dev", "Ada Admin", UserRole.ADMIN),
    ("instructor@answly.dev", "Ivan Instructor", UserRole.INSTRUCTOR),
    ("student@answly.dev", "Tess Taker", UserRole.TEST_TAKER),
    ("reviewer@answly.dev", "Rui Reviewer", UserRole.REVIEWER),
]


async def seed_organization(db: AsyncSession) -> Organization:
    name, slug = DEMO_ORGANIZATION
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    organization = result.scalars().first()

    if organization:
        log.debug(f"Organization '{slug}' already exists, skipping")
        return organization

    organization = Organization(name=name, slug=slug)
    db.add(organization)
    await db.commit()
    await db.refresh(organization)
    log.info(f"Created organization '{slug}'")
    return organization


async def seed_users(db: AsyncSession, organization: Organization) -> list[User]:
    users = []

    for email, name, role in DEMO_USERS:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalars().first()

        if user:
            log.debug(f"User '{email}' already exists, skipping")
        else:
            user = User(email=email, name=name, role=role, organization_id=organization.id)
            db.add(user)
            log.info(f"Created {role.value} user '{email}'")

        users.append(user)

    await db.commit()
    return users


async def main():
    """Main function to seed the demo organization and users."""
    log.info("Starting user seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            organization = await seed_organization(db)
            users = await seed_users(db, organization)

            instructor = next(u for u in users if u.role == UserRole.INSTRUCTOR)
            admin = next(u for u in users if u.role == UserRole.ADMIN)
            try:
                await GrantStore(db, SystemClock()).grant(
                    user_id=instructor.id,
                    organization_id=organization.id,
                    scope=PermissionScope.VIEW_REPORTS,
                    granted_by=admin.id,
                )
                await db.commit()
            except DuplicateGrant:
                log.debug("Instructor already holds VIEW_REPORTS, skipping")

            log.info("User seeding completed successfully!")
            log.info("")
            log.info("Bearer tokens:")
            for user in users:
                log.info(f"  - {user.role.value:<10} {user.email}: {create_access_token(user.id, user.role)}")

        except Exception as e:
            log.error(f"Error seeding users: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
