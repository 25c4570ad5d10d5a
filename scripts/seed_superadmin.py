"""
Seed script to bootstrap an organization with a superadmin.

Run this script once against a fresh database to create:
- An organization
- A superadmin user belonging to it
- A bearer token for that user, printed to the log

Usage:
    python -m scripts.seed_superadmin --org-name "Acme" --org-slug acme --email admin@acme.com
"""
import argparse
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.organizations.models import Organization
from app.features.permissions.system_roles import SystemRole
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def seed_organization(db: AsyncSession, name: str, slug: str) -> Organization:
    """Return the organization with ``slug``, creating it when missing."""
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    existing = result.scalars().first()
    if existing:
        log.info(f"Organization '{slug}' already exists, skipping")
        return existing

    organization = Organization(name=name, slug=slug)
    db.add(organization)
    await db.flush()
    log.info(f"Created organization '{slug}' ({organization.id})")
    return organization


async def seed_superadmin(db: AsyncSession, organization: Organization, email: str, name: str) -> User:
    """
    Return the user with ``email`` as a superadmin of ``organization``.

    An existing user is promoted rather than duplicated.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()

    if user is None:
        user = User(email=email, name=name, organization_id=organization.id, role=SystemRole.SUPERADMIN.value)
        db.add(user)
        log.info(f"Created superadmin '{email}'")
    else:
        user.role = SystemRole.SUPERADMIN.value
        user.custom_role_id = None
        user.organization_id = organization.id
        log.info(f"Promoted existing user '{email}' to superadmin")

    await db.flush()
    return user


async def main(args: argparse.Namespace):
    """Main function to seed the organization and its superadmin."""
    log.info("Starting superadmin seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            organization = await seed_organization(db, args.org_name, args.org_slug)
            user = await seed_superadmin(db, organization, args.email, args.name)
            await db.commit()
        except Exception as e:
            log.error(f"Error seeding superadmin: {e}", exc_info=True)
            await db.rollback()
            raise

        log.info("Superadmin seeding completed successfully!")
        log.info(f"  organization: {organization.id}")
        log.info(f"  user:         {user.id}")
        log.info(f"  token:        {create_access_token(user.id)}")
        break  # Only use first session


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an organization and its first superadmin")
    parser.add_argument("--org-name", required=True)
    parser.add_argument("--org-slug", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Administrator")
    return parser.parse_args()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
