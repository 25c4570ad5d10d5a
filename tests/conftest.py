"""Shared pytest fixtures for the authorization service tests."""

import os
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

# The engine reads its URL at import time, so point it at a scratch database first
_DB_DIR = tempfile.mkdtemp(prefix="cms-auth-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database.engine import AsyncSessionLocal, drop_db, init_db  # noqa: E402
from app.features.organizations.models import Organization  # noqa: E402
from app.features.permissions.resolver import role_cache  # noqa: E402
from app.features.users.models import User  # noqa: E402
from app.main import app  # noqa: E402
from tests.utils import auth_headers  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def _reset_database() -> AsyncIterator[None]:
    """Recreate every table and empty the role cache before each test."""

    await drop_db()
    await init_db()
    role_cache.clear()
    yield
    role_cache.clear()


@pytest_asyncio.fixture()
async def db_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture()
async def async_client() -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the FastAPI app."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture()
async def seed_identity() -> dict[str, Any]:
    """
    Create two organizations and one user per system role in the first.

    Returns organization ids, user ids and ready-made auth headers keyed by
    role name. ``outsider`` is an admin of the second organization.
    """

    async with AsyncSessionLocal() as session:
        acme = Organization(name="Acme Corp", slug="acme")
        globex = Organization(name="Globex Corp", slug="globex")
        session.add_all([acme, globex])
        await session.flush()

        users = {
            "superadmin": User(email="root@acme.com", name="Root", organization_id=acme.id, role="superadmin"),
            "admin": User(email="admin@acme.com", name="Ada", organization_id=acme.id, role="admin"),
            "editor": User(email="editor@acme.com", name="Eddie", organization_id=acme.id, role="editor"),
            "contributor": User(
                email="contributor@acme.com", name="Cora", organization_id=acme.id, role="contributor"
            ),
            "viewer": User(email="viewer@acme.com", name="Vic", organization_id=acme.id, role="viewer"),
            "outsider": User(email="admin@globex.com", name="Gus", organization_id=globex.id, role="admin"),
        }
        session.add_all(users.values())
        await session.commit()

        return {
            "organization_id": acme.id,
            "other_organization_id": globex.id,
            "users": {name: user.id for name, user in users.items()},
            "headers": {name: auth_headers(user.id) for name, user in users.items()},
        }
