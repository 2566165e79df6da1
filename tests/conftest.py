"""Pytest configuration and fixtures.

Tests run against in-memory SQLite (StaticPool, one shared connection); the
portable column types in gallery_admin.models make that possible.
"""
import os
import uuid

# Must be set before gallery_admin.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["IDENTITY_TOKEN_SECRET"] = "test-identity-secret"
os.environ["APP_ENV"] = "development"

import pytest
from httpx import AsyncClient, ASGITransport
from jose import jwt

from gallery_admin.config import settings
from gallery_admin.core.capabilities import Role
from gallery_admin.db.session import SessionLocal, engine
from gallery_admin.models import Base, User
from gallery_admin.services.audit_logger import AuditLogger
from gallery_admin.services.flag_admin import FeatureFlagAdminService
from gallery_admin.services.flag_queries import DirectFlagQuery
from gallery_admin.services.guards import AuthorizationGuard
from gallery_admin.services.identity import Principal, StaticIdentityResolver

# --- Constants ---
SUPER_ADMIN_EMAIL = "root@gallery.test"
ADMIN_EMAIL = "admin@gallery.test"
SUPPORT_EMAIL = "support@gallery.test"
USER_EMAIL = "photographer@gallery.test"


def make_token(external_id: str, **claims) -> str:
    payload = {"sub": external_id, **claims}
    return jwt.encode(payload, settings.IDENTITY_TOKEN_SECRET, algorithm=settings.IDENTITY_TOKEN_ALGORITHM)


def auth_headers(external_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(external_id)}"}


def principal_for(user: User) -> Principal:
    return Principal(id=str(user.id), role=Role(user.role), email=user.email)


# --- Per-test fixtures ---

@pytest.fixture
def db():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def users(db):
    """One user per role, keyed by role name."""
    seeded = {
        "super_admin": User(id=uuid.uuid4(), external_id="ext-root", email=SUPER_ADMIN_EMAIL, role="super_admin"),
        "admin": User(id=uuid.uuid4(), external_id="ext-admin", email=ADMIN_EMAIL, role="admin"),
        "support": User(id=uuid.uuid4(), external_id="ext-support", email=SUPPORT_EMAIL, role="support"),
        "user": User(
            id=uuid.uuid4(), external_id="ext-user", email=USER_EMAIL, role="user", plan="pro"
        ),
    }
    db.add_all(seeded.values())
    db.commit()
    return seeded


@pytest.fixture
def admin_service(db, users):
    """Flag admin service acting as the seeded admin."""
    guard = AuthorizationGuard(StaticIdentityResolver(principal_for(users["admin"])))
    return FeatureFlagAdminService(db, guard, AuditLogger(db), DirectFlagQuery())


@pytest.fixture
async def client(db, users):
    """
    Async HTTP client with get_db overridden to the test engine.
    The lifespan is not run by ASGITransport; the query backend is probed
    lazily on first use.
    """
    from gallery_admin.main import app as fastapi_app
    from gallery_admin.api.deps import get_db

    def _override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.state.flag_query_backend = None

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(users):
    return auth_headers(users["admin"].external_id)


@pytest.fixture
def support_headers(users):
    return auth_headers(users["support"].external_id)


@pytest.fixture
def user_headers(users):
    return auth_headers(users["user"].external_id)
