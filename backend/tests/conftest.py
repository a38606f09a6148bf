"""
CareNote Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets a fresh in-memory SQLite database (aiosqlite) with
       the full schema; the API client shares it through a dependency
       override of `get_db_session`.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── db_engine:         in-memory SQLite engine with all tables
    ├── db_session:        AsyncSession for arranging and asserting
    ├── test_client:       HTTPX AsyncClient wired to the FastAPI app
    ├── make_owner:        registers a clinic owner with a trial subscription
    ├── make_member:       adds an accepted member under an owner
    ├── make_super_admin:  creates an elevated user without a subscription
    └── auth_headers:      Bearer header for a user
"""

import os

# Override settings for testing BEFORE any carenote imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-not-for-production"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "1"
os.environ["RETRY_JITTER"] = "0"
os.environ["CORTI_TENANT_NAME"] = "test-tenant"
os.environ["CORTI_CLIENT_ID"] = "test-client"
os.environ["CORTI_CLIENT_SECRET"] = "test-client-secret"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce noise during tests

import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import carenote.models  # noqa: F401
from carenote.database import Base, get_db_session
from carenote.models.user import ROLE_SUPER_ADMIN, User
from carenote.security import create_access_token, hash_password
from carenote.services.auth_service import auth_service

PASSWORD = "Klinik2024"


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    """
    One in-memory database per test.

    StaticPool keeps a single connection so every session sees the same
    database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Session used by tests to arrange data and assert on it.

    Data the API should see must be committed; call `refresh()` on objects
    after a request changed them.
    """
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def test_client(session_factory):
    """
    HTTPX AsyncClient talking to the FastAPI app over ASGITransport.

    Usage:
        async def test_pricing(test_client):
            response = await test_client.get("/api/pricing")
            assert response.status_code == 200
    """
    from carenote.main import app

    async def override_get_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# ══════════════════════════════════════════════════════════════════════════
# Factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_owner(db_session):
    """Registers an owner through AuthService, so the trial subscription is real."""

    async def _make(
        email: str = "owner@klinik.dk",
        num_licenses: int = 1,
        billing_interval: str = "monthly",
        workplace: str = "Klinik Nord",
        verified: bool = True,
    ) -> User:
        registration = await auth_service.register(
            db_session,
            email=email,
            password=PASSWORD,
            name="Clinic Owner",
            num_licenses=num_licenses,
            billing_interval=billing_interval,
            workplace=workplace,
        )
        registration.user.email_verified = verified
        await db_session.commit()
        return registration.user

    return _make


@pytest.fixture
def make_member(db_session):
    """An accepted, active member of `owner`'s clinic."""

    async def _make(owner: User, email: str = "member@klinik.dk", can_invite: bool = False) -> User:
        member = User(
            id=uuid.uuid4(),
            email=email,
            name="Clinic Member",
            password_hash=hash_password(PASSWORD),
            workplace=owner.workplace,
            invited_by=owner.id,
            is_company_admin=False,
            can_invite=can_invite,
            is_active=True,
            email_verified=True,
        )
        db_session.add(member)
        await db_session.commit()
        return member

    return _make


@pytest.fixture
def make_super_admin(db_session):
    async def _make(email: str = "admin@carenote.dk") -> User:
        admin = User(
            id=uuid.uuid4(),
            email=email,
            name="Platform Admin",
            password_hash=hash_password(PASSWORD),
            role=ROLE_SUPER_ADMIN,
            is_active=True,
            email_verified=True,
        )
        db_session.add(admin)
        await db_session.commit()
        return admin

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
