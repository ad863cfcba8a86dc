"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hrdesk.auth.schemas import RequestContext
from hrdesk.config import settings
from hrdesk.database import Base, get_db
from hrdesk.main import create_app
from hrdesk.notifications.service import change_feed

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (Employee → TimeOffRequest)
import hrdesk.employees.models  # noqa: F401
import hrdesk.timeoff.models  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hrdesk.common.rate_limit import limiter
    try:
        if hasattr(limiter, "_storage"):
            limiter._storage.reset()
    except Exception:
        pass
    yield


@pytest.fixture(autouse=True)
def _reset_change_feed():
    yield
    change_feed.clear()


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

OWNER_EMAIL = "owner@acme.test"


async def seed_company(
    db: AsyncSession,
    *,
    name: str = "Acme",
    owner_email: str = OWNER_EMAIL,
):
    from hrdesk.employees.models import Company

    company = Company(
        id=uuid.uuid4(),
        name=name,
        owner_email=owner_email,
        created_at=datetime.now(timezone.utc),
    )
    db.add(company)
    await db.flush()
    return company


async def seed_employee(
    db: AsyncSession,
    company_id: uuid.UUID,
    *,
    email: str = "emp@acme.test",
    name: Optional[str] = None,
    manager_email: Optional[str] = None,
    department: Optional[str] = "Engineering",
    vacation: Decimal = Decimal("15"),
    sick: Decimal = Decimal("5"),
    personal: Decimal = Decimal("3"),
    is_active: bool = True,
):
    from hrdesk.employees.models import Employee

    emp = Employee(
        id=uuid.uuid4(),
        company_id=company_id,
        name=name or email.split("@")[0].title(),
        email=email,
        position="Engineer",
        department=department,
        manager_email=manager_email,
        vacation_balance=vacation,
        sick_balance=sick,
        personal_balance=personal,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(emp)
    await db.flush()
    return emp


def make_ctx(employee) -> RequestContext:
    """Request context acting as *employee*."""
    return RequestContext(
        company_id=employee.company_id,
        employee_id=employee.id,
        actor_email=employee.email,
    )


@pytest.fixture
async def company(db):
    return await seed_company(db)


@pytest.fixture
async def team(db, company):
    """Owner → manager → (alice, bob). Returns a dict keyed by role."""
    owner = await seed_employee(db, company.id, email=OWNER_EMAIL, name="Olivia Owner")
    manager = await seed_employee(
        db, company.id, email="manager@acme.test", name="Mia Manager",
        manager_email=OWNER_EMAIL,
    )
    alice = await seed_employee(
        db, company.id, email="alice@acme.test", name="Alice",
        manager_email="manager@acme.test",
    )
    bob = await seed_employee(
        db, company.id, email="bob@acme.test", name="Bob",
        manager_email="manager@acme.test", department="Sales",
    )
    return {"owner": owner, "manager": manager, "alice": alice, "bob": bob}


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    email: str,
    company_id: uuid.UUID,
    *,
    expired: bool = False,
    nested_company: bool = False,
) -> str:
    """Mint a token shaped like the hosted auth provider's access tokens."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(uuid.uuid4()),
        "email": email,
        "exp": exp,
        "aud": "authenticated",
    }
    if nested_company:
        payload["app_metadata"] = {"company_id": str(company_id)}
    else:
        payload["company_id"] = str(company_id)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(employee) -> dict[str, str]:
    token = create_access_token(employee.email, employee.company_id)
    return {"Authorization": f"Bearer {token}"}
