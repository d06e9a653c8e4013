"""Pytest configuration and fixtures for the storefront security tests.

Every test gets its own SQLite database file (aiosqlite).  A file rather
than ``:memory:`` so the concurrent detector sessions each open a real
connection and all see the same committed rows.

Seeding fixtures are factories: each call commits in its own session
and accepts an explicit ``created_at`` so time windows can be tested
without sleeping.
"""

import uuid
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.jwt import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models.activity_log import ActivityAction, ActivityLog
from app.models.order import Order, OrderStatus
from app.models.user import User, UserRole
from app.services.audit_log import AuditLogService, get_audit_log_service


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a throwaway SQLite database with the full schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for assertions against what the code under test wrote."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_service(session_factory) -> AuditLogService:
    return AuditLogService(session_factory)


@pytest_asyncio.fixture
async def client(session_factory, audit_service) -> AsyncGenerator[AsyncClient, None]:
    """Create test client wired to the test database and service."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_log_service] = lambda: audit_service

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest.fixture
def create_user(session_factory):
    """Factory: insert a user, optionally back-dating the account."""

    async def _create(
        email: str | None = None,
        name: str | None = "Test User",
        role: UserRole = UserRole.USER,
        created_at: datetime | None = None,
        is_active: bool = True,
    ) -> User:
        async with session_factory() as db:
            user = User(
                email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
                name=name,
                role=role,
                is_active=is_active,
                created_at=created_at or datetime.utcnow(),
            )
            db.add(user)
            await db.commit()
            return user

    return _create


@pytest.fixture
def create_log(session_factory):
    """Factory: insert one activity event at a chosen time."""

    async def _create(
        user_id: str,
        action: ActivityAction,
        created_at: datetime | None = None,
        ip_address: str = "203.0.113.10",
        user_agent: str = "pytest",
        metadata: dict | None = None,
        archived: bool = False,
    ) -> ActivityLog:
        async with session_factory() as db:
            entry = ActivityLog(
                user_id=user_id,
                action=action,
                created_at=created_at or datetime.utcnow(),
                ip_address=ip_address,
                user_agent=user_agent,
                metadata_=metadata,
                archived=archived,
            )
            db.add(entry)
            await db.commit()
            return entry

    return _create


@pytest.fixture
def create_order(session_factory):
    """Factory: insert an order (total in cents) at a chosen time."""

    async def _create(
        user_id: str,
        total: int = 2500,
        created_at: datetime | None = None,
        status: OrderStatus = OrderStatus.PENDING,
    ) -> Order:
        async with session_factory() as db:
            order = Order(
                user_id=user_id,
                order_number=f"ORD-{uuid.uuid4().hex[:10].upper()}",
                total=total,
                status=status,
                created_at=created_at or datetime.utcnow(),
            )
            db.add(order)
            await db.commit()
            return order

    return _create


@pytest.fixture
def now() -> datetime:
    """Fixed reference time passed to detectors as their scan time."""
    return datetime.utcnow().replace(microsecond=0)


@pytest_asyncio.fixture
async def admin_user(create_user) -> User:
    return await create_user(email="admin@example.com", name="Admin", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def customer(create_user) -> User:
    return await create_user(email="customer@example.com", name="Customer")


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    token = create_access_token(user_id=admin_user.id, role=admin_user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(customer: User) -> dict:
    token = create_access_token(user_id=customer.id, role=customer.role.value)
    return {"Authorization": f"Bearer {token}"}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "security: Security alert detection tests")
