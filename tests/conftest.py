"""Shared test fixtures — async DB, client, auth helpers, seed factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
Seeded rows are committed: approval and rejection manage their own
transaction and a rollback there would discard uncommitted seeds.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_engine.common.cache import InMemoryBalanceCache
from leave_engine.common.constants import LeaveRequestStatus, LeaveType, UserRole
from leave_engine.config import settings
from leave_engine.database import Base, get_db
from leave_engine.leave.calculation import LeaveCalculationService, current_year
from leave_engine.leave.catalog import load_catalog
from leave_engine.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import leave_engine.auth.models  # noqa: F401
import leave_engine.common.audit  # noqa: F401
import leave_engine.leave.models  # noqa: F401

from leave_engine.auth.models import EmploymentRecord
from leave_engine.leave.models import LeaveBalance, LeaveRequest

# ── SQLite compat: compile PG-specific types to TEXT ────────────────

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
    from leave_engine.common.rate_limit import limiter
    limiter.reset()
    yield


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


# ── Clock / cache / calculator ──────────────────────────────────────

class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> InMemoryBalanceCache:
    return InMemoryBalanceCache(default_ttl=300, clock=clock)


@pytest.fixture(scope="session")
def catalog():
    return load_catalog()


@pytest.fixture
def calculator(cache, catalog) -> LeaveCalculationService:
    return LeaveCalculationService(cache, catalog)


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(cache, catalog):
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app(cache=cache, catalog=catalog)
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


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    user_id: uuid.UUID,
    role: UserRole = UserRole.eor,
    *,
    client_id: Optional[uuid.UUID] = None,
) -> str:
    """Mint a bearer token the way the identity provider would."""
    payload = {"sub": str(user_id), "role": role.value}
    if client_id is not None:
        payload["client_id"] = str(client_id)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(
    user_id: uuid.UUID,
    role: UserRole = UserRole.eor,
    *,
    client_id: Optional[uuid.UUID] = None,
) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role, client_id=client_id)}"}


# ── Seed factories ──────────────────────────────────────────────────

async def seed_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    leave_type: LeaveType = LeaveType.ANNUAL_LEAVE_IN,
    country_code: str = "IN",
    total_days: str = "21",
    used_days: str = "0",
    accrual_rate: str = "1.75",
    year: Optional[int] = None,
) -> LeaveBalance:
    total, used = Decimal(total_days), Decimal(used_days)
    balance = LeaveBalance(
        user_id=user_id,
        country_code=country_code,
        leave_type=leave_type,
        year=year or current_year(),
        total_days=total,
        used_days=used,
        available_days=total - used,
        accrual_rate=Decimal(accrual_rate),
    )
    db.add(balance)
    await db.commit()
    return balance


async def seed_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    status: LeaveRequestStatus = LeaveRequestStatus.submitted,
    leave_type: LeaveType = LeaveType.ANNUAL_LEAVE_IN,
    country_code: str = "IN",
    start_date: date = date(2025, 1, 10),
    end_date: date = date(2025, 1, 12),
    total_days: str = "3",
    is_paid: bool = True,
    payroll_period_id: Optional[uuid.UUID] = None,
) -> LeaveRequest:
    leave_req = LeaveRequest(
        user_id=user_id,
        country_code=country_code,
        leave_type=leave_type,
        start_date=start_date,
        end_date=end_date,
        total_days=Decimal(total_days),
        status=status,
        is_paid=is_paid,
        payroll_period_id=payroll_period_id,
        approvals=[],
    )
    db.add(leave_req)
    await db.commit()
    return leave_req


async def seed_employment(
    db: AsyncSession,
    user_id: uuid.UUID,
    client_id: uuid.UUID,
) -> EmploymentRecord:
    record = EmploymentRecord(user_id=user_id, client_id=client_id)
    db.add(record)
    await db.commit()
    return record
