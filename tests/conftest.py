"""
Pytest configuration and fixtures for async database testing.

Every test gets its own SQLite database file (aiosqlite) so sessions opened
concurrently behave like separate connections to one shared store.
"""
import os

# Must be set before booking_core builds its settings and engine.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["DEFAULT_TENANT"] = "default"
os.environ["TENANT_TIMEZONE"] = "Europe/London"
os.environ["SLOT_INTERVAL_MINUTES"] = "30"

from datetime import date, datetime, timedelta

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from booking_core.core.db import Base, get_session
from booking_core.models import Service, StaffMember
from booking_core.rate_limiter import clear_rate_limits
from booking_core.tenancy.context import TenantContext, TenantResolutionSource

TENANT = "default"
OTHER_TENANT = "other"
VENDOR = "vendor-1"
CUSTOMER = "customer-1"


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def next_weekday(weekday: int, weeks_ahead: int = 1) -> date:
    """A date with Python weekday() == ``weekday`` at least one day in the future."""
    today = date.today()
    days = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days + 7 * (weeks_ahead - 1))


def next_monday() -> date:
    return next_weekday(0)


def week_with(day: int, open_time: str = "09:00", close_time: str = "17:00", breaks=()) -> list:
    """Working hours open only on ``day`` (0=Sunday .. 6=Saturday)."""
    return [
        {
            "day": d,
            "isOpen": d == day,
            "openTime": open_time,
            "closeTime": close_time,
            "breaks": [{"start": s, "end": e} for s, e in breaks] if d == day else [],
        }
        for d in range(7)
    ]


def make_token(sub: str, role: str = "customer") -> str:
    return jwt.encode({"sub": sub, "role": role}, "test-secret", algorithm="HS256")


def auth_headers(sub: str, role: str = "customer", tenant: str = TENANT) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, role)}", "X-Tenant-ID": tenant}


async def create_staff(
    session,
    name: str = "Jordan",
    tenant: str = TENANT,
    vendor_id: str = VENDOR,
    working_hours=None,
    blocked_dates=(),
    is_active: bool = True,
    sort_order: int = 0,
) -> StaffMember:
    staff = StaffMember(
        tenant=tenant,
        vendor_id=vendor_id,
        name=name,
        working_hours=working_hours if working_hours is not None else week_with(1),
        blocked_dates=list(blocked_dates),
        is_active=is_active,
        sort_order=sort_order,
    )
    session.add(staff)
    await session.commit()
    return staff


async def create_service(
    session,
    staff=(),
    name: str = "Haircut",
    tenant: str = TENANT,
    vendor_id: str = VENDOR,
    duration_minutes: int = 30,
    price_cents: int = 2500,
    sale_price_cents=None,
    currency: str = "GBP",
    is_active: bool = True,
) -> Service:
    service = Service(
        tenant=tenant,
        vendor_id=vendor_id,
        name=name,
        duration_minutes=duration_minutes,
        price_cents=price_cents,
        sale_price_cents=sale_price_cents,
        currency=currency,
        is_active=is_active,
        staff=list(staff),
    )
    session.add(service)
    await session.commit()
    return service


def storage_down(statement: str) -> OperationalError:
    return OperationalError(statement, {}, Exception("database is unavailable"))


class FailingCommitSession(AsyncSession):
    """Session whose commit fails as if the connection dropped; counts rollbacks."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.rollbacks = 0

    async def commit(self):
        raise storage_down("COMMIT")

    async def rollback(self):
        self.rollbacks += 1
        await super().rollback()


class UnavailableSession(AsyncSession):
    """Session that cannot run any statement."""

    async def execute(self, statement, *args, **kwargs):
        raise storage_down(str(statement))


# ────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_rate_limits():
    clear_rate_limits()
    yield
    clear_rate_limits()


@pytest.fixture
async def async_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking_core.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def failing_session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=FailingCommitSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def tenant_ctx():
    return TenantContext(tenant_id=TENANT, timezone="Europe/London", source=TenantResolutionSource.HEADER)


@pytest.fixture
def morning_before(tenant_ctx):
    """Factory for a tenant-local "now" early on the day before ``day``."""
    def _make(day: date) -> datetime:
        previous = day - timedelta(days=1)
        return datetime(previous.year, previous.month, previous.day, 8, 0, tzinfo=tenant_ctx.tzinfo)
    return _make


@pytest.fixture
async def client(session_factory):
    """
    FastAPI AsyncClient; every request gets a fresh session on the test database.
    """
    from booking_core.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
