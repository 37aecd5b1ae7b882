"""
Tenant-scoped query helpers.

ALL queries for tenant data MUST use these helpers or include an explicit
tenant filter. The tenant value comes from TenantContext and is trusted.

Usage:
    from booking_core.tenancy.queries import get_service_by_id, scoped_select

    service = await get_service_by_id(session, ctx.tenant_id, service_id)
    stmt = scoped_select(Booking, ctx.tenant_id).where(Booking.staff_id == staff_id)
"""

from datetime import date
from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, selectinload

from ..models import RELEASED_STATUSES, Booking, Service, StaffMember

T = TypeVar("T", bound=DeclarativeBase)


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], tenant: str) -> Select:
    """
    Create a SELECT statement pre-filtered by tenant.

    Usage:
        stmt = scoped_select(StaffMember, ctx.tenant_id).where(StaffMember.is_active.is_(True))
    """
    return select(model).where(model.tenant == tenant)


def tenant_filter(model: Type[T], tenant: str):
    """Return a SQLAlchemy filter clause for tenant."""
    return model.tenant == tenant


# ────────────────────────────────────────────────────────────────
# Catalog Queries (read-only)
# ────────────────────────────────────────────────────────────────

async def get_service_by_id(
    session: AsyncSession,
    tenant: str,
    service_id: int,
    active_only: bool = True,
) -> Optional[Service]:
    """Get a service with its qualified staff, scoped to tenant."""
    stmt = (
        scoped_select(Service, tenant)
        .where(Service.id == service_id)
        .options(selectinload(Service.staff))
    )
    if active_only:
        stmt = stmt.where(Service.is_active.is_(True))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_staff_by_id(
    session: AsyncSession,
    tenant: str,
    staff_id: int,
    active_only: bool = True,
) -> Optional[StaffMember]:
    """Get a staff member by ID, scoped to tenant."""
    stmt = scoped_select(StaffMember, tenant).where(StaffMember.id == staff_id)
    if active_only:
        stmt = stmt.where(StaffMember.is_active.is_(True))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_staff_by_ids(
    session: AsyncSession,
    tenant: str,
    staff_ids: Sequence[int],
) -> Sequence[StaffMember]:
    """Get active staff members by IDs, scoped to tenant, in schedule-board order."""
    if not staff_ids:
        return []
    result = await session.execute(
        scoped_select(StaffMember, tenant)
        .where(StaffMember.id.in_(staff_ids), StaffMember.is_active.is_(True))
        .order_by(StaffMember.sort_order, StaffMember.name, StaffMember.id)
    )
    return result.scalars().all()


async def list_active_staff(session: AsyncSession, tenant: str) -> Sequence[StaffMember]:
    """List active staff with the services they perform, scoped to tenant."""
    result = await session.execute(
        scoped_select(StaffMember, tenant)
        .where(StaffMember.is_active.is_(True))
        .options(selectinload(StaffMember.services))
        .order_by(StaffMember.sort_order, StaffMember.name, StaffMember.id)
    )
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Booking Queries
# ────────────────────────────────────────────────────────────────

async def list_live_booking_intervals(
    session: AsyncSession,
    tenant: str,
    staff_ids: Sequence[int],
    target_date: date,
):
    """
    Time ranges still blocking the given staff on a date.

    Returns lightweight rows (staff_id, date, start_time, end_time, status);
    cancelled and no-show bookings are excluded.
    """
    if not staff_ids:
        return []
    result = await session.execute(
        select(
            Booking.staff_id,
            Booking.date,
            Booking.start_time,
            Booking.end_time,
            Booking.status,
        )
        .where(
            tenant_filter(Booking, tenant),
            Booking.staff_id.in_(staff_ids),
            Booking.date == target_date,
            Booking.status.notin_(list(RELEASED_STATUSES)),
        )
        .order_by(Booking.staff_id, Booking.start_time)
    )
    return result.all()


async def get_booking_by_ref(
    session: AsyncSession,
    tenant: str,
    booking_ref: str,
    for_update: bool = False,
) -> Optional[Booking]:
    """
    Get a booking by its external reference, scoped to tenant.

    The reference is matched case-insensitively by upper-casing it.
    With ``for_update`` the row is locked until the transaction ends
    (PostgreSQL; SQLite ignores the clause).
    """
    stmt = scoped_select(Booking, tenant).where(Booking.booking_ref == booking_ref.strip().upper())
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def booking_ref_exists(session: AsyncSession, booking_ref: str) -> bool:
    """References are unique across tenants, so this check is deliberately unscoped."""
    result = await session.execute(select(Booking.id).where(Booking.booking_ref == booking_ref))
    return result.first() is not None
