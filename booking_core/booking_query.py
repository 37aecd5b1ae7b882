"""
Read-side booking views.

Three views, each scoped by tenant first:
    - customer: the caller's own bookings, newest first
    - vendor: the schedule board for one business, in calendar order
    - single booking by reference, visible to its customer, vendor or an admin
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.request_context import RequestContext
from .errors import Forbidden, InvalidStatus, NotFound
from .lifecycle import can_view, resolve_access
from .models import Booking, BookingStatus
from .tenancy.queries import get_booking_by_ref, scoped_select
from .timegrid import parse_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int = 0
    pages: int = 0

    @classmethod
    def clamp(cls, page: Optional[int], limit: Optional[int], default_limit: int, cap: int) -> "Pagination":
        """Normalize a requested page window; out-of-range values are pulled into range."""
        page = max(page or 1, 1)
        limit = default_limit if not limit or limit < 1 else min(limit, cap)
        return cls(page=page, limit=limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def with_total(self, total: int) -> "Pagination":
        return Pagination(
            page=self.page,
            limit=self.limit,
            total=total,
            pages=math.ceil(total / self.limit) if total else 0,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BookingPage:
    items: Sequence[Booking]
    pagination: Pagination


def parse_status_filter(value: Optional[str]) -> Optional[BookingStatus]:
    if value is None or value == "":
        return None
    try:
        return BookingStatus(value)
    except ValueError:
        raise InvalidStatus(f"Unknown booking status {value!r}")


async def _paginate(session: AsyncSession, stmt: Select, window: Pagination) -> BookingPage:
    total = await session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    result = await session.execute(stmt.offset(window.offset).limit(window.limit))
    return BookingPage(items=result.scalars().all(), pagination=window.with_total(total or 0))


async def list_customer_bookings(
    session: AsyncSession,
    tenant: str,
    customer_id: str,
    window: Pagination,
    status: Optional[str] = None,
) -> BookingPage:
    stmt = scoped_select(Booking, tenant).where(Booking.customer_id == customer_id)
    status_filter = parse_status_filter(status)
    if status_filter is not None:
        stmt = stmt.where(Booking.status == status_filter)
    stmt = stmt.order_by(Booking.date.desc(), Booking.start_time.desc(), Booking.id.desc())
    return await _paginate(session, stmt, window)


async def list_vendor_bookings(
    session: AsyncSession,
    tenant: str,
    vendor_id: str,
    window: Pagination,
    date: Optional[str] = None,
    status: Optional[str] = None,
    staff_id: Optional[int] = None,
) -> BookingPage:
    """Schedule board for one vendor, ordered by date then start time."""
    stmt = scoped_select(Booking, tenant).where(Booking.vendor_id == vendor_id)
    if date:
        stmt = stmt.where(Booking.date == parse_date(date))
    status_filter = parse_status_filter(status)
    if status_filter is not None:
        stmt = stmt.where(Booking.status == status_filter)
    if staff_id is not None:
        stmt = stmt.where(Booking.staff_id == staff_id)
    stmt = stmt.order_by(Booking.date, Booking.start_time, Booking.id)
    return await _paginate(session, stmt, window)


async def get_booking_for_actor(
    session: AsyncSession,
    tenant: str,
    booking_ref: str,
    actor: RequestContext,
) -> Booking:
    booking = await get_booking_by_ref(session, tenant, booking_ref)
    if booking is None:
        raise NotFound()
    if not can_view(resolve_access(actor.user_id, actor.role, booking)):
        logger.warning(f"View denied: {booking.booking_ref} for {actor.user_id} ({actor.role})")
        raise Forbidden()
    return booking
