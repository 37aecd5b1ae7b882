"""
Tests for booking reservation.

Covers the precondition order, snapshots, slot/booking consistency and the
exclusion guarantee under concurrent requests.

Run with: pytest tests/test_reservation.py -v
"""

import asyncio
import re
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from booking_core.availability import compute_slots_for_staff, overlaps
from booking_core.errors import (
    InfrastructureError,
    InvalidFormat,
    InvalidRange,
    PastBooking,
    ServiceNotFound,
    SlotUnavailable,
    StaffNotQualified,
)
from booking_core.locks import active_lock_count
from booking_core.models import Booking, BookingStatus, Service
from booking_core.reservation import generate_booking_ref, reserve
from booking_core.tenancy.context import TenantContext
from booking_core.timegrid import to_minutes

from conftest import OTHER_TENANT, TENANT, VENDOR, create_service, create_staff

LONDON = ZoneInfo("Europe/London")
MONDAY = date(2030, 1, 7)
MONDAY_STR = MONDAY.isoformat()
SUNDAY_MORNING = datetime(2030, 1, 6, 8, 0, tzinfo=LONDON)


@dataclass
class Catalog:
    service_id: int
    staff_id: int
    unqualified_staff_id: int


@pytest.fixture
async def catalog(session):
    staff = await create_staff(session, name="Alex")
    unqualified = await create_staff(session, name="Sam")
    service = await create_service(session, staff=[staff], duration_minutes=30, price_cents=2500)
    return Catalog(service_id=service.id, staff_id=staff.id, unqualified_staff_id=unqualified.id)


async def book(session_factory, tenant_ctx, service_id, staff_id, start, customer="customer-1", **kwargs):
    async with session_factory() as session:
        return await reserve(
            session,
            tenant_ctx,
            customer_id=customer,
            service_id=service_id,
            staff_id=staff_id,
            date=kwargs.pop("date", MONDAY_STR),
            start_time=start,
            now=kwargs.pop("now", SUNDAY_MORNING),
            **kwargs,
        )


# ============================================================================
# HAPPY PATH
# ============================================================================

class TestReserve:
    """A successful reservation and what it records."""

    async def test_creates_pending_booking(self, session_factory, tenant_ctx, catalog):
        booking = await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:00")

        assert re.fullmatch(r"BKG-[0-9A-F]{8}", booking.booking_ref)
        assert booking.status == BookingStatus.PENDING
        assert booking.tenant == TENANT
        assert booking.vendor_id == VENDOR
        assert booking.customer_id == "customer-1"
        assert booking.date == MONDAY
        assert (booking.start_time, booking.end_time) == ("10:00", "10:30")
        assert [event.status for event in booking.status_history] == [BookingStatus.PENDING]
        assert booking.status_history[-1].status == booking.status

    async def test_snapshots_duration_price_and_currency(self, session_factory, session, tenant_ctx):
        staff = await create_staff(session)
        service = await create_service(
            session, staff=[staff], duration_minutes=90, price_cents=9000,
            sale_price_cents=7500, currency="EUR",
        )
        service_id, staff_id = service.id, staff.id

        booking = await book(session_factory, tenant_ctx, service_id, staff_id, "09:00")
        assert booking.duration_minutes == 90
        assert booking.end_time == "10:30"
        assert booking.price_cents == 7500
        assert booking.currency == "EUR"

        async with session_factory() as other:
            stored = await other.get(Service, service_id)
            stored.duration_minutes = 30
            stored.price_cents = 100
            stored.sale_price_cents = None
            await other.commit()

        async with session_factory() as fresh:
            reloaded = (
                await fresh.execute(select(Booking).where(Booking.booking_ref == booking.booking_ref))
            ).scalar_one()
            assert (reloaded.duration_minutes, reloaded.end_time, reloaded.price_cents) == (90, "10:30", 7500)

    async def test_list_price_used_without_sale_price(self, session_factory, tenant_ctx, catalog):
        booking = await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "09:30")
        assert booking.price_cents == 2500
        assert booking.currency == "GBP"

    async def test_reserved_start_disappears_from_availability(self, session_factory, tenant_ctx, catalog):
        await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "11:00")

        async with session_factory() as session:
            slots = await compute_slots_for_staff(session, TENANT, catalog.staff_id, MONDAY, 30)
        assert "11:00" not in slots
        assert "10:30" in slots
        assert "11:30" in slots

    async def test_notes_trimmed_and_capped(self, session_factory, tenant_ctx, catalog):
        booking = await book(
            session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "12:00", notes="  window seat  "
        )
        assert booking.notes == "window seat"

        with pytest.raises(InvalidRange):
            await book(
                session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "12:30", notes="x" * 501
            )

    async def test_cancelled_slot_can_be_rebooked(self, session_factory, tenant_ctx, catalog):
        first = await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "14:00")
        async with session_factory() as session:
            stored = (
                await session.execute(select(Booking).where(Booking.id == first.id))
            ).scalar_one()
            stored.status = BookingStatus.CANCELLED
            await session.commit()

        second = await book(
            session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "14:00", customer="customer-2"
        )
        assert second.start_time == "14:00"
        assert second.booking_ref != first.booking_ref

    def test_generated_refs_have_expected_shape(self):
        refs = {generate_booking_ref() for _ in range(50)}
        assert all(re.fullmatch(r"BKG-[0-9A-F]{8}", ref) for ref in refs)
        assert len(refs) > 1


# ============================================================================
# PRECONDITIONS
# ============================================================================

class TestPreconditionOrder:
    """Each failure mode is distinct and checked in order."""

    async def test_malformed_time(self, session_factory, tenant_ctx):
        with pytest.raises(InvalidFormat):
            await book(session_factory, tenant_ctx, 999, 999, "10am")

    async def test_malformed_date(self, session_factory, tenant_ctx):
        with pytest.raises(InvalidFormat):
            await book(session_factory, tenant_ctx, 999, 999, "10:00", date="07/01/2030")

    async def test_past_booking_checked_before_service(self, session_factory, tenant_ctx):
        with pytest.raises(PastBooking):
            await book(session_factory, tenant_ctx, 999, 999, "10:00", date="2020-01-06")

    async def test_start_equal_to_now_is_past(self, session_factory, tenant_ctx, catalog):
        now = datetime(2030, 1, 7, 10, 0, tzinfo=LONDON)
        with pytest.raises(PastBooking):
            await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:00", now=now)

        booking = await book(
            session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:30", now=now
        )
        assert booking.start_time == "10:30"

    async def test_unknown_service(self, session_factory, tenant_ctx, catalog):
        with pytest.raises(ServiceNotFound):
            await book(session_factory, tenant_ctx, catalog.service_id + 100, catalog.staff_id, "10:00")

    async def test_inactive_service(self, session_factory, session, tenant_ctx):
        staff = await create_staff(session)
        service = await create_service(session, staff=[staff], is_active=False)
        service_id, staff_id = service.id, staff.id

        with pytest.raises(ServiceNotFound):
            await book(session_factory, tenant_ctx, service_id, staff_id, "10:00")

    async def test_other_tenants_service(self, session_factory, tenant_ctx, catalog):
        other = TenantContext(tenant_id=OTHER_TENANT, timezone="Europe/London")
        with pytest.raises(ServiceNotFound):
            await book(session_factory, other, catalog.service_id, catalog.staff_id, "10:00")

    async def test_staff_not_qualified_checked_before_slot(self, session_factory, tenant_ctx, catalog):
        with pytest.raises(StaffNotQualified):
            await book(session_factory, tenant_ctx, catalog.service_id, catalog.unqualified_staff_id, "03:00")

    async def test_time_outside_working_hours(self, session_factory, tenant_ctx, catalog):
        with pytest.raises(SlotUnavailable):
            await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "17:00")

    async def test_off_grid_start(self, session_factory, tenant_ctx, catalog):
        with pytest.raises(SlotUnavailable):
            await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:10")

    async def test_inactive_staff_has_no_slots(self, session_factory, session, tenant_ctx):
        staff = await create_staff(session, is_active=False)
        service = await create_service(session, staff=[staff])
        service_id, staff_id = service.id, staff.id

        with pytest.raises(SlotUnavailable):
            await book(session_factory, tenant_ctx, service_id, staff_id, "10:00")


class TestScenario:
    async def test_reserving_taken_slot_is_unavailable(self, session_factory, tenant_ctx, catalog):
        """Staff open Mon 09:00-17:00, booking 10:00-10:30 exists; reserving 10:00 fails."""
        await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:00")

        with pytest.raises(SlotUnavailable):
            await book(
                session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:00", customer="customer-2"
            )


# ============================================================================
# CONCURRENCY
# ============================================================================

async def live_intervals(session_factory, staff_id):
    async with session_factory() as session:
        rows = (
            await session.execute(
                select(Booking.start_time, Booking.end_time).where(
                    Booking.staff_id == staff_id,
                    Booking.date == MONDAY,
                    Booking.status.notin_([BookingStatus.CANCELLED, BookingStatus.NO_SHOW]),
                )
            )
        ).all()
    return [(to_minutes(start), to_minutes(end)) for start, end in rows]


def assert_no_overlaps(intervals):
    for i, (start, end) in enumerate(intervals):
        for other_start, other_end in intervals[i + 1:]:
            assert not overlaps(start, end, other_start, other_end)


class TestConcurrentReservations:
    """N concurrent requests for the same slot: one wins, the rest get SlotUnavailable."""

    async def test_same_slot_exactly_one_success(self, session_factory, tenant_ctx, catalog):
        attempts = 8
        results = await asyncio.gather(
            *[
                book(
                    session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:00",
                    customer=f"customer-{i}",
                )
                for i in range(attempts)
            ],
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, Booking)]
        failures = [r for r in results if isinstance(r, SlotUnavailable)]
        assert len(successes) == 1
        assert len(failures) == attempts - 1

        intervals = await live_intervals(session_factory, catalog.staff_id)
        assert len(intervals) == 1
        assert active_lock_count() == 0

    async def test_overlapping_starts_never_double_book(self, session_factory, session, tenant_ctx):
        staff = await create_staff(session)
        service = await create_service(session, staff=[staff], duration_minutes=60)
        service_id, staff_id = service.id, staff.id

        starts = ["10:00", "10:30", "11:00", "10:00", "10:30"]
        results = await asyncio.gather(
            *[
                book(session_factory, tenant_ctx, service_id, staff_id, start, customer=f"c{i}")
                for i, start in enumerate(starts)
            ],
            return_exceptions=True,
        )

        assert all(isinstance(r, (Booking, SlotUnavailable)) for r in results)
        assert any(isinstance(r, Booking) for r in results)
        assert_no_overlaps(await live_intervals(session_factory, staff_id))

    async def test_different_staff_do_not_block_each_other(self, session_factory, session, tenant_ctx):
        alex = await create_staff(session, name="Alex")
        sam = await create_staff(session, name="Sam")
        service = await create_service(session, staff=[alex, sam])
        service_id, alex_id, sam_id = service.id, alex.id, sam.id

        results = await asyncio.gather(
            book(session_factory, tenant_ctx, service_id, alex_id, "10:00", customer="c1"),
            book(session_factory, tenant_ctx, service_id, sam_id, "10:00", customer="c2"),
        )

        assert {booking.staff_id for booking in results} == {alex_id, sam_id}


# ============================================================================
# PERSISTENCE FAILURES
# ============================================================================

class TestPersistenceFailures:
    async def test_commit_failure_is_infrastructure_error(
        self, failing_session_factory, session_factory, tenant_ctx, catalog
    ):
        async with failing_session_factory() as session:
            with pytest.raises(InfrastructureError) as exc_info:
                await reserve(
                    session,
                    tenant_ctx,
                    customer_id="customer-1",
                    service_id=catalog.service_id,
                    staff_id=catalog.staff_id,
                    date=MONDAY_STR,
                    start_time="10:00",
                    now=SUNDAY_MORNING,
                )
            assert session.rollbacks == 1

        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "DATABASE_ERROR"
        assert active_lock_count() == 0
        assert await live_intervals(session_factory, catalog.staff_id) == []

    async def test_slot_still_bookable_after_failure(
        self, failing_session_factory, session_factory, tenant_ctx, catalog
    ):
        async with failing_session_factory() as session:
            with pytest.raises(InfrastructureError):
                await reserve(
                    session,
                    tenant_ctx,
                    customer_id="customer-1",
                    service_id=catalog.service_id,
                    staff_id=catalog.staff_id,
                    date=MONDAY_STR,
                    start_time="10:00",
                    now=SUNDAY_MORNING,
                )

        booking = await book(session_factory, tenant_ctx, catalog.service_id, catalog.staff_id, "10:00")
        assert booking.start_time == "10:00"
