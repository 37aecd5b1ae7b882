"""
Booking reservation.

reserve() re-validates the requested slot against the latest committed state
and persists the booking inside one exclusion scope per (tenant, staff, date),
so two overlapping reservations for the same staff member and day can never
both succeed.

Possible errors, in the order they are checked:
    - InvalidFormat / InvalidRange: malformed date or start time
    - PastBooking: date + start time not after the tenant-local "now"
    - ServiceNotFound: unknown, inactive or other tenant's service
    - StaffNotQualified: staff not listed on the service
    - SlotUnavailable: start time not free at reservation time (incl. lost races)
"""

import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import compute_slots_for_staff
from .core.config import get_settings
from .errors import (
    InfrastructureError,
    InvalidRange,
    PastBooking,
    ServiceNotFound,
    SlotUnavailable,
    StaffNotQualified,
)
from .locks import acquire_advisory_lock, exclusive, staff_day_key
from .models import Booking, BookingStatus, BookingStatusEvent
from .tenancy.context import TenantContext
from .tenancy.queries import booking_ref_exists, get_service_by_id
from .timegrid import combine, parse_date, to_clock, to_minutes

logger = logging.getLogger(__name__)

BOOKING_REF_PREFIX = "BKG-"
MAX_NOTES_LENGTH = 500


def generate_booking_ref() -> str:
    """BKG- followed by 8 uppercase hex characters."""
    return BOOKING_REF_PREFIX + secrets.token_hex(4).upper()


async def allocate_booking_ref(session: AsyncSession, attempts: int) -> str:
    for _ in range(max(attempts, 1)):
        ref = generate_booking_ref()
        if not await booking_ref_exists(session, ref):
            return ref
        logger.warning(f"Booking reference collision on {ref}, retrying")
    raise InfrastructureError("Could not allocate a booking reference")


def clean_notes(notes: Optional[str]) -> Optional[str]:
    if notes is None:
        return None
    notes = notes.strip()
    if not notes:
        return None
    if len(notes) > MAX_NOTES_LENGTH:
        raise InvalidRange(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")
    return notes


async def reserve(
    session: AsyncSession,
    tenant: TenantContext,
    customer_id: str,
    service_id: int,
    staff_id: int,
    date: str,
    start_time: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    slot_interval_minutes: Optional[int] = None,
) -> Booking:
    """
    Create a pending booking for ``customer_id``.

    Args:
        session: Database session; committed on success, rolled back on conflict
        tenant: Resolved tenant (partition key and local clock)
        date: Tenant-local calendar date, YYYY-MM-DD
        start_time: "HH:MM"
        now: Override for the tenant-local clock
        slot_interval_minutes: Step used for the availability re-check
            (defaults to SLOT_INTERVAL_MINUTES)

    Returns:
        The persisted Booking with its service, staff and status history loaded
    """
    settings = get_settings()
    interval = slot_interval_minutes or settings.slot_interval_minutes

    target_date = parse_date(date)
    start_min = to_minutes(start_time)
    notes = clean_notes(notes)

    now_local = now or tenant.now()
    if combine(target_date, start_time, tenant.tzinfo) <= now_local:
        raise PastBooking()

    service = await get_service_by_id(session, tenant.tenant_id, service_id)
    if service is None:
        raise ServiceNotFound()

    staff = next((member for member in service.staff if member.id == staff_id), None)
    if staff is None:
        raise StaffNotQualified()

    key = staff_day_key(tenant.tenant_id, staff_id, target_date)
    async with exclusive(key):
        try:
            await acquire_advisory_lock(session, key)

            free = await compute_slots_for_staff(
                session, tenant.tenant_id, staff_id, target_date, service.duration_minutes, interval
            )
            if start_time not in free:
                await session.rollback()
                logger.warning(
                    f"Slot unavailable: tenant={tenant.tenant_id} staff={staff_id} "
                    f"date={target_date} start={start_time}"
                )
                raise SlotUnavailable()

            end_time = to_clock(start_min + service.duration_minutes)
            booking_ref = await allocate_booking_ref(session, settings.booking_ref_attempts)

            booking = Booking(
                booking_ref=booking_ref,
                tenant=tenant.tenant_id,
                customer_id=customer_id,
                vendor_id=service.vendor_id,
                date=target_date,
                start_time=start_time,
                end_time=end_time,
                duration_minutes=service.duration_minutes,
                price_cents=service.effective_price_cents,
                currency=service.currency,
                notes=notes,
                status=BookingStatus.PENDING,
                status_history=[
                    BookingStatusEvent(status=BookingStatus.PENDING, changed_by=customer_id)
                ],
            )
            booking.service = service
            booking.staff = staff
            session.add(booking)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.warning(
                f"Lost reservation race: tenant={tenant.tenant_id} staff={staff_id} "
                f"date={target_date} start={start_time}"
            )
            raise SlotUnavailable()
        except (OperationalError, InterfaceError):
            await session.rollback()
            logger.exception("Reservation failed in the persistence layer")
            raise InfrastructureError()

    logger.info(
        f"Booking created: {booking.booking_ref} customer={customer_id} staff={staff_id} "
        f"date={target_date} start={start_time}"
    )
    return booking
