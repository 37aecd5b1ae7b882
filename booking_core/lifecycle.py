"""
Booking lifecycle state machine.

    pending ──► confirmed ──► in-progress ──► completed
       │            │              │
       └────────────┴──────────────┴──► cancelled | no-show

completed, cancelled and no-show are terminal. Every accepted transition
appends one status event; events are never edited or removed.

AUTHORIZATION:
    - admin roles: any transition
    - the booking's vendor: any transition
    - the booking's customer: cancel only
"""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from .core.request_context import ADMIN_ROLES, RequestContext
from .errors import Forbidden, InfrastructureError, InvalidStatus, InvalidTransition, NotFound
from .locks import booking_key, exclusive
from .models import Booking, BookingStatus, BookingStatusEvent
from .reservation import clean_notes
from .tenancy.queries import get_booking_by_ref

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.IN_PROGRESS: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

# pending is only ever the creation state
TARGET_STATUSES = frozenset(status for status in BookingStatus if status != BookingStatus.PENDING)


class BookingAccess(str, Enum):
    """Relationship of an actor to one booking, strongest first."""

    ADMIN = "admin"
    VENDOR = "vendor"
    CUSTOMER = "customer"
    NONE = "none"


def resolve_access(actor_id: Optional[str], actor_role: Optional[str], booking: Booking) -> BookingAccess:
    if actor_role in ADMIN_ROLES:
        return BookingAccess.ADMIN
    if actor_id and actor_id == booking.vendor_id:
        return BookingAccess.VENDOR
    if actor_id and actor_id == booking.customer_id:
        return BookingAccess.CUSTOMER
    return BookingAccess.NONE


def can_view(access: BookingAccess) -> bool:
    return access != BookingAccess.NONE


def can_transition(access: BookingAccess, new_status: BookingStatus) -> bool:
    if access in (BookingAccess.ADMIN, BookingAccess.VENDOR):
        return True
    if access == BookingAccess.CUSTOMER:
        return new_status == BookingStatus.CANCELLED
    return False


def parse_target_status(value) -> BookingStatus:
    """Validate a requested transition target."""
    try:
        status = BookingStatus(value)
    except ValueError:
        raise InvalidStatus(f"Unknown booking status {value!r}")
    if status not in TARGET_STATUSES:
        raise InvalidStatus(f"Bookings cannot be moved to {status.value!r}")
    return status


def check_transition(
    booking: Booking,
    new_status: BookingStatus,
    actor_id: Optional[str],
    actor_role: Optional[str],
) -> BookingAccess:
    """Raise Forbidden or InvalidTransition if ``new_status`` may not be applied now."""
    access = resolve_access(actor_id, actor_role, booking)
    if not can_transition(access, new_status):
        logger.warning(
            f"Transition denied: {booking.booking_ref} -> {new_status.value} "
            f"by {actor_id or 'anonymous'} ({actor_role})"
        )
        raise Forbidden("Not authorized to update this booking")
    if new_status not in ALLOWED_TRANSITIONS[booking.status]:
        raise InvalidTransition(
            f"Cannot change a {booking.status.value} booking to {new_status.value}"
        )
    return access


def apply_transition(
    booking: Booking,
    new_status: BookingStatus,
    changed_by: Optional[str] = None,
    note: Optional[str] = None,
) -> BookingStatusEvent:
    event = BookingStatusEvent(status=new_status, note=note, changed_by=changed_by)
    booking.status = new_status
    booking.status_history.append(event)
    return event


async def transition(
    session: AsyncSession,
    tenant: str,
    booking_ref: str,
    new_status,
    actor: RequestContext,
    note: Optional[str] = None,
) -> Booking:
    """
    Move a booking to ``new_status`` on behalf of ``actor``.

    Checked in order: InvalidStatus, NotFound, Forbidden, InvalidTransition.
    The booking row is read under the per-booking lock (and FOR UPDATE on
    PostgreSQL) so concurrent transitions apply one after the other.
    """
    target = parse_target_status(new_status)
    note = clean_notes(note)

    async with exclusive(booking_key(tenant, booking_ref)):
        try:
            booking = await get_booking_by_ref(session, tenant, booking_ref, for_update=True)
            if booking is None:
                raise NotFound()

            previous = booking.status
            try:
                check_transition(booking, target, actor.user_id, actor.role)
            except (Forbidden, InvalidTransition):
                await session.rollback()
                raise

            apply_transition(booking, target, changed_by=actor.user_id, note=note)
            await session.commit()
        except (OperationalError, InterfaceError):
            await session.rollback()
            logger.exception("Status update failed in the persistence layer")
            raise InfrastructureError()

    logger.info(
        f"Booking {booking.booking_ref}: {previous.value} -> {target.value} by {actor.user_id}"
    )
    return booking
