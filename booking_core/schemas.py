"""
Request/response models for the booking API.

Python attributes are snake_case; the wire format is camelCase
(``bookingRef``, ``startTime``). Both spellings are accepted on input.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .availability import StaffSlots
from .booking_query import BookingPage
from .models import Booking, BookingStatus, BookingStatusEvent, PaymentStatus, StaffMember


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# REQUEST MODELS
# ============================================================================

class ReserveRequest(CamelModel):
    """Request body for POST /bookings."""

    service_id: int = Field(..., ge=1, description="Service to book")
    staff_id: int = Field(..., ge=1, description="Staff member performing the service")
    date: str = Field(..., max_length=10, description="Tenant-local date, YYYY-MM-DD")
    start_time: str = Field(..., max_length=5, description='Start time, "HH:MM" 24h')
    notes: Optional[str] = Field(default=None, max_length=500)


class StatusUpdateRequest(CamelModel):
    """Request body for PATCH /bookings/{ref}/status."""

    # validated by the lifecycle so unknown values surface as InvalidStatus
    status: str = Field(..., max_length=20)
    note: Optional[str] = Field(default=None, max_length=500)


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class StatusEventOut(CamelModel):
    status: BookingStatus
    timestamp: datetime
    note: Optional[str] = None
    changed_by: Optional[str] = None


class BookingOut(CamelModel):
    booking_ref: str
    customer_id: str
    vendor_id: str
    service_id: int
    service_name: Optional[str] = None
    staff_id: int
    staff_name: Optional[str] = None
    date: str
    start_time: str
    end_time: str
    duration: int
    price: float
    currency: str
    notes: Optional[str] = None
    status: BookingStatus
    payment_status: PaymentStatus
    status_history: List[StatusEventOut]
    created_at: datetime
    updated_at: datetime


class PaginationOut(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class BookingListOut(CamelModel):
    bookings: List[BookingOut]
    pagination: PaginationOut


class StaffSlotsOut(CamelModel):
    staff_id: int
    staff_name: str
    slots: List[str]


class SlotsOut(CamelModel):
    date: str
    service_id: int
    duration: int
    availability: List[StaffSlotsOut]


class StaffOut(CamelModel):
    id: int
    name: str
    title: Optional[str] = None
    service_ids: List[int]


# ============================================================================
# CONVERTERS
# ============================================================================

def event_to_response(event: BookingStatusEvent) -> StatusEventOut:
    return StatusEventOut(
        status=event.status,
        timestamp=event.timestamp,
        note=event.note,
        changed_by=event.changed_by,
    )


def booking_to_response(booking: Booking) -> BookingOut:
    """Convert a Booking to BookingOut."""
    return BookingOut(
        booking_ref=booking.booking_ref,
        customer_id=booking.customer_id,
        vendor_id=booking.vendor_id,
        service_id=booking.service_id,
        service_name=booking.service.name if booking.service else None,
        staff_id=booking.staff_id,
        staff_name=booking.staff.name if booking.staff else None,
        date=booking.date.isoformat(),
        start_time=booking.start_time,
        end_time=booking.end_time,
        duration=booking.duration_minutes,
        price=booking.price_cents / 100,
        currency=booking.currency,
        notes=booking.notes,
        status=booking.status,
        payment_status=booking.payment_status,
        status_history=[event_to_response(event) for event in booking.status_history],
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def page_to_response(page: BookingPage) -> BookingListOut:
    return BookingListOut(
        bookings=[booking_to_response(booking) for booking in page.items],
        pagination=PaginationOut(**page.pagination.to_dict()),
    )


def slots_to_response(date: str, service_id: int, duration: int, availability: List[StaffSlots]) -> SlotsOut:
    return SlotsOut(
        date=date,
        service_id=service_id,
        duration=duration,
        availability=[
            StaffSlotsOut(staff_id=entry.staff_id, staff_name=entry.staff_name, slots=entry.slots)
            for entry in availability
        ],
    )


def staff_to_response(staff: StaffMember) -> StaffOut:
    return StaffOut(
        id=staff.id,
        name=staff.name,
        title=staff.title,
        service_ids=sorted(service.id for service in staff.services if service.is_active),
    )
