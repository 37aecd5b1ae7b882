"""
Booking API routes.

Tenant is resolved from X-Tenant-ID / host on every request; the actor comes
from the bearer token. All handlers answer in the standard envelope:

    {"success": true, "data": {...}}
    {"success": false, "message": "...", "code": "..."}

Usage:
    GET   /health
    GET   /staff                         -> Active staff of the tenant (public)
    GET   /slots?serviceId&date&staffId  -> Free start times per staff (public)
    POST  /bookings                      -> Reserve a slot (customer)
    GET   /bookings/mine                 -> Caller's bookings (customer)
    GET   /bookings/vendor               -> Schedule board (merchant/admin)
    GET   /bookings/{ref}                -> Booking detail (owner/vendor/admin)
    PATCH /bookings/{ref}/status         -> Status transition
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import find_availability
from .booking_query import (
    Pagination,
    get_booking_for_actor,
    list_customer_bookings,
    list_vendor_bookings,
)
from .core.config import get_settings
from .core.db import get_session
from .core.request_context import (
    ADMIN_ROLES,
    MERCHANT_ROLES,
    RequestContext,
    get_request_context,
    require_roles,
)
from .core.responses import success_response
from .errors import ServiceNotFound
from .lifecycle import transition
from .rate_limiter import rate_limit_dependency
from .reservation import reserve
from .schemas import (
    ReserveRequest,
    StatusUpdateRequest,
    booking_to_response,
    page_to_response,
    slots_to_response,
    staff_to_response,
)
from .tenancy.context import TenantContext, get_tenant_context
from .tenancy.queries import get_service_by_id, list_active_staff
from .timegrid import parse_date

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# Router Definition
# ────────────────────────────────────────────────────────────────

router = APIRouter(tags=["bookings"])

VENDOR_BOARD_ROLES = MERCHANT_ROLES | ADMIN_ROLES


@router.get("/health")
async def health():
    return success_response({"status": "ok"})


# ────────────────────────────────────────────────────────────────
# Public Endpoints
# ────────────────────────────────────────────────────────────────

@router.get("/staff")
async def list_staff(
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    staff = await list_active_staff(session, tenant.tenant_id)
    return success_response([staff_to_response(member).to_wire() for member in staff])


@router.get("/slots")
async def get_slots(
    service_id: int = Query(..., alias="serviceId"),
    date: str = Query(...),
    staff_id: Optional[int] = Query(default=None, alias="staffId"),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Free start times for a service on a date.

    Without staffId every active staff member qualified for the service is
    computed; staff with no free slot are omitted.
    """
    settings = get_settings()
    target_date = parse_date(date)

    service = await get_service_by_id(session, tenant.tenant_id, service_id)
    if service is None:
        raise ServiceNotFound()

    availability = await find_availability(
        session,
        tenant.tenant_id,
        service,
        target_date,
        staff_id=staff_id,
        slot_interval_minutes=settings.slot_interval_minutes,
        now_local=tenant.now(),
    )
    return success_response(
        slots_to_response(target_date.isoformat(), service.id, service.duration_minutes, availability).to_wire()
    )


# ────────────────────────────────────────────────────────────────
# Authenticated Endpoints
# ────────────────────────────────────────────────────────────────

@router.post(
    "/bookings",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit_dependency())],
)
async def create_booking(
    body: ReserveRequest,
    ctx: RequestContext = Depends(get_request_context),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Reserve a slot for the calling customer.

    Possible errors:
    - 400: malformed date/time, past slot, staff not qualified
    - 401: missing or invalid token
    - 404: service not found
    - 409: slot no longer available (re-fetch /slots)
    """
    booking = await reserve(
        session,
        tenant,
        customer_id=ctx.user_id,
        service_id=body.service_id,
        staff_id=body.staff_id,
        date=body.date,
        start_time=body.start_time,
        notes=body.notes,
    )
    return success_response(booking_to_response(booking).to_wire())


@router.get("/bookings/mine")
async def my_bookings(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: Optional[int] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    settings = get_settings()
    window = Pagination.clamp(page, limit, settings.customer_page_limit, settings.customer_page_cap)
    result = await list_customer_bookings(
        session, tenant.tenant_id, ctx.user_id, window, status=status_filter
    )
    return success_response(page_to_response(result).to_wire())


@router.get("/bookings/vendor")
async def vendor_bookings(
    date: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    staff_id: Optional[int] = Query(default=None, alias="staff"),
    vendor_id: Optional[str] = Query(default=None, alias="vendorId"),
    page: Optional[int] = Query(default=None),
    limit: Optional[int] = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    """Schedule board; admins may pass vendorId, merchants always see their own."""
    require_roles(ctx, VENDOR_BOARD_ROLES)
    board_vendor = vendor_id if (vendor_id and ctx.is_admin) else ctx.user_id

    settings = get_settings()
    window = Pagination.clamp(page, limit, settings.vendor_page_limit, settings.vendor_page_cap)
    result = await list_vendor_bookings(
        session,
        tenant.tenant_id,
        board_vendor,
        window,
        date=date,
        status=status_filter,
        staff_id=staff_id,
    )
    return success_response(page_to_response(result).to_wire())


@router.get("/bookings/{booking_ref}")
async def get_booking(
    booking_ref: str,
    ctx: RequestContext = Depends(get_request_context),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    booking = await get_booking_for_actor(session, tenant.tenant_id, booking_ref, ctx)
    return success_response(booking_to_response(booking).to_wire())


@router.patch("/bookings/{booking_ref}/status")
async def update_booking_status(
    booking_ref: str,
    body: StatusUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    tenant: TenantContext = Depends(get_tenant_context),
    session: AsyncSession = Depends(get_session),
):
    """
    Move a booking through its lifecycle.

    Possible errors:
    - 400: unknown or non-target status
    - 403: actor is not the vendor/admin (customers may only cancel)
    - 404: booking not found in this tenant
    - 409: booking is already in a terminal state or the edge is not allowed
    """
    booking = await transition(
        session, tenant.tenant_id, booking_ref, body.status, ctx, note=body.note
    )
    return success_response(booking_to_response(booking).to_wire())
