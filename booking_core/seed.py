import logging

from sqlalchemy import select

from .core.config import get_settings
from .models import DEFAULT_WORKING_HOURS, Service, StaffMember

logger = logging.getLogger(__name__)

DEMO_VENDOR_ID = "demo-vendor"


def _with_lunch_break(hours: list) -> list:
    week = [dict(day) for day in hours]
    for day in week:
        if day["isOpen"]:
            day["breaks"] = [{"start": "13:00", "end": "14:00"}]
    return week


async def seed_demo_data(session, tenant: str = None):
    """Create a demo vendor with two services and two staff members, once per tenant."""
    tenant = tenant or get_settings().default_tenant

    result = await session.execute(
        select(Service).where(Service.tenant == tenant, Service.vendor_id == DEMO_VENDOR_ID)
    )
    if result.scalars().first() is not None:
        return

    alex = StaffMember(
        tenant=tenant,
        vendor_id=DEMO_VENDOR_ID,
        name="Alex",
        title="Senior Stylist",
        working_hours=_with_lunch_break(DEFAULT_WORKING_HOURS),
        sort_order=0,
    )
    sam = StaffMember(
        tenant=tenant,
        vendor_id=DEMO_VENDOR_ID,
        name="Sam",
        title="Stylist",
        working_hours=[dict(day) for day in DEFAULT_WORKING_HOURS],
        sort_order=1,
    )
    session.add_all(
        [
            Service(
                tenant=tenant,
                vendor_id=DEMO_VENDOR_ID,
                name="Haircut",
                duration_minutes=30,
                price_cents=3500,
                staff=[alex, sam],
            ),
            Service(
                tenant=tenant,
                vendor_id=DEMO_VENDOR_ID,
                name="Colour & Cut",
                duration_minutes=90,
                price_cents=9000,
                sale_price_cents=7500,
                staff=[alex],
            ),
        ]
    )
    await session.commit()
    logger.info(f"Seeded demo vendor for tenant {tenant}")
