"""
Availability calculation.

compute_slots() is the pure algorithm: given one staff member's weekly
schedule, blocked dates and a snapshot of existing bookings it returns the
ordered start times at which a service of the given duration fits.

The async helpers load that input through the tenant-scoped queries and run
the same function once per staff member; "one named staff" and "all
qualified staff" differ only in how many times it is called.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidRange, StaffNotQualified
from .models import RELEASED_STATUSES, BookingStatus, Service, StaffMember
from .tenancy.queries import get_staff_by_id, get_staff_by_ids, list_live_booking_intervals
from .timegrid import to_clock, to_minutes

logger = logging.getLogger(__name__)


def day_of_week(day: date) -> int:
    """Weekday index used by staff schedules: 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    """Half-open interval intersection of [start, end) and [other_start, other_end)."""
    return start < other_end and end > other_start


@dataclass(frozen=True)
class BreakWindow:
    start: str
    end: str


@dataclass(frozen=True)
class DaySchedule:
    day: int
    is_open: bool
    open_time: str = "09:00"
    close_time: str = "18:00"
    breaks: tuple[BreakWindow, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict) -> "DaySchedule":
        return cls(
            day=int(raw["day"]),
            is_open=bool(raw.get("isOpen", True)),
            open_time=raw.get("openTime", "09:00"),
            close_time=raw.get("closeTime", "18:00"),
            breaks=tuple(BreakWindow(b["start"], b["end"]) for b in raw.get("breaks") or []),
        )


@dataclass(frozen=True)
class StaffSchedule:
    """The parts of a staff member the calculation reads."""

    staff_id: int
    weekly: dict[int, DaySchedule] = field(default_factory=dict)
    blocked_dates: frozenset[str] = frozenset()
    name: str = ""

    @classmethod
    def from_model(cls, staff: StaffMember) -> "StaffSchedule":
        weekly = {}
        for raw in staff.working_hours or []:
            schedule = DaySchedule.from_dict(raw)
            weekly[schedule.day] = schedule
        return cls(
            staff_id=staff.id,
            weekly=weekly,
            blocked_dates=frozenset(staff.blocked_dates or []),
            name=staff.name,
        )


@dataclass(frozen=True)
class BookedInterval:
    staff_id: int
    date: date
    start_time: str
    end_time: str
    status: BookingStatus = BookingStatus.PENDING


@dataclass
class StaffSlots:
    staff_id: int
    staff_name: str
    slots: list[str]


def compute_slots(
    staff: StaffSchedule,
    target_date: date,
    duration_minutes: int,
    existing_bookings: Iterable[BookedInterval],
    slot_interval_minutes: int = 30,
) -> list[str]:
    """
    Ordered "HH:MM" start times at which ``duration_minutes`` fits for ``staff``.

    A candidate [start, start + duration) is rejected if it overlaps any break
    or any booking of this staff member on this date that still blocks the
    calendar. Candidates step by ``slot_interval_minutes`` from opening time
    and never end after closing time.
    """
    if duration_minutes <= 0:
        raise InvalidRange(f"Duration must be positive, got {duration_minutes}")
    if slot_interval_minutes <= 0:
        raise InvalidRange(f"Slot interval must be positive, got {slot_interval_minutes}")

    if target_date.isoformat() in staff.blocked_dates:
        return []

    schedule = staff.weekly.get(day_of_week(target_date))
    if schedule is None or not schedule.is_open:
        return []

    open_min = to_minutes(schedule.open_time)
    close_min = to_minutes(schedule.close_time)

    breaks = [(to_minutes(b.start), to_minutes(b.end)) for b in schedule.breaks]
    busy = [
        (to_minutes(b.start_time), to_minutes(b.end_time))
        for b in existing_bookings
        if b.staff_id == staff.staff_id
        and b.date == target_date
        and b.status not in RELEASED_STATUSES
    ]

    slots: list[str] = []
    start = open_min
    while start + duration_minutes <= close_min:
        end = start + duration_minutes
        if not any(overlaps(start, end, b_start, b_end) for b_start, b_end in breaks) and not any(
            overlaps(start, end, k_start, k_end) for k_start, k_end in busy
        ):
            slots.append(to_clock(start))
        start += slot_interval_minutes

    return slots


# ────────────────────────────────────────────────────────────────
# Persistence-backed helpers
# ────────────────────────────────────────────────────────────────

async def load_booking_snapshot(
    session: AsyncSession,
    tenant: str,
    staff_ids: Sequence[int],
    target_date: date,
) -> list[BookedInterval]:
    rows = await list_live_booking_intervals(session, tenant, staff_ids, target_date)
    return [
        BookedInterval(
            staff_id=row.staff_id,
            date=row.date,
            start_time=row.start_time,
            end_time=row.end_time,
            status=row.status,
        )
        for row in rows
    ]


async def compute_slots_for_staff(
    session: AsyncSession,
    tenant: str,
    staff_id: int,
    target_date: date,
    duration_minutes: int,
    slot_interval_minutes: int = 30,
) -> list[str]:
    """Free start times for one staff member, read from the latest committed state."""
    staff = await get_staff_by_id(session, tenant, staff_id)
    if staff is None:
        return []
    snapshot = await load_booking_snapshot(session, tenant, [staff.id], target_date)
    return compute_slots(
        StaffSchedule.from_model(staff),
        target_date,
        duration_minutes,
        snapshot,
        slot_interval_minutes,
    )


def drop_elapsed(slots: list[str], target_date: date, now_local: Optional[datetime]) -> list[str]:
    """Remove start times that are not after ``now_local`` when listing today's slots."""
    if now_local is None or target_date != now_local.date():
        return slots
    now_min = now_local.hour * 60 + now_local.minute
    return [slot for slot in slots if to_minutes(slot) > now_min]


async def find_availability(
    session: AsyncSession,
    tenant: str,
    service: Service,
    target_date: date,
    staff_id: Optional[int] = None,
    slot_interval_minutes: int = 30,
    now_local: Optional[datetime] = None,
) -> list[StaffSlots]:
    """
    Per-staff slot lists for a service on a date.

    With ``staff_id`` only that staff member is computed; otherwise every
    active staff member qualified for the service. Staff without a free
    slot are left out.
    """
    qualified = service.staff_ids
    if staff_id is not None:
        if staff_id not in qualified:
            raise StaffNotQualified()
        candidate_ids = [staff_id]
    else:
        candidate_ids = sorted(qualified)

    staff_members = await get_staff_by_ids(session, tenant, candidate_ids)
    snapshot = await load_booking_snapshot(
        session, tenant, [member.id for member in staff_members], target_date
    )

    availability: list[StaffSlots] = []
    for member in staff_members:
        slots = compute_slots(
            StaffSchedule.from_model(member),
            target_date,
            service.duration_minutes,
            snapshot,
            slot_interval_minutes,
        )
        slots = drop_elapsed(slots, target_date, now_local)
        if slots:
            availability.append(StaffSlots(staff_id=member.id, staff_name=member.name, slots=slots))

    logger.debug(
        f"Availability for service {service.id} on {target_date}: "
        f"{len(availability)}/{len(staff_members)} staff with open slots"
    )
    return availability
