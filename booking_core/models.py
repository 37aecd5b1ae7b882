from datetime import date as calendar_date, datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


# Statuses whose time range no longer blocks the staff member's calendar.
RELEASED_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.NO_SHOW})


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


# Sunday closed, weekdays 09:00-18:00, Saturday until 17:00.
DEFAULT_WORKING_HOURS = [
    {"day": 0, "isOpen": False, "openTime": "09:00", "closeTime": "18:00", "breaks": []},
    {"day": 1, "isOpen": True, "openTime": "09:00", "closeTime": "18:00", "breaks": []},
    {"day": 2, "isOpen": True, "openTime": "09:00", "closeTime": "18:00", "breaks": []},
    {"day": 3, "isOpen": True, "openTime": "09:00", "closeTime": "18:00", "breaks": []},
    {"day": 4, "isOpen": True, "openTime": "09:00", "closeTime": "18:00", "breaks": []},
    {"day": 5, "isOpen": True, "openTime": "09:00", "closeTime": "18:00", "breaks": []},
    {"day": 6, "isOpen": True, "openTime": "09:00", "closeTime": "17:00", "breaks": []},
]


service_staff = Table(
    "service_staff",
    Base.metadata,
    Column("service_id", ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
    Column("staff_id", ForeignKey("staff_members.id", ondelete="CASCADE"), primary_key=True),
)


class Service(Base):
    """Catalog entry owned by a vendor; read-only to the scheduling core."""

    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    sale_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    staff: Mapped[list["StaffMember"]] = relationship(
        secondary=service_staff, back_populates="services"
    )

    __table_args__ = (
        CheckConstraint("duration_minutes BETWEEN 5 AND 480", name="ck_services_duration_range"),
    )

    @property
    def staff_ids(self) -> set[int]:
        return {member.id for member in self.staff}

    @property
    def effective_price_cents(self) -> int:
        if self.sale_price_cents is not None:
            return self.sale_price_cents
        return self.price_cents


class StaffMember(Base):
    __tablename__ = "staff_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    working_hours: Mapped[list] = mapped_column(
        JSON, nullable=False, default=lambda: [dict(day) for day in DEFAULT_WORKING_HOURS]
    )
    blocked_dates: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    services: Mapped[list[Service]] = relationship(
        secondary=service_staff, back_populates="staff"
    )


class Booking(Base):
    """
    A reserved appointment.

    Created only by reservation.reserve() and mutated only by
    lifecycle.transition(); rows are never deleted.
    """

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_ref: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)
    tenant: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    staff_id: Mapped[int] = mapped_column(ForeignKey("staff_members.id"), nullable=False)
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(
            BookingStatus,
            name="booking_status",
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status",
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    service: Mapped[Service] = relationship(lazy="selectin")
    staff: Mapped[StaffMember] = relationship(lazy="selectin")
    status_history: Mapped[list["BookingStatusEvent"]] = relationship(
        back_populates="booking",
        lazy="selectin",
        order_by="BookingStatusEvent.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_bookings_tenant_date_staff", "tenant", "date", "staff_id"),
        Index("ix_bookings_tenant_customer_status", "tenant", "customer_id", "status"),
        Index("ix_bookings_tenant_vendor_date", "tenant", "vendor_id", "date"),
        # Backstop for the reservation lock: one live booking per staff start time.
        Index(
            "uq_bookings_live_staff_start",
            "staff_id",
            "date",
            "start_time",
            unique=True,
            postgresql_where=text("status NOT IN ('cancelled', 'no-show')"),
            sqlite_where=text("status NOT IN ('cancelled', 'no-show')"),
        ),
    )


class BookingStatusEvent(Base):
    """One append-only entry of a booking's status history."""

    __tablename__ = "booking_status_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(
            BookingStatus,
            name="booking_status",
            values_callable=_enum_values,
            native_enum=False,
            length=20,
        ),
        nullable=False,
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="status_history")
