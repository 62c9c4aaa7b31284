import enum
import uuid
from uuid import UUID
from datetime import date as date_type, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base
from app.core.exceptions import InvalidTransition
from app.utils.time import Interval, format_minutes, to_datetime


class AppointmentStatus(enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


# Statuses that occupy a resource's time
ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.IN_PROGRESS,
    }
)

TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)

# RESCHEDULED is transient: a moved appointment re-enters SCHEDULED at its new slot
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.RESCHEDULED,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.CHECKED_IN,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.RESCHEDULED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CHECKED_IN: frozenset(
        {AppointmentStatus.IN_PROGRESS, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.RESCHEDULED: frozenset({AppointmentStatus.SCHEDULED}),
    AppointmentStatus.COMPLETED: frozenset(),  # Final state
    AppointmentStatus.CANCELLED: frozenset(),  # Final state
    AppointmentStatus.NO_SHOW: frozenset(),  # Final state
}


class CancelledBy(enum.Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    SALON = "salon"
    SYSTEM = "system"


class RecurrenceFrequency(enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Appointment(Base):
    """Appointment with its service lines, pricing totals and status history."""

    __tablename__ = "appointments"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    customer_id = Column(String(64), nullable=True, index=True)

    # Scheduling details, minutes since midnight in tenant-local time
    date = Column(Date, nullable=False, index=True)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    total_duration = Column(Integer, nullable=False)

    # Status management
    status = Column(
        String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value, index=True
    )
    previous_status = Column(String(20), nullable=True)
    status_changed_at = Column(DateTime(timezone=True), nullable=True)
    actual_start_at = Column(DateTime(timezone=True), nullable=True)
    actual_end_at = Column(DateTime(timezone=True), nullable=True)

    # Pricing
    subtotal = Column(Numeric(12, 4), nullable=False, default=0)
    discount_percentage = Column(Numeric(7, 4), nullable=True)
    discount_flat_amount = Column(Numeric(12, 4), nullable=True)
    discount_reason = Column(String(255), nullable=True)
    discount_amount = Column(Numeric(12, 4), nullable=False, default=0)
    tax_rate = Column(Numeric(7, 6), nullable=False, default=0)
    tax = Column(Numeric(12, 4), nullable=False, default=0)
    total_amount = Column(Numeric(12, 4), nullable=False, default=0)

    # Booking details
    booked_by = Column(String(64), nullable=True)
    customer_notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)

    # Recurring series, keyed by the uuid of its first appointment
    series_id = Column(Uuid, nullable=True, index=True)

    # Cancellation management
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(20), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Rescheduling
    reschedule_count = Column(Integer, nullable=False, default=0)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("end_minute > start_minute", name="check_end_after_start"),
        CheckConstraint("total_duration > 0", name="check_positive_duration"),
        CheckConstraint("subtotal >= 0", name="check_non_negative_subtotal"),
        CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= subtotal",
            name="check_discount_within_subtotal",
        ),
        CheckConstraint("total_amount >= 0", name="check_non_negative_total"),
        CheckConstraint("reschedule_count >= 0", name="check_non_negative_reschedules"),
        Index("ix_appointments_date_status", "date", "status"),
    )

    # Relationships
    service_lines = relationship(
        "AppointmentServiceLine",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentServiceLine.position",
        lazy="selectin",
    )
    reschedule_history = relationship(
        "RescheduleEntry",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="RescheduleEntry.id",
        lazy="selectin",
    )

    @property
    def current_status(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)

    @property
    def is_active(self) -> bool:
        """Check if appointment is in a state that occupies its resources."""
        return self.current_status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES

    @property
    def interval(self) -> Interval:
        return Interval(self.start_minute, self.end_minute)

    @property
    def requested_time(self) -> str:
        return format_minutes(self.start_minute)

    @property
    def end_time(self) -> str:
        return format_minutes(self.end_minute)

    @property
    def scheduled_datetime(self) -> datetime:
        """Naive tenant-local start datetime."""
        return to_datetime(self.date, self.start_minute)

    @property
    def resource_ids(self) -> list[UUID]:
        """Distinct resources assigned through the service lines, in line order."""
        seen: list[UUID] = []
        for line in self.service_lines:
            if line.resource_id not in seen:
                seen.append(line.resource_id)
        return seen

    # Status transition methods
    def can_transition_to(self, new_status: AppointmentStatus) -> bool:
        """Check if appointment can transition to the new status."""
        return new_status in ALLOWED_TRANSITIONS[self.current_status]

    def transition_to(
        self, new_status: AppointmentStatus, changed_at: Optional[datetime] = None
    ) -> None:
        """Move to ``new_status`` or raise InvalidTransition."""
        if not self.can_transition_to(new_status):
            raise InvalidTransition(self.status, new_status.value)

        changed_at = changed_at or datetime.now(timezone.utc)
        self.previous_status = self.status
        self.status = new_status.value
        self.status_changed_at = changed_at

        if new_status == AppointmentStatus.IN_PROGRESS:
            self.actual_start_at = changed_at
        elif new_status == AppointmentStatus.COMPLETED:
            self.actual_end_at = changed_at
        elif new_status == AppointmentStatus.CANCELLED:
            self.cancelled_at = changed_at

    def move_to(self, new_date: date_type, start_minute: int) -> None:
        """Shift the appointment keeping its duration."""
        self.date = new_date
        self.start_minute = start_minute
        self.end_minute = start_minute + self.total_duration

    def annotate(self, note: str, actor: Optional[str] = None, at: Optional[datetime] = None):
        """Append an audit line to the internal notes."""
        at = at or datetime.now(timezone.utc)
        line = f"[{at.isoformat(timespec='seconds')}]"
        if actor:
            line += f" {actor}:"
        line += f" {note}"
        self.internal_notes = f"{self.internal_notes}\n{line}" if self.internal_notes else line

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, status='{self.status}', "
            f"date='{self.date}', time='{format_minutes(self.start_minute)}')>"
        )


class AppointmentServiceLine(Base):
    """A booked unit of work inside an appointment, priced at booking time."""

    __tablename__ = "appointment_service_lines"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    position = Column(Integer, nullable=False, default=0)

    # External references
    service_id = Column(Uuid, nullable=False)
    resource_id = Column(Uuid, nullable=False, index=True)

    # Snapshot at time of booking (for historical accuracy)
    service_name = Column(String(255), nullable=True)
    price = Column(Numeric(12, 4), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    consumes_inventory = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_line_non_negative_price"),
        CheckConstraint("duration_minutes >= 0", name="check_line_non_negative_duration"),
    )

    appointment = relationship("Appointment", back_populates="service_lines")
    addons = relationship(
        "AppointmentLineAddon",
        back_populates="service_line",
        cascade="all, delete-orphan",
        order_by="AppointmentLineAddon.id",
        lazy="selectin",
    )

    def __repr__(self):
        return (
            f"<AppointmentServiceLine(service_id={self.service_id}, "
            f"resource_id={self.resource_id}, price={self.price}, "
            f"duration={self.duration_minutes}min)>"
        )


class AppointmentLineAddon(Base):
    """Add-on booked on a service line."""

    __tablename__ = "appointment_line_addons"

    id = Column(Integer, primary_key=True, index=True)
    service_line_id = Column(
        Integer,
        ForeignKey("appointment_service_lines.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = Column(String(255), nullable=False)
    price = Column(Numeric(12, 4), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=0)
    quantity = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_addon_non_negative_price"),
        CheckConstraint("duration_minutes >= 0", name="check_addon_non_negative_duration"),
        CheckConstraint("quantity >= 0", name="check_addon_non_negative_quantity"),
    )

    service_line = relationship("AppointmentServiceLine", back_populates="addons")

    def __repr__(self):
        return (
            f"<AppointmentLineAddon(name='{self.name}', price={self.price}, "
            f"duration={self.duration_minutes}min, quantity={self.quantity})>"
        )


class RescheduleEntry(Base):
    """One move of an appointment to a new date/time."""

    __tablename__ = "appointment_reschedules"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    original_date = Column(Date, nullable=False)
    original_time = Column(String(5), nullable=False)
    new_date = Column(Date, nullable=False)
    new_time = Column(String(5), nullable=False)
    reason = Column(Text, nullable=True)
    actor = Column(String(64), nullable=True)
    rescheduled_at = Column(DateTime(timezone=True), nullable=False)

    appointment = relationship("Appointment", back_populates="reschedule_history")

    def __repr__(self):
        return (
            f"<RescheduleEntry({self.original_date} {self.original_time} -> "
            f"{self.new_date} {self.new_time})>"
        )
