import enum
import uuid
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base
from app.utils.time import Interval


class UnavailableReason(enum.Enum):
    BREAK = "break"
    LUNCH = "lunch"
    MEETING = "meeting"
    TRAINING = "training"
    PERSONAL = "personal"
    SICK = "sick"
    VACATION = "vacation"
    OTHER = "other"


class DayOffReason(enum.Enum):
    WEEKLY_OFF = "weekly_off"
    VACATION = "vacation"
    SICK_LEAVE = "sick_leave"
    PERSONAL_LEAVE = "personal_leave"
    PUBLIC_HOLIDAY = "public_holiday"
    OTHER = "other"


class AvailabilityWindow(Base):
    """Availability of one resource on one date, with breaks and sub-range overrides."""

    __tablename__ = "availability_windows"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    resource_id = Column(Uuid, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    # Day-level availability
    is_day_off = Column(Boolean, nullable=False, default=False)
    day_off_reason = Column(String(30), nullable=True)

    # Working hours and break, minutes since midnight
    working_start = Column(Integer, nullable=True)
    working_end = Column(Integer, nullable=True)
    break_start = Column(Integer, nullable=True)
    break_end = Column(Integer, nullable=True)

    # Capacity
    max_concurrent_bookings = Column(Integer, nullable=False, default=1)

    # Materialized from a recurring template
    is_recurring = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("resource_id", "date", name="uq_availability_resource_date"),
        CheckConstraint(
            "working_start IS NULL OR working_end IS NULL OR working_start < working_end",
            name="check_working_hours_order",
        ),
        CheckConstraint(
            "break_start IS NULL OR break_end IS NULL OR break_start < break_end",
            name="check_break_order",
        ),
        CheckConstraint("max_concurrent_bookings >= 1", name="check_positive_capacity"),
    )

    ranges = relationship(
        "AvailabilityRange",
        back_populates="window",
        cascade="all, delete-orphan",
        order_by="AvailabilityRange.start_minute",
        lazy="selectin",
    )

    @property
    def working_hours(self) -> Optional[Interval]:
        if self.working_start is None or self.working_end is None:
            return None
        return Interval(self.working_start, self.working_end)

    @property
    def break_interval(self) -> Optional[Interval]:
        if self.break_start is None or self.break_end is None:
            return None
        return Interval(self.break_start, self.break_end)

    @property
    def total_working_minutes(self) -> int:
        """Working minutes excluding the break."""
        hours = self.working_hours
        if self.is_day_off or hours is None:
            return 0
        total = hours.duration
        if self.break_interval is not None:
            total -= self.break_interval.duration
        return max(0, total)

    def __repr__(self):
        hours = self.working_hours
        return (
            f"<AvailabilityWindow(resource_id={self.resource_id}, date={self.date}, "
            f"day_off={self.is_day_off}, hours={hours})>"
        )


class AvailabilityRange(Base):
    """Explicit sub-range of a window that is forced available or unavailable."""

    __tablename__ = "availability_ranges"

    id = Column(Integer, primary_key=True, index=True)
    window_id = Column(
        Integer, ForeignKey("availability_windows.id", ondelete="CASCADE"), nullable=False
    )
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    reason = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("start_minute < end_minute", name="check_range_order"),
    )

    window = relationship("AvailabilityWindow", back_populates="ranges")

    @property
    def interval(self) -> Interval:
        return Interval(self.start_minute, self.end_minute)

    def __repr__(self):
        return (
            f"<AvailabilityRange({self.interval}, available={self.is_available}, "
            f"reason={self.reason})>"
        )
