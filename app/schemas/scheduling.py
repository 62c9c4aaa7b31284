from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.availability import AvailabilityWindow, DayOffReason, UnavailableReason
from app.utils.time import Interval, format_minutes, parse_time


class TimeRange(BaseModel):
    start: str = Field(..., description="24-hour HH:MM")
    end: str = Field(..., description="24-hour HH:MM")

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, v):
        parse_time(v)
        return v

    @model_validator(mode="after")
    def validate_order(self):
        if parse_time(self.start) >= parse_time(self.end):
            raise ValueError("start must be before end")
        return self

    def to_interval(self) -> Interval:
        return Interval.parse(self.start, self.end)

    @classmethod
    def from_minutes(cls, start: Optional[int], end: Optional[int]) -> Optional["TimeRange"]:
        if start is None or end is None:
            return None
        return cls(start=format_minutes(start), end=format_minutes(end))


class Slot(BaseModel):
    start_time: str
    end_time: str

    @classmethod
    def from_interval(cls, interval: Interval) -> "Slot":
        start, end = interval.as_strings()
        return cls(start_time=start, end_time=end)


class AvailabilityRangeSchema(TimeRange):
    is_available: bool = True
    reason: Optional[UnavailableReason] = None
    notes: Optional[str] = None


class AvailabilityWindowUpsert(BaseModel):
    is_day_off: bool = False
    day_off_reason: Optional[DayOffReason] = None
    working_hours: Optional[TimeRange] = None
    break_time: Optional[TimeRange] = None
    ranges: List[AvailabilityRangeSchema] = Field(default_factory=list)
    max_concurrent_bookings: int = Field(1, ge=1)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_hours(self):
        if self.is_day_off:
            return self
        if self.working_hours is None:
            raise ValueError("working_hours is required unless the day is off")
        hours = self.working_hours.to_interval()
        if self.break_time is not None and not hours.covers(self.break_time.to_interval()):
            raise ValueError("break_time must fall inside working_hours")
        return self


class AvailabilityWindowResponse(AvailabilityWindowUpsert):
    resource_id: UUID
    date: date
    is_recurring: bool = False
    total_working_minutes: int = 0

    @classmethod
    def from_model(cls, window: AvailabilityWindow) -> "AvailabilityWindowResponse":
        return cls.model_construct(
            resource_id=window.resource_id,
            date=window.date,
            is_day_off=window.is_day_off,
            day_off_reason=(
                DayOffReason(window.day_off_reason) if window.day_off_reason else None
            ),
            working_hours=TimeRange.from_minutes(window.working_start, window.working_end),
            break_time=TimeRange.from_minutes(window.break_start, window.break_end),
            ranges=[
                AvailabilityRangeSchema(
                    start=format_minutes(r.start_minute),
                    end=format_minutes(r.end_minute),
                    is_available=r.is_available,
                    reason=UnavailableReason(r.reason) if r.reason else None,
                    notes=r.notes,
                )
                for r in window.ranges
            ],
            max_concurrent_bookings=window.max_concurrent_bookings,
            notes=window.notes,
            is_recurring=window.is_recurring,
            total_working_minutes=window.total_working_minutes,
        )


class RecurringAvailabilityRequest(BaseModel):
    start_date: date
    end_date: date
    days_of_week: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        description="Weekdays to materialize, 0=Monday .. 6=Sunday",
    )
    template: AvailabilityWindowUpsert
    exclude_dates: List[date] = Field(default_factory=list)
    skip_holidays: bool = True

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v):
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days_of_week values must be between 0 and 6")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (self.end_date - self.start_date).days > 366:
            raise ValueError("date range cannot exceed one year")
        return self


class RecurringAvailabilityResult(BaseModel):
    resource_id: UUID
    created_dates: List[date]
    skipped_existing_dates: List[date]
    excluded_dates: List[date]


class SlotList(BaseModel):
    resource_id: UUID
    date: date
    duration_minutes: int
    granularity_minutes: int
    available: bool
    reason: Optional[str] = None
    slots: List[Slot] = Field(default_factory=list)


class AvailabilityCheckResponse(BaseModel):
    resource_id: UUID
    date: date
    start_time: str
    end_time: str
    available: bool
    reason: Optional[str] = None


class AvailableDaysResponse(BaseModel):
    resource_id: UUID
    start_date: date
    end_date: date
    duration_minutes: int
    available_dates: List[date]


class ScheduledAppointmentSummary(BaseModel):
    id: UUID
    status: str
    start_time: str
    end_time: str
    customer_id: Optional[str] = None


class ResourceScheduleDay(BaseModel):
    date: date
    availability: Optional[AvailabilityWindowResponse] = None
    appointments: List[ScheduledAppointmentSummary] = Field(default_factory=list)


class ResourceSchedule(BaseModel):
    resource_id: UUID
    start_date: date
    end_date: date
    days: List[ResourceScheduleDay]
