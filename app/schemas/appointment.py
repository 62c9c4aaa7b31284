from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Import enums from the model to avoid duplication
from app.models.appointment import AppointmentStatus, CancelledBy, RecurrenceFrequency
from app.utils.time import parse_time


class AddonSelection(BaseModel):
    addon_id: UUID
    quantity: int = Field(1, ge=0)


class ServiceLineRequest(BaseModel):
    service_id: UUID
    resource_id: UUID
    addons: List[AddonSelection] = Field(default_factory=list)
    notes: Optional[str] = None


class DiscountSpec(BaseModel):
    """Percentage wins over a flat amount when both are given."""

    percentage: Optional[Decimal] = Field(None, ge=0)
    flat_amount: Optional[Decimal] = Field(None, ge=0)
    reason: Optional[str] = None


class AppointmentCreate(BaseModel):
    customer_id: Optional[str] = None
    service_lines: List[ServiceLineRequest] = Field(..., min_length=1)
    date: date
    time: str = Field(..., description="24-hour HH:MM start time")
    discount: Optional[DiscountSpec] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    customer_notes: Optional[str] = None
    booked_by: Optional[str] = None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        parse_time(v)
        return v


class RecurringAppointmentCreate(AppointmentCreate):
    """A series starting at ``date``; the first occurrence must be bookable."""

    frequency: RecurrenceFrequency = RecurrenceFrequency.WEEKLY
    interval: int = Field(1, ge=1, le=52)
    end_date: Optional[date] = Field(None, description="Defaults to one year after date")
    max_occurrences: int = Field(52, ge=1, le=52)

    @model_validator(mode="after")
    def validate_end_date(self):
        if self.end_date is not None and self.end_date < self.date:
            raise ValueError("end_date must not be before date")
        return self


class PriceQuoteRequest(BaseModel):
    service_lines: List[ServiceLineRequest] = Field(..., min_length=1)
    discount: Optional[DiscountSpec] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=1)


class PriceBreakdownResponse(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal
    tax: Decimal
    total: Decimal
    total_duration: int


class AppointmentReschedule(BaseModel):
    new_date: date
    new_time: str = Field(..., description="24-hour HH:MM start time")
    reason: Optional[str] = None
    actor: Optional[str] = None

    @field_validator("new_time")
    @classmethod
    def validate_time(cls, v):
        parse_time(v)
        return v


class AppointmentCancel(BaseModel):
    reason: Optional[str] = None
    cancelled_by: CancelledBy = CancelledBy.STAFF


class AppointmentStatusTransition(BaseModel):
    target_status: AppointmentStatus
    actor: Optional[str] = None
    notes: Optional[str] = None


class AppointmentNote(BaseModel):
    note: str = Field(..., min_length=1, max_length=2000)
    actor: Optional[str] = None


# Response schemas
class LineAddonResponse(BaseModel):
    name: str
    price: Decimal
    duration_minutes: int
    quantity: int

    model_config = ConfigDict(from_attributes=True)


class ServiceLineResponse(BaseModel):
    service_id: UUID
    resource_id: UUID
    service_name: Optional[str] = None
    price: Decimal
    duration_minutes: int
    addons: List[LineAddonResponse] = Field(default_factory=list)
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RescheduleEntryResponse(BaseModel):
    original_date: date
    original_time: str
    new_date: date
    new_time: str
    reason: Optional[str] = None
    actor: Optional[str] = None
    rescheduled_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AppointmentResponse(BaseModel):
    id: UUID = Field(..., validation_alias="uuid")
    customer_id: Optional[str] = None
    date: date
    requested_time: str
    end_time: str
    status: AppointmentStatus
    previous_status: Optional[AppointmentStatus] = None
    resource_ids: List[UUID]
    service_lines: List[ServiceLineResponse]

    # Pricing
    subtotal: Decimal
    discount_amount: Decimal
    tax: Decimal
    total_amount: Decimal
    total_duration: int

    # Cancellation and rescheduling
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    cancelled_at: Optional[datetime] = None
    reschedule_count: int = 0
    reschedule_history: List[RescheduleEntryResponse] = Field(default_factory=list)

    series_id: Optional[UUID] = None
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)



class SkippedOccurrenceResponse(BaseModel):
    date: date
    kind: str
    reason: Optional[str] = None
    message: str

    model_config = ConfigDict(from_attributes=True)


class RecurringAppointmentResponse(BaseModel):
    series_id: UUID
    created: List[AppointmentResponse]
    skipped: List[SkippedOccurrenceResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
