from uuid import UUID

from fastapi import APIRouter, Depends, status

from app.api.deps.scheduling import get_lifecycle_service
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentNote,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusTransition,
    PriceBreakdownResponse,
    PriceQuoteRequest,
    RecurringAppointmentCreate,
    RecurringAppointmentResponse,
)
from app.services.appointment import AppointmentLifecycleService

router = APIRouter()


@router.post(
    "/", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED
)
async def create_appointment(
    appointment_data: AppointmentCreate,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """
    Book a new appointment.

    Each service line names a service and the resource (staff member) who
    performs it. Prices and durations are taken from the catalog at booking
    time. The request is rejected when it breaks the booking window, when any
    assigned resource is unavailable, or when it overlaps an active booking.
    """
    appointment = await service.create_appointment(appointment_data)
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/recurring",
    response_model=RecurringAppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_recurring_appointments(
    series_data: RecurringAppointmentCreate,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """
    Book a daily, weekly or monthly series of appointments.

    The first occurrence is checked like a single booking and the request
    fails if it cannot be booked. Later occurrences that conflict or fall
    outside the booking window are listed under ``skipped``.
    """
    result = await service.create_recurring_appointments(series_data)
    return RecurringAppointmentResponse.model_validate(result)


@router.post("/price-preview", response_model=PriceBreakdownResponse)
async def preview_price(
    request: PriceQuoteRequest,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Price a prospective booking without reserving anything."""
    breakdown = await service.price_preview(request)
    return PriceBreakdownResponse(
        subtotal=breakdown.subtotal,
        discount_amount=breakdown.discount_amount,
        tax=breakdown.tax,
        total=breakdown.total,
        total_duration=breakdown.total_duration,
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: UUID,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appointment = await service.get_appointment(appointment_id)
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: UUID,
    reschedule_data: AppointmentReschedule,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Move an appointment to a new date and time, keeping its identity."""
    appointment = await service.reschedule_appointment(appointment_id, reschedule_data)
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: UUID,
    cancel_data: AppointmentCancel,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appointment = await service.cancel_appointment(appointment_id, cancel_data)
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/transition", response_model=AppointmentResponse)
async def transition_appointment(
    appointment_id: UUID,
    transition_data: AppointmentStatusTransition,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    """Advance an appointment through its status workflow."""
    appointment = await service.transition_appointment(appointment_id, transition_data)
    return AppointmentResponse.model_validate(appointment)


@router.post("/{appointment_id}/notes", response_model=AppointmentResponse)
async def add_appointment_note(
    appointment_id: UUID,
    note_data: AppointmentNote,
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appointment = await service.annotate_appointment(
        appointment_id, note_data.note, note_data.actor
    )
    return AppointmentResponse.model_validate(appointment)
