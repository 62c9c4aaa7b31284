from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps.scheduling import get_availability_service
from app.models.appointment import Appointment
from app.schemas.scheduling import (
    AvailabilityCheckResponse,
    AvailabilityWindowResponse,
    AvailabilityWindowUpsert,
    AvailableDaysResponse,
    RecurringAvailabilityRequest,
    RecurringAvailabilityResult,
    ResourceSchedule,
    ResourceScheduleDay,
    ScheduledAppointmentSummary,
    Slot,
    SlotList,
)
from app.services.availability import AvailabilityService, WindowSpec
from app.utils.time import Interval

router = APIRouter()


def _summary(appointment: Appointment) -> ScheduledAppointmentSummary:
    return ScheduledAppointmentSummary(
        id=appointment.uuid,
        status=appointment.status,
        start_time=appointment.requested_time,
        end_time=appointment.end_time,
        customer_id=appointment.customer_id,
    )


@router.get("/resources/{resource_id}/slots", response_model=SlotList)
async def get_available_slots(
    resource_id: UUID,
    date: date = Query(..., description="Calendar date, YYYY-MM-DD"),
    duration_minutes: int = Query(..., gt=0, le=24 * 60),
    service: AvailabilityService = Depends(get_availability_service),
):
    """
    List bookable start times for a resource on one day.

    Slots avoid the break, unavailable sub-ranges and booked time, and start
    on the configured granularity inside each free gap.
    """
    slots, reason = await service.get_available_slots(resource_id, date, duration_minutes)
    return SlotList(
        resource_id=resource_id,
        date=date,
        duration_minutes=duration_minutes,
        granularity_minutes=service.calendar.granularity_minutes,
        available=bool(slots),
        reason=reason,
        slots=[Slot.from_interval(s) for s in slots],
    )


@router.get("/resources/{resource_id}/check", response_model=AvailabilityCheckResponse)
async def check_availability(
    resource_id: UUID,
    date: date = Query(...),
    start_time: str = Query(..., description="24-hour HH:MM"),
    end_time: str = Query(..., description="24-hour HH:MM"),
    exclude_appointment_id: Optional[UUID] = Query(None),
    service: AvailabilityService = Depends(get_availability_service),
):
    requested = Interval.parse(start_time, end_time)
    result = await service.check_availability(
        resource_id, date, requested, exclude_appointment_id
    )
    return AvailabilityCheckResponse(
        resource_id=resource_id,
        date=date,
        start_time=start_time,
        end_time=end_time,
        available=result.available,
        reason=result.reason,
    )


@router.get(
    "/resources/{resource_id}/available-days", response_model=AvailableDaysResponse
)
async def get_available_days(
    resource_id: UUID,
    start_date: date = Query(...),
    end_date: date = Query(...),
    duration_minutes: int = Query(..., gt=0, le=24 * 60),
    service: AvailabilityService = Depends(get_availability_service),
):
    days = await service.get_available_days(
        resource_id, start_date, end_date, duration_minutes
    )
    return AvailableDaysResponse(
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        duration_minutes=duration_minutes,
        available_dates=days,
    )


@router.get("/resources/{resource_id}/schedule", response_model=ResourceSchedule)
async def get_resource_schedule(
    resource_id: UUID,
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Availability and active appointments per day for a resource."""
    days = await service.get_resource_schedule(resource_id, start_date, end_date)
    return ResourceSchedule(
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        days=[
            ResourceScheduleDay(
                date=day.date,
                availability=(
                    AvailabilityWindowResponse.from_model(day.window)
                    if day.window is not None
                    else None
                ),
                appointments=[_summary(a) for a in day.appointments],
            )
            for day in days
        ],
    )


@router.put(
    "/resources/{resource_id}/availability/{day}",
    response_model=AvailabilityWindowResponse,
)
async def upsert_availability(
    resource_id: UUID,
    day: date,
    window_data: AvailabilityWindowUpsert,
    service: AvailabilityService = Depends(get_availability_service),
):
    """Create or replace the availability record for a resource and date."""
    window = await service.upsert_window(
        resource_id, day, WindowSpec.from_schema(window_data)
    )
    return AvailabilityWindowResponse.from_model(window)


@router.get(
    "/resources/{resource_id}/availability/{day}",
    response_model=AvailabilityWindowResponse,
)
async def get_availability(
    resource_id: UUID,
    day: date,
    service: AvailabilityService = Depends(get_availability_service),
):
    window = await service.get_window(resource_id, day)
    return AvailabilityWindowResponse.from_model(window)


@router.delete(
    "/resources/{resource_id}/availability/{day}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_availability(
    resource_id: UUID,
    day: date,
    service: AvailabilityService = Depends(get_availability_service),
):
    await service.delete_window(resource_id, day)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/resources/{resource_id}/availability/recurring",
    response_model=RecurringAvailabilityResult,
    status_code=status.HTTP_201_CREATED,
)
async def create_recurring_availability(
    resource_id: UUID,
    request: RecurringAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
):
    """
    Materialize a weekly template as one availability record per matching date.

    Dates that already have a record are left untouched. Excluded dates and,
    when a holiday country is configured, public holidays are skipped.
    """
    result = await service.create_recurring(
        resource_id,
        WindowSpec.from_schema(request.template),
        request.start_date,
        request.end_date,
        request.days_of_week,
        request.exclude_dates,
        request.skip_holidays,
    )
    return RecurringAvailabilityResult(
        resource_id=resource_id,
        created_dates=result.created_dates,
        skipped_existing_dates=result.skipped_existing_dates,
        excluded_dates=result.excluded_dates,
    )
