from datetime import date as date_type
from typing import Any, Iterable, Optional
from uuid import UUID
import logging

from app.models.appointment import ACTIVE_STATUSES, AppointmentStatus
from app.services.stores import BookingStore
from app.utils.time import Interval, peak_overlap


logger = logging.getLogger(__name__)


def _is_active(appointment: Any) -> bool:
    status = appointment.status
    if not isinstance(status, AppointmentStatus):
        status = AppointmentStatus(status)
    return status in ACTIVE_STATUSES


def find_overlapping(
    appointments: Iterable[Any],
    requested: Interval,
    exclude_appointment_id: Optional[UUID] = None,
) -> list[Any]:
    """Active appointments whose ``[start, end)`` intersects ``requested``.

    Ordered by start minute.
    """
    overlapping = [
        appointment
        for appointment in appointments
        if _is_active(appointment)
        and appointment.uuid != exclude_appointment_id
        and appointment.start_minute < requested.end
        and appointment.end_minute > requested.start
    ]
    return sorted(overlapping, key=lambda a: (a.start_minute, a.end_minute))


def capacity_exhausted(overlapping: Iterable[Any], requested: Interval, capacity: int) -> bool:
    """True when adding ``requested`` would exceed ``capacity`` at some instant."""
    intervals = [Interval(a.start_minute, a.end_minute) for a in overlapping]
    return peak_overlap(intervals, window=requested) >= capacity


class ConflictDetector:
    """Find active bookings that collide with a requested time range."""

    def __init__(self, store: BookingStore):
        self.store = store

    async def find_conflicts(
        self,
        resource_id: UUID,
        day: date_type,
        requested: Interval,
        exclude_appointment_id: Optional[UUID] = None,
    ) -> list[Any]:
        bookings = await self.store.query_by_resource_and_date(
            resource_id, day, ACTIVE_STATUSES
        )
        conflicts = find_overlapping(bookings, requested, exclude_appointment_id)
        logger.debug(
            f"Resource {resource_id} on {day} {requested}: "
            f"{len(conflicts)} overlapping of {len(bookings)} active bookings"
        )
        return conflicts

    async def find_conflicts_for_resources(
        self,
        resource_ids: Iterable[UUID],
        day: date_type,
        requested: Interval,
        exclude_appointment_id: Optional[UUID] = None,
        capacities: Optional[dict[UUID, int]] = None,
    ) -> dict[UUID, list[Any]]:
        """Run the check once per distinct resource.

        Only resources whose capacity (default 1) would be exceeded are
        reported. With a capacity of 1 any overlap is a conflict.
        """
        capacities = capacities or {}
        result: dict[UUID, list[Any]] = {}
        for resource_id in dict.fromkeys(resource_ids):
            overlapping = await self.find_conflicts(
                resource_id, day, requested, exclude_appointment_id
            )
            if not overlapping:
                continue
            capacity = capacities.get(resource_id, 1)
            if capacity_exhausted(overlapping, requested, capacity):
                result[resource_id] = overlapping
        return result
