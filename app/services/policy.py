from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional, Union
import logging

from app.core.config import settings
from app.core.exceptions import PolicyViolation
from app.models.appointment import AppointmentStatus


logger = logging.getLogger(__name__)

# Only appointments that have not started may be cancelled or moved
MUTABLE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class BookingPolicy:
    min_advance_hours: float
    max_advance_days: int

    @classmethod
    def default(cls) -> "BookingPolicy":
        return cls(
            min_advance_hours=float(settings.DEFAULT_MIN_ADVANCE_HOURS),
            max_advance_days=int(settings.DEFAULT_MAX_ADVANCE_DAYS),
        )

    @classmethod
    def strictest(cls, services: Iterable[Any]) -> "BookingPolicy":
        """Combine per-service policies: largest notice, shortest horizon.

        Services without their own values fall back to the configured defaults.
        """
        default = cls.default()
        min_hours: Optional[float] = None
        max_days: Optional[int] = None
        for service in services:
            hours = getattr(service, "min_advance_hours", None)
            days = getattr(service, "max_advance_days", None)
            hours = default.min_advance_hours if hours is None else float(hours)
            days = default.max_advance_days if days is None else int(days)
            min_hours = hours if min_hours is None else max(min_hours, hours)
            max_days = days if max_days is None else min(max_days, days)

        if min_hours is None or max_days is None:
            return default
        return cls(min_advance_hours=min_hours, max_advance_days=max_days)


def _status_of(appointment: Any) -> AppointmentStatus:
    status = appointment.status
    return status if isinstance(status, AppointmentStatus) else AppointmentStatus(status)


def _lead_time(appointment: Any, now: datetime) -> timedelta:
    return appointment.scheduled_datetime - now


def validate_new_booking(
    requested_at: datetime,
    now: datetime,
    min_advance_hours: Union[float, Decimal],
    max_advance_days: int,
) -> None:
    """Raise PolicyViolation unless ``requested_at`` lies inside the booking window."""
    lead = requested_at - now
    min_lead = timedelta(hours=float(min_advance_hours))
    max_lead = timedelta(days=max_advance_days)

    if lead < min_lead:
        logger.warning(f"Booking at {requested_at} rejected: less than {min_advance_hours}h notice")
        raise PolicyViolation(
            "min_advance",
            f"Appointments must be booked at least {min_advance_hours} hours in advance",
            {"requested_at": requested_at.isoformat(), "min_advance_hours": float(min_advance_hours)},
        )
    if lead > max_lead:
        logger.warning(f"Booking at {requested_at} rejected: beyond {max_advance_days} days")
        raise PolicyViolation(
            "max_advance",
            f"Appointments cannot be booked more than {max_advance_days} days in advance",
            {"requested_at": requested_at.isoformat(), "max_advance_days": max_advance_days},
        )


def can_cancel(appointment: Any, now: datetime, cancel_cutoff_hours: float) -> bool:
    """True iff the appointment has not started and is outside the cutoff window."""
    if _status_of(appointment) not in MUTABLE_STATUSES:
        return False
    return _lead_time(appointment, now) >= timedelta(hours=float(cancel_cutoff_hours))


def can_reschedule(appointment: Any, now: datetime, reschedule_cutoff_hours: float) -> bool:
    if _status_of(appointment) not in MUTABLE_STATUSES:
        return False
    return _lead_time(appointment, now) >= timedelta(hours=float(reschedule_cutoff_hours))


class BookingPolicyEngine:
    """Booking-window and cutoff rules bound to configured thresholds.

    Every check takes the current time explicitly.
    """

    def __init__(
        self,
        cancel_cutoff_hours: Optional[float] = None,
        reschedule_cutoff_hours: Optional[float] = None,
    ):
        self.cancel_cutoff_hours = (
            settings.CANCELLATION_CUTOFF_HOURS
            if cancel_cutoff_hours is None
            else cancel_cutoff_hours
        )
        self.reschedule_cutoff_hours = (
            settings.RESCHEDULE_CUTOFF_HOURS
            if reschedule_cutoff_hours is None
            else reschedule_cutoff_hours
        )

    def validate_new_booking(
        self, requested_at: datetime, now: datetime, policy: BookingPolicy
    ) -> None:
        validate_new_booking(
            requested_at, now, policy.min_advance_hours, policy.max_advance_days
        )

    def can_cancel(self, appointment: Any, now: datetime) -> bool:
        return can_cancel(appointment, now, self.cancel_cutoff_hours)

    def can_reschedule(self, appointment: Any, now: datetime) -> bool:
        return can_reschedule(appointment, now, self.reschedule_cutoff_hours)

    def ensure_can_cancel(self, appointment: Any, now: datetime) -> None:
        if not self.can_cancel(appointment, now):
            raise PolicyViolation(
                "cancellation_cutoff",
                f"Appointments can only be cancelled up to {self.cancel_cutoff_hours} "
                f"hours before the start time",
                {"cutoff_hours": float(self.cancel_cutoff_hours)},
            )

    def ensure_can_reschedule(self, appointment: Any, now: datetime) -> None:
        if not self.can_reschedule(appointment, now):
            raise PolicyViolation(
                "reschedule_cutoff",
                f"Appointments can only be rescheduled up to "
                f"{self.reschedule_cutoff_hours} hours before the start time",
                {"cutoff_hours": float(self.reschedule_cutoff_hours)},
            )
