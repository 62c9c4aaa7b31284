from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type, timedelta
from typing import Any, Iterable, Iterator, Optional
from uuid import UUID
import logging

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import NotFound, ValidationError
from app.models.appointment import ACTIVE_STATUSES
from app.models.availability import AvailabilityRange, AvailabilityWindow
from app.services.conflicts import capacity_exhausted, find_overlapping
from app.services.holidays import HolidayService
from app.services.stores import AvailabilityStore, BookingStore
from app.utils.time import (
    MINUTES_PER_DAY,
    Interval,
    clip_interval,
    merge_intervals,
    parse_time,
    saturated_intervals,
    subtract_intervals,
)


logger = logging.getLogger(__name__)

# Reasons reported when a time is not bookable
REASON_DAY_OFF = "day_off"
REASON_NO_RECORD = "no_availability_record"
REASON_OUTSIDE_HOURS = "outside_working_hours"
REASON_BREAK = "break"
REASON_UNAVAILABLE = "unavailable"
REASON_BOOKED = "booked"
REASON_NO_SLOTS = "fully_booked"

MAX_RANGE_DAYS = 92


@dataclass(frozen=True)
class RangeSpec:
    interval: Interval
    is_available: bool = True
    reason: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class WindowSpec:
    """Availability for a single day, independent of resource and date."""

    is_day_off: bool = False
    day_off_reason: Optional[str] = None
    working_hours: Optional[Interval] = None
    break_interval: Optional[Interval] = None
    ranges: tuple[RangeSpec, ...] = ()
    max_concurrent_bookings: int = 1
    notes: Optional[str] = None

    def __post_init__(self):
        if self.max_concurrent_bookings < 1:
            raise ValidationError(
                "max_concurrent_bookings must be at least 1",
                {"field": "max_concurrent_bookings"},
            )
        if self.is_day_off:
            return
        if self.working_hours is None:
            raise ValidationError(
                "working_hours is required unless the day is off",
                {"field": "working_hours"},
            )
        if self.break_interval is not None and not self.working_hours.covers(
            self.break_interval
        ):
            raise ValidationError(
                "break must fall inside working hours", {"field": "break_time"}
            )

    @classmethod
    def from_schema(cls, payload: Any) -> "WindowSpec":
        """Build from an ``AvailabilityWindowUpsert`` payload."""
        return cls(
            is_day_off=payload.is_day_off,
            day_off_reason=(
                payload.day_off_reason.value if payload.day_off_reason else None
            ),
            working_hours=(
                payload.working_hours.to_interval() if payload.working_hours else None
            ),
            break_interval=(
                payload.break_time.to_interval() if payload.break_time else None
            ),
            ranges=tuple(
                RangeSpec(
                    interval=r.to_interval(),
                    is_available=r.is_available,
                    reason=r.reason.value if r.reason else None,
                    notes=r.notes,
                )
                for r in payload.ranges
            ),
            max_concurrent_bookings=payload.max_concurrent_bookings,
            notes=payload.notes,
        )

    def apply_to(self, window: AvailabilityWindow) -> AvailabilityWindow:
        """Overwrite ``window``'s day data, replacing its sub-ranges."""
        window.is_day_off = self.is_day_off
        window.day_off_reason = self.day_off_reason
        window.working_start = self.working_hours.start if self.working_hours else None
        window.working_end = self.working_hours.end if self.working_hours else None
        window.break_start = self.break_interval.start if self.break_interval else None
        window.break_end = self.break_interval.end if self.break_interval else None
        window.max_concurrent_bookings = self.max_concurrent_bookings
        window.notes = self.notes
        window.ranges = [
            AvailabilityRange(
                start_minute=r.interval.start,
                end_minute=r.interval.end,
                is_available=r.is_available,
                reason=r.reason,
                notes=r.notes,
            )
            for r in self.ranges
        ]
        return window

    def to_model(
        self, resource_id: UUID, day: date_type, is_recurring: bool = False
    ) -> AvailabilityWindow:
        window = AvailabilityWindow(resource_id=resource_id, date=day, is_recurring=is_recurring)
        return self.apply_to(window)


def expand_recurring_availability(
    template: WindowSpec,
    start_date: date_type,
    end_date: date_type,
    days_of_week: Iterable[int],
    exclude_dates: Iterable[date_type] = (),
) -> list[tuple[date_type, WindowSpec]]:
    """Materialize ``template`` on every matching date in ``[start_date, end_date]``.

    ``days_of_week`` uses ``date.weekday()`` numbering (0 is Monday). Dates in
    ``exclude_dates`` are skipped. The result is ordered by date.
    """
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    weekdays = set(days_of_week)
    if any(d < 0 or d > 6 for d in weekdays):
        raise ValidationError("days_of_week values must be between 0 and 6")
    excluded = set(exclude_dates)

    materialized = []
    current = start_date
    while current <= end_date:
        if current.weekday() in weekdays and current not in excluded:
            materialized.append((current, template))
        current += timedelta(days=1)
    return materialized


class AvailabilityCalendar:
    """Pure availability math over a single AvailabilityWindow.

    Nothing here touches storage. A missing window is an error, callers decide
    what it means.
    """

    def __init__(self, granularity_minutes: Optional[int] = None):
        if granularity_minutes is None:
            granularity_minutes = default_settings.SLOT_GRANULARITY_MINUTES
        self.granularity_minutes = granularity_minutes
        if self.granularity_minutes <= 0:
            raise ValidationError("slot granularity must be positive")

    @staticmethod
    def require(
        window: Optional[AvailabilityWindow], resource_id: UUID, day: date_type
    ) -> AvailabilityWindow:
        if window is None:
            raise NotFound(
                "AvailabilityWindow",
                f"{resource_id}@{day.isoformat()}",
                f"No availability recorded for resource {resource_id} on {day}",
            )
        return window

    def open_intervals(self, window: AvailabilityWindow) -> list[Interval]:
        """Bookable time before bookings: hours minus break and blocked ranges.

        Explicit available ranges can reopen the break but never extend past
        working hours.
        """
        hours = window.working_hours
        if window.is_day_off or hours is None:
            return []

        base = [hours]
        if window.break_interval is not None:
            base = subtract_intervals(base, [window.break_interval])

        reopened = []
        blocked = []
        for r in window.ranges:
            clipped = clip_interval(r.interval, hours)
            if clipped is None:
                continue
            (reopened if r.is_available else blocked).append(clipped)

        return subtract_intervals(merge_intervals(base + reopened), blocked)

    def compute_free_slots(
        self,
        window: AvailabilityWindow,
        duration_minutes: int,
        bookings: Iterable[Interval] = (),
    ) -> Iterator[Interval]:
        """Yield candidate slots in start order.

        Inside every free gap, starts step by the configured granularity from
        the gap start while the slot still fits. Bookings only block time where
        they would fill the window's concurrent-booking capacity.
        """
        if duration_minutes <= 0:
            raise ValidationError(
                "duration_minutes must be positive", {"field": "duration_minutes"}
            )

        occupied = saturated_intervals(bookings, window.max_concurrent_bookings or 1)
        for gap in subtract_intervals(self.open_intervals(window), occupied):
            start = gap.start
            while start + duration_minutes <= gap.end:
                yield Interval(start, start + duration_minutes)
                start += self.granularity_minutes

    def unavailability_reason(
        self, window: AvailabilityWindow, minute: int
    ) -> Optional[str]:
        """Why ``minute`` is not available, or None when it is.

        Day off first, then any explicit range covering the minute (a blocking
        range beats an opening one), then working hours and the break.
        """
        if minute < 0 or minute >= MINUTES_PER_DAY:
            raise ValidationError(f"minute out of range: {minute}")
        if window.is_day_off:
            return REASON_DAY_OFF

        covering = [r for r in window.ranges if r.interval.contains(minute)]
        if covering:
            blocking = next((r for r in covering if not r.is_available), None)
            if blocking is not None:
                return blocking.reason or REASON_UNAVAILABLE
            return None

        hours = window.working_hours
        if hours is None or not hours.contains(minute):
            return REASON_OUTSIDE_HOURS
        if window.break_interval is not None and window.break_interval.contains(minute):
            return REASON_BREAK
        return None

    def is_available_at(self, window: AvailabilityWindow, minute: int) -> bool:
        return self.unavailability_reason(window, minute) is None

    def range_unavailability_reason(
        self, window: AvailabilityWindow, requested: Interval
    ) -> Optional[str]:
        """First reason any instant of ``requested`` is unavailable.

        Availability only changes at window boundaries, so checking the start
        plus every boundary inside the range covers every instant.
        """
        if requested.end > MINUTES_PER_DAY:
            return REASON_OUTSIDE_HOURS

        boundaries = {requested.start}
        edges: list[Interval] = []
        if window.working_hours is not None:
            edges.append(window.working_hours)
        if window.break_interval is not None:
            edges.append(window.break_interval)
        edges.extend(r.interval for r in window.ranges)
        for edge in edges:
            for point in (edge.start, edge.end):
                if requested.start < point < requested.end:
                    boundaries.add(point)

        for minute in sorted(boundaries):
            reason = self.unavailability_reason(window, minute)
            if reason is not None:
                return reason
        return None


@dataclass
class AvailabilityCheck:
    available: bool
    reason: Optional[str] = None
    conflicting_appointment_ids: list[UUID] = field(default_factory=list)


@dataclass
class RecurringResult:
    created_dates: list[date_type]
    skipped_existing_dates: list[date_type]
    excluded_dates: list[date_type]


@dataclass
class ScheduleDay:
    date: date_type
    window: Optional[AvailabilityWindow]
    appointments: list[Any]


def _intervals(appointments: Iterable[Any]) -> list[Interval]:
    return [Interval(a.start_minute, a.end_minute) for a in appointments]


class AvailabilityService:
    """Availability queries and window management for one resource at a time."""

    def __init__(
        self,
        availability_store: AvailabilityStore,
        booking_store: BookingStore,
        calendar: Optional[AvailabilityCalendar] = None,
        holiday_service: Optional[HolidayService] = None,
        config: Optional[Settings] = None,
    ):
        self.availability_store = availability_store
        self.booking_store = booking_store
        self.config = config or default_settings
        self.calendar = calendar or AvailabilityCalendar(
            self.config.SLOT_GRANULARITY_MINUTES
        )
        self.holiday_service = holiday_service or HolidayService(
            self.config.HOLIDAY_COUNTRY
        )

    # Window lookup

    async def get_window(self, resource_id: UUID, day: date_type) -> AvailabilityWindow:
        window = await self.availability_store.get_window(resource_id, day)
        return self.calendar.require(window, resource_id, day)

    def default_window(self, resource_id: UUID, day: date_type) -> AvailabilityWindow:
        """Transient window with the configured default hours."""
        hours = Interval(
            parse_time(self.config.DEFAULT_WORKING_START, "DEFAULT_WORKING_START"),
            parse_time(self.config.DEFAULT_WORKING_END, "DEFAULT_WORKING_END"),
        )
        return WindowSpec(working_hours=hours).to_model(resource_id, day)

    async def resolve_window(
        self, resource_id: UUID, day: date_type
    ) -> Optional[AvailabilityWindow]:
        """The window for (resource, date) after applying the missing-record policy.

        Returns None when there is no record and the policy treats that as
        unavailable.
        """
        try:
            return await self.get_window(resource_id, day)
        except NotFound:
            if self.config.MISSING_AVAILABILITY_POLICY == "default_hours":
                logger.debug(f"No window for {resource_id} on {day}, using default hours")
                return self.default_window(resource_id, day)
            logger.debug(f"No window for {resource_id} on {day}, treating as unavailable")
            return None

    def window_reason(
        self, window: Optional[AvailabilityWindow], requested: Interval
    ) -> Optional[str]:
        if window is None:
            return REASON_NO_RECORD
        return self.calendar.range_unavailability_reason(window, requested)

    # Queries

    async def get_available_slots(
        self, resource_id: UUID, day: date_type, duration_minutes: int
    ) -> tuple[list[Interval], Optional[str]]:
        """Free slots for a duration, plus the reason when there are none."""
        window = await self.resolve_window(resource_id, day)
        if window is None:
            return [], REASON_NO_RECORD
        if window.is_day_off:
            return [], REASON_DAY_OFF

        bookings = await self.booking_store.query_by_resource_and_date(
            resource_id, day, ACTIVE_STATUSES
        )
        slots = list(
            self.calendar.compute_free_slots(window, duration_minutes, _intervals(bookings))
        )
        logger.info(
            f"Found {len(slots)} slots of {duration_minutes}min for resource "
            f"{resource_id} on {day}"
        )
        return slots, (None if slots else REASON_NO_SLOTS)

    async def check_availability(
        self,
        resource_id: UUID,
        day: date_type,
        requested: Interval,
        exclude_appointment_id: Optional[UUID] = None,
    ) -> AvailabilityCheck:
        window = await self.resolve_window(resource_id, day)
        reason = self.window_reason(window, requested)
        if reason is not None:
            return AvailabilityCheck(available=False, reason=reason)

        bookings = await self.booking_store.query_by_resource_and_date(
            resource_id, day, ACTIVE_STATUSES
        )
        overlapping = find_overlapping(bookings, requested, exclude_appointment_id)
        if overlapping and capacity_exhausted(
            overlapping, requested, window.max_concurrent_bookings or 1
        ):
            return AvailabilityCheck(
                available=False,
                reason=REASON_BOOKED,
                conflicting_appointment_ids=[a.uuid for a in overlapping],
            )
        return AvailabilityCheck(available=True)

    async def get_available_days(
        self,
        resource_id: UUID,
        start_date: date_type,
        end_date: date_type,
        duration_minutes: int,
    ) -> list[date_type]:
        """Dates in the range with at least one free slot of ``duration_minutes``."""
        self._validate_range(start_date, end_date)
        windows = {
            w.date: w
            for w in await self.availability_store.list_windows(
                resource_id, start_date, end_date
            )
        }
        bookings_by_day = defaultdict(list)
        for appointment in await self.booking_store.query_by_resource_and_range(
            resource_id, start_date, end_date, ACTIVE_STATUSES
        ):
            bookings_by_day[appointment.date].append(appointment)

        available = []
        current = start_date
        while current <= end_date:
            window = windows.get(current)
            if window is None and self.config.MISSING_AVAILABILITY_POLICY == "default_hours":
                window = self.default_window(resource_id, current)
            if window is not None:
                slots = self.calendar.compute_free_slots(
                    window, duration_minutes, _intervals(bookings_by_day[current])
                )
                if next(slots, None) is not None:
                    available.append(current)
            current += timedelta(days=1)

        logger.info(
            f"Found {len(available)} available days out of "
            f"{(end_date - start_date).days + 1} for resource {resource_id}"
        )
        return available

    async def get_resource_schedule(
        self, resource_id: UUID, start_date: date_type, end_date: date_type
    ) -> list[ScheduleDay]:
        self._validate_range(start_date, end_date)
        windows = {
            w.date: w
            for w in await self.availability_store.list_windows(
                resource_id, start_date, end_date
            )
        }
        appointments_by_day = defaultdict(list)
        for appointment in await self.booking_store.query_by_resource_and_range(
            resource_id, start_date, end_date, ACTIVE_STATUSES
        ):
            appointments_by_day[appointment.date].append(appointment)

        days = []
        current = start_date
        while current <= end_date:
            days.append(
                ScheduleDay(
                    date=current,
                    window=windows.get(current),
                    appointments=sorted(
                        appointments_by_day[current], key=lambda a: a.start_minute
                    ),
                )
            )
            current += timedelta(days=1)
        return days

    # Window management

    async def upsert_window(
        self, resource_id: UUID, day: date_type, spec: WindowSpec
    ) -> AvailabilityWindow:
        """Create or replace the single window for (resource, date)."""
        window = await self.availability_store.get_window(resource_id, day)
        if window is None:
            window = spec.to_model(resource_id, day)
            logger.info(f"Creating availability for resource {resource_id} on {day}")
        else:
            spec.apply_to(window)
            window.is_recurring = False
            logger.info(f"Replacing availability for resource {resource_id} on {day}")
        return await self.availability_store.save_window(window)

    async def delete_window(self, resource_id: UUID, day: date_type) -> None:
        window = await self.get_window(resource_id, day)
        await self.availability_store.delete_window(window)
        logger.info(f"Deleted availability for resource {resource_id} on {day}")

    async def create_recurring(
        self,
        resource_id: UUID,
        template: WindowSpec,
        start_date: date_type,
        end_date: date_type,
        days_of_week: Iterable[int],
        exclude_dates: Iterable[date_type] = (),
        skip_holidays: bool = True,
    ) -> RecurringResult:
        """Materialize a weekly template; dates that already have a window are kept."""
        excluded = set(exclude_dates)
        if skip_holidays:
            holiday_dates = self.holiday_service.holidays_between(start_date, end_date)
            if holiday_dates:
                logger.debug(f"Skipping holidays: {sorted(holiday_dates)}")
            excluded.update(holiday_dates)

        weekdays = set(days_of_week)
        materialized = expand_recurring_availability(
            template, start_date, end_date, weekdays, excluded
        )
        existing = {
            w.date
            for w in await self.availability_store.list_windows(
                resource_id, start_date, end_date
            )
        }

        new_windows = []
        skipped = []
        for day, spec in materialized:
            if day in existing:
                skipped.append(day)
                continue
            new_windows.append(spec.to_model(resource_id, day, is_recurring=True))

        if new_windows:
            await self.availability_store.save_windows(new_windows)

        excluded_in_range = sorted(
            d
            for d in excluded
            if start_date <= d <= end_date and d.weekday() in weekdays
        )
        logger.info(
            f"Recurring availability for resource {resource_id}: "
            f"{len(new_windows)} created, {len(skipped)} already present, "
            f"{len(excluded_in_range)} excluded"
        )
        return RecurringResult(
            created_dates=[w.date for w in new_windows],
            skipped_existing_dates=skipped,
            excluded_dates=excluded_in_range,
        )

    @staticmethod
    def _validate_range(start_date: date_type, end_date: date_type) -> None:
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        if (end_date - start_date).days > MAX_RANGE_DAYS:
            raise ValidationError(f"date range cannot exceed {MAX_RANGE_DAYS} days")
