import asyncio
import calendar
import uuid
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID
import logging

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import (
    ConcurrencyConflict,
    InvalidTransition,
    NotFound,
    PolicyViolation,
    SchedulingConflict,
    ValidationError,
)
from app.models.appointment import (
    Appointment,
    AppointmentLineAddon,
    AppointmentServiceLine,
    AppointmentStatus,
    CancelledBy,
    RecurrenceFrequency,
    RescheduleEntry,
)
from app.schemas.appointment import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentStatusTransition,
    PriceQuoteRequest,
    RecurringAppointmentCreate,
    ServiceLineRequest,
)
from app.services.availability import AvailabilityService
from app.services.collaborators import (
    CatalogService,
    InventoryService,
    LoggingInventoryService,
    LoggingLoyaltyService,
    LoyaltyService,
    ResourceDirectory,
    ServiceCatalog,
)
from app.services.conflicts import ConflictDetector
from app.services.locking import ResourceLockManager, get_lock_manager
from app.services.policy import BookingPolicy, BookingPolicyEngine
from app.services.pricing import DiscountInput, PriceBreakdown, PricingCalculator
from app.services.stores import BookingStore
from app.utils.time import MINUTES_PER_DAY, Interval, format_minutes, parse_time, to_datetime


logger = logging.getLogger(__name__)

T = TypeVar("T")


MAX_SERIES_OCCURRENCES = 52


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(day: date_type, months: int) -> date_type:
    """Same day of month ``months`` later, clamped to the last day of short months."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return day.replace(
        year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1])
    )


def expand_recurrence(
    start_date: date_type,
    frequency: RecurrenceFrequency,
    interval: int,
    end_date: date_type,
    max_occurrences: int = MAX_SERIES_OCCURRENCES,
) -> list[date_type]:
    """Occurrence dates of a series, ``start_date`` first, up to ``end_date`` inclusive.

    Each date is computed from ``start_date`` rather than from the previous
    occurrence, so a monthly series on the 31st comes back to the 31st after
    a short month.
    """
    if interval < 1:
        raise ValidationError("interval must be at least 1", {"field": "interval"})
    if end_date < start_date:
        raise ValidationError("end_date must not be before date", {"field": "end_date"})
    max_occurrences = min(max_occurrences, MAX_SERIES_OCCURRENCES)

    dates = []
    step = 0
    while len(dates) < max_occurrences:
        if frequency == RecurrenceFrequency.DAILY:
            current = start_date + timedelta(days=interval * step)
        elif frequency == RecurrenceFrequency.WEEKLY:
            current = start_date + timedelta(weeks=interval * step)
        else:
            current = add_months(start_date, interval * step)
        if current > end_date:
            break
        dates.append(current)
        step += 1
    return dates


@dataclass
class SkippedOccurrence:
    date: date_type
    kind: str
    message: str
    reason: Optional[str] = None


@dataclass
class RecurringBookingResult:
    series_id: UUID
    created: list[Appointment] = field(default_factory=list)
    skipped: list[SkippedOccurrence] = field(default_factory=list)


class AppointmentLifecycleService:
    """Create, move, cancel and advance appointments.

    Every mutation of an appointment's status or reschedule history goes
    through this service. Booking checks run under per-resource locks, and
    writes that lose an optimistic version check are retried a bounded number
    of times before ConcurrencyConflict reaches the caller.

    ``clock`` returns the current tenant-local time as a naive datetime and is
    the only time source for policy decisions.
    """

    def __init__(
        self,
        booking_store: BookingStore,
        availability: AvailabilityService,
        resource_directory: ResourceDirectory,
        service_catalog: ServiceCatalog,
        inventory_service: Optional[InventoryService] = None,
        loyalty_service: Optional[LoyaltyService] = None,
        lock_manager: Optional[ResourceLockManager] = None,
        policy_engine: Optional[BookingPolicyEngine] = None,
        pricing: Optional[PricingCalculator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.store = booking_store
        self.availability = availability
        self.conflicts = ConflictDetector(booking_store)
        self.resource_directory = resource_directory
        self.service_catalog = service_catalog
        self.inventory_service = inventory_service or LoggingInventoryService()
        self.loyalty_service = loyalty_service or LoggingLoyaltyService()
        self.lock_manager = lock_manager or get_lock_manager()
        self.policy_engine = policy_engine or BookingPolicyEngine(
            self.config.CANCELLATION_CUTOFF_HOURS, self.config.RESCHEDULE_CUTOFF_HOURS
        )
        self.pricing = pricing or PricingCalculator()
        self.clock = clock or datetime.now

    # Queries

    async def get_appointment(self, appointment_id: UUID) -> Appointment:
        appointment = await self.store.get(appointment_id)
        if appointment is None:
            raise NotFound("Appointment", appointment_id)
        return appointment

    async def price_preview(self, request: PriceQuoteRequest) -> PriceBreakdown:
        """Price a prospective booking without checking availability."""
        lines, _ = await self._build_service_lines(request.service_lines, check_resources=False)
        return self.pricing.price(
            lines, DiscountInput.from_spec(request.discount), self._tax_rate(request.tax_rate)
        )

    # Commands

    async def create_appointment(self, data: AppointmentCreate) -> Appointment:
        """Book a new appointment in the ``scheduled`` state."""
        return await self._create(data)

    async def create_recurring_appointments(
        self, data: RecurringAppointmentCreate
    ) -> RecurringBookingResult:
        """Book a series of appointments at the same time of day.

        The first occurrence is booked like a single appointment and any
        failure there is raised. Later occurrences that conflict or break the
        booking window are skipped and reported. Every booked occurrence
        carries the first appointment's uuid as its ``series_id``.
        """
        end_date = data.end_date or add_months(data.date, 12)
        dates = expand_recurrence(
            data.date, data.frequency, data.interval, end_date, data.max_occurrences
        )
        logger.info(
            f"Creating {data.frequency.value} series of up to {len(dates)} appointments "
            f"from {data.date} at {data.time}"
        )

        series_id = uuid.uuid4()
        result = RecurringBookingResult(series_id=series_id)
        result.created.append(
            await self._create(data, appointment_id=series_id, series_id=series_id)
        )

        for day in dates[1:]:
            occurrence = data.model_copy(update={"date": day})
            try:
                result.created.append(await self._create(occurrence, series_id=series_id))
            except SchedulingConflict as e:
                skipped = SkippedOccurrence(day, e.kind, e.message, e.reason)
            except PolicyViolation as e:
                skipped = SkippedOccurrence(day, e.kind, e.message, e.rule)
            else:
                continue
            logger.info(f"Skipped series {series_id} occurrence on {day}: {skipped.message}")
            result.skipped.append(skipped)

        logger.info(
            f"Series {series_id}: created {len(result.created)}, "
            f"skipped {len(result.skipped)}"
        )
        return result

    async def _create(
        self,
        data: AppointmentCreate,
        appointment_id: Optional[UUID] = None,
        series_id: Optional[UUID] = None,
    ) -> Appointment:
        logger.info(f"Creating appointment on {data.date} at {data.time}")

        start_minute = parse_time(data.time)
        lines, services = await self._build_service_lines(data.service_lines)
        discount = DiscountInput.from_spec(data.discount)
        tax_rate = self._tax_rate(data.tax_rate)
        breakdown = self.pricing.price(lines, discount, tax_rate)
        requested = self._requested_interval(start_minute, breakdown.total_duration)

        policy = BookingPolicy.strictest(services)
        self.policy_engine.validate_new_booking(
            to_datetime(data.date, start_minute), self.clock(), policy
        )

        resource_ids = [line.resource_id for line in lines]

        async def book() -> Appointment:
            async with self.lock_manager.hold(resource_ids):
                await self._ensure_slot_free(resource_ids, data.date, requested)
                appointment = Appointment(
                    uuid=appointment_id or uuid.uuid4(),
                    customer_id=data.customer_id,
                    date=data.date,
                    start_minute=requested.start,
                    end_minute=requested.end,
                    total_duration=breakdown.total_duration,
                    status=AppointmentStatus.SCHEDULED.value,
                    subtotal=breakdown.subtotal,
                    discount_percentage=discount.percentage if discount else None,
                    discount_flat_amount=discount.flat_amount if discount else None,
                    discount_reason=discount.reason if discount else None,
                    discount_amount=breakdown.discount_amount,
                    tax_rate=tax_rate,
                    tax=breakdown.tax,
                    total_amount=breakdown.total,
                    booked_by=data.booked_by,
                    series_id=series_id,
                    customer_notes=data.customer_notes,
                    reschedule_count=0,
                    service_lines=lines,
                )
                return await self.store.create(appointment)

        appointment = await self._with_retries("create", book)
        logger.info(
            f"Created appointment {appointment.uuid} on {appointment.date} "
            f"{appointment.interval} for resources {appointment.resource_ids}"
        )
        return appointment

    async def reschedule_appointment(
        self, appointment_id: UUID, data: AppointmentReschedule
    ) -> Appointment:
        """Move an appointment in place to a new date and time.

        The appointment passes through ``rescheduled`` and re-enters
        ``scheduled`` at its new slot, gaining one reschedule history entry.
        """
        new_start = parse_time(data.new_time, "new_time")

        async def move() -> Appointment:
            appointment = await self.get_appointment(appointment_id)
            if not appointment.can_transition_to(AppointmentStatus.RESCHEDULED):
                raise InvalidTransition(
                    appointment.status, AppointmentStatus.RESCHEDULED.value
                )

            now = self.clock()
            self.policy_engine.ensure_can_reschedule(appointment, now)
            requested = self._requested_interval(new_start, appointment.total_duration)
            policy = await self._policy_for_lines(appointment.service_lines)
            self.policy_engine.validate_new_booking(
                to_datetime(data.new_date, new_start), now, policy
            )

            resource_ids = appointment.resource_ids
            async with self.lock_manager.hold(resource_ids):
                await self._ensure_slot_free(
                    resource_ids, data.new_date, requested, appointment.uuid
                )

                changed_at = _utcnow()
                original_date = appointment.date
                original_time = appointment.requested_time
                appointment.transition_to(AppointmentStatus.RESCHEDULED, changed_at)
                appointment.move_to(data.new_date, requested.start)
                appointment.reschedule_history.append(
                    RescheduleEntry(
                        original_date=original_date,
                        original_time=original_time,
                        new_date=data.new_date,
                        new_time=format_minutes(requested.start),
                        reason=data.reason,
                        actor=data.actor,
                        rescheduled_at=changed_at,
                    )
                )
                appointment.reschedule_count = (appointment.reschedule_count or 0) + 1
                appointment.transition_to(AppointmentStatus.SCHEDULED, changed_at)
                return await self.store.update(appointment)

        appointment = await self._with_retries("reschedule", move)
        logger.info(
            f"Rescheduled appointment {appointment.uuid} to {appointment.date} "
            f"{appointment.interval}"
        )
        return appointment

    async def cancel_appointment(
        self, appointment_id: UUID, data: AppointmentCancel
    ) -> Appointment:
        async def cancel() -> Appointment:
            appointment = await self.get_appointment(appointment_id)
            if not appointment.can_transition_to(AppointmentStatus.CANCELLED):
                raise InvalidTransition(appointment.status, AppointmentStatus.CANCELLED.value)
            self.policy_engine.ensure_can_cancel(appointment, self.clock())

            async with self.lock_manager.hold(appointment.resource_ids):
                appointment.transition_to(AppointmentStatus.CANCELLED, _utcnow())
                appointment.cancellation_reason = data.reason
                appointment.cancelled_by = data.cancelled_by.value
                return await self.store.update(appointment)

        appointment = await self._with_retries("cancel", cancel)
        logger.info(f"Cancelled appointment {appointment.uuid}: {data.reason}")
        return appointment

    async def transition_appointment(
        self, appointment_id: UUID, data: AppointmentStatusTransition
    ) -> Appointment:
        """Apply a status change from the transition table.

        Cancelling goes through the cancellation rules. Rescheduling needs a
        target slot and is only possible through ``reschedule_appointment``.
        """
        target = data.target_status
        if target == AppointmentStatus.CANCELLED:
            return await self.cancel_appointment(
                appointment_id,
                AppointmentCancel(reason=data.notes, cancelled_by=CancelledBy.STAFF),
            )

        async def advance() -> Appointment:
            appointment = await self.get_appointment(appointment_id)
            if target == AppointmentStatus.RESCHEDULED:
                raise InvalidTransition(
                    appointment.status,
                    target.value,
                    "Rescheduling requires a new date and time",
                )
            if not appointment.can_transition_to(target):
                raise InvalidTransition(appointment.status, target.value)

            async with self.lock_manager.hold(appointment.resource_ids):
                changed_at = _utcnow()
                appointment.transition_to(target, changed_at)
                if data.notes:
                    appointment.annotate(data.notes, data.actor, changed_at)
                return await self.store.update(appointment)

        appointment = await self._with_retries("transition", advance)
        logger.info(
            f"Appointment {appointment.uuid}: {appointment.previous_status} -> "
            f"{appointment.status}"
        )

        if target == AppointmentStatus.COMPLETED:
            await self._run_completion_side_effects(appointment)
        return appointment

    async def annotate_appointment(
        self, appointment_id: UUID, note: str, actor: Optional[str] = None
    ) -> Appointment:
        """Append an audit note. Allowed in every status, terminal ones included."""

        async def annotate() -> Appointment:
            appointment = await self.get_appointment(appointment_id)
            appointment.annotate(note, actor, _utcnow())
            return await self.store.update(appointment)

        return await self._with_retries("annotate", annotate)

    # Helpers

    async def _build_service_lines(
        self, requests: Iterable[ServiceLineRequest], check_resources: bool = True
    ) -> tuple[list[AppointmentServiceLine], list[CatalogService]]:
        """Snapshot catalog prices and durations into unsaved service lines."""
        lines = []
        services = []
        for position, request in enumerate(requests):
            if check_resources:
                await self.resource_directory.get(request.resource_id)
            service = await self.service_catalog.get(request.service_id)
            services.append(service)

            addons = []
            for selection in request.addons:
                addon = service.addons.get(selection.addon_id)
                if addon is None:
                    raise NotFound("ServiceAddon", selection.addon_id)
                if selection.quantity > addon.max_quantity:
                    raise ValidationError(
                        f"Add-on '{addon.name}' allows at most {addon.max_quantity}",
                        {"addon_id": str(addon.id), "quantity": selection.quantity},
                    )
                if selection.quantity == 0:
                    continue
                addons.append(
                    AppointmentLineAddon(
                        name=addon.name,
                        price=addon.price,
                        duration_minutes=addon.duration_minutes,
                        quantity=selection.quantity,
                    )
                )

            lines.append(
                AppointmentServiceLine(
                    position=position,
                    service_id=service.id,
                    resource_id=request.resource_id,
                    service_name=service.name,
                    price=service.price,
                    duration_minutes=service.duration_minutes,
                    consumes_inventory=service.consumes_inventory,
                    notes=request.notes,
                    addons=addons,
                )
            )
        return lines, services

    async def _policy_for_lines(self, lines: Iterable[Any]) -> BookingPolicy:
        services = []
        for service_id in dict.fromkeys(line.service_id for line in lines):
            try:
                services.append(await self.service_catalog.get(service_id))
            except NotFound:
                logger.debug(f"Service {service_id} left the catalog, using default policy")
        return BookingPolicy.strictest(services)

    def _tax_rate(self, requested: Optional[Decimal]) -> Decimal:
        if requested is not None:
            return Decimal(requested)
        return Decimal(str(self.config.DEFAULT_TAX_RATE))

    @staticmethod
    def _requested_interval(start_minute: int, duration: int) -> Interval:
        if duration <= 0:
            raise ValidationError("Appointment duration must be positive")
        if start_minute + duration > MINUTES_PER_DAY:
            raise ValidationError(
                "Appointment must end on the day it starts",
                {"start": format_minutes(start_minute), "duration_minutes": duration},
            )
        return Interval(start_minute, start_minute + duration)

    async def _ensure_slot_free(
        self,
        resource_ids: Iterable[UUID],
        day: date_type,
        requested: Interval,
        exclude_appointment_id: Optional[UUID] = None,
    ) -> None:
        """Raise SchedulingConflict unless every resource can take ``requested``."""
        resource_ids = list(dict.fromkeys(resource_ids))
        capacities = {}
        for resource_id in resource_ids:
            window = await self.availability.resolve_window(resource_id, day)
            reason = self.availability.window_reason(window, requested)
            if reason is not None:
                logger.warning(
                    f"Resource {resource_id} unavailable on {day} {requested}: {reason}"
                )
                raise SchedulingConflict(
                    f"Resource {resource_id} is not available on {day} at {requested}",
                    {str(resource_id): []},
                    reason=reason,
                )
            capacities[resource_id] = window.max_concurrent_bookings or 1

        conflicts = await self.conflicts.find_conflicts_for_resources(
            resource_ids, day, requested, exclude_appointment_id, capacities
        )
        if conflicts:
            logger.warning(f"Booking conflict on {day} {requested}: {conflicts}")
            raise SchedulingConflict(
                f"Requested time {requested} on {day} overlaps existing appointments",
                {
                    str(resource_id): [a.uuid for a in appointments]
                    for resource_id, appointments in conflicts.items()
                },
                reason="booked",
            )

    async def _with_retries(
        self, operation: str, attempt_once: Callable[[], Awaitable[T]]
    ) -> T:
        attempts = self.config.MAX_WRITE_RETRIES + 1
        attempt = 1
        while True:
            try:
                return await attempt_once()
            except ConcurrencyConflict:
                if attempt >= attempts:
                    logger.warning(f"{operation} gave up after {attempt} attempts")
                    raise
                logger.info(f"{operation} lost a write race, retrying ({attempt}/{attempts})")
                attempt += 1

    async def _run_completion_side_effects(self, appointment: Appointment) -> None:
        calls = [
            self.inventory_service.consume(line, appointment.uuid)
            for line in appointment.service_lines
            if line.consumes_inventory
        ]
        calls.append(
            self.loyalty_service.award(appointment.customer_id, appointment.total_amount)
        )

        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    f"Completion side effect failed for appointment {appointment.uuid}: "
                    f"{result!r}"
                )
