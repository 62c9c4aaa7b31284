"""In-memory collaborators and builders for scheduling tests."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

import pytest

from app.core.config import Settings
from app.core.exceptions import ConcurrencyConflict, NotFound
from app.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentServiceLine,
    AppointmentStatus,
)
from app.services.availability import AvailabilityService, WindowSpec
from app.services.collaborators import CatalogAddon, CatalogService, Resource
from app.services.holidays import HolidayService
from app.services.locking import LocalResourceLockManager
from app.utils.time import Interval

# Monday 10 March 2025, 08:00 tenant-local
FIXED_NOW = datetime(2025, 3, 10, 8, 0)
BOOKING_DAY = date(2025, 3, 12)

_SNAPSHOT_FIELDS = (
    "status",
    "previous_status",
    "status_changed_at",
    "actual_start_at",
    "actual_end_at",
    "date",
    "start_minute",
    "end_minute",
    "cancelled_at",
    "cancelled_by",
    "cancellation_reason",
    "internal_notes",
    "reschedule_count",
)


def make_appointment(
    resource_id: uuid.UUID,
    start: str,
    end: str,
    day: date = BOOKING_DAY,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
    extra_resources: Iterable[uuid.UUID] = (),
) -> Appointment:
    """Unsaved appointment occupying ``[start, end)`` on every given resource."""
    interval = Interval.parse(start, end)
    resources = [resource_id, *extra_resources]
    return Appointment(
        uuid=uuid.uuid4(),
        customer_id="customer-1",
        date=day,
        start_minute=interval.start,
        end_minute=interval.end,
        total_duration=interval.duration,
        status=status.value,
        subtotal=Decimal("100"),
        discount_amount=Decimal("0"),
        tax_rate=Decimal("0"),
        tax=Decimal("0"),
        total_amount=Decimal("100"),
        reschedule_count=0,
        service_lines=[
            AppointmentServiceLine(
                position=position,
                service_id=uuid.uuid4(),
                resource_id=rid,
                service_name="Haircut",
                price=Decimal("100"),
                duration_minutes=interval.duration,
                consumes_inventory=False,
                addons=[],
            )
            for position, rid in enumerate(resources)
        ],
    )


class InMemoryBookingStore:
    """BookingStore double. ``stale_writes`` makes the next N updates lose a race."""

    def __init__(self):
        self.appointments: dict[uuid.UUID, Appointment] = {}
        self.stale_writes = 0
        self.update_calls = 0
        self._snapshots: dict[uuid.UUID, dict] = {}

    def add(self, *appointments: Appointment) -> None:
        for appointment in appointments:
            self.appointments[appointment.uuid] = appointment

    async def get(self, appointment_id):
        appointment = self.appointments.get(appointment_id)
        if appointment is not None:
            self._snapshots[appointment_id] = {
                "fields": {f: getattr(appointment, f) for f in _SNAPSHOT_FIELDS},
                "history": list(appointment.reschedule_history),
            }
        return appointment

    async def create(self, appointment):
        self.appointments[appointment.uuid] = appointment
        return appointment

    async def update(self, appointment):
        self.update_calls += 1
        if self.stale_writes:
            self.stale_writes -= 1
            self._restore(appointment)
            raise ConcurrencyConflict("Appointment was modified by another request")
        return appointment

    async def query_by_resource_and_date(self, resource_id, day, statuses=ACTIVE_STATUSES):
        return await self.query_by_resource_and_range(resource_id, day, day, statuses)

    async def query_by_resource_and_range(
        self, resource_id, start_date, end_date, statuses=ACTIVE_STATUSES
    ):
        wanted = {s.value for s in statuses}
        found = [
            a
            for a in self.appointments.values()
            if resource_id in a.resource_ids
            and start_date <= a.date <= end_date
            and a.status in wanted
        ]
        return sorted(found, key=lambda a: (a.date, a.start_minute))

    async def rollback(self):
        return None

    def _restore(self, appointment):
        snapshot = self._snapshots.get(appointment.uuid)
        if snapshot is None:
            return
        for field_name, value in snapshot["fields"].items():
            setattr(appointment, field_name, value)
        appointment.reschedule_history = snapshot["history"]


class InMemoryAvailabilityStore:
    def __init__(self):
        self.windows = {}

    def put(self, resource_id, day: date, spec: WindowSpec):
        window = spec.to_model(resource_id, day)
        self.windows[(resource_id, day)] = window
        return window

    async def get_window(self, resource_id, day):
        return self.windows.get((resource_id, day))

    async def list_windows(self, resource_id, start_date, end_date):
        return sorted(
            (
                w
                for (rid, day), w in self.windows.items()
                if rid == resource_id and start_date <= day <= end_date
            ),
            key=lambda w: w.date,
        )

    async def save_window(self, window):
        self.windows[(window.resource_id, window.date)] = window
        return window

    async def save_windows(self, windows):
        for window in windows:
            await self.save_window(window)

    async def delete_window(self, window):
        self.windows.pop((window.resource_id, window.date), None)


class FakeResourceDirectory:
    def __init__(self, *resource_ids: uuid.UUID):
        self.resource_ids = set(resource_ids)

    async def get(self, resource_id):
        if resource_id not in self.resource_ids:
            raise NotFound("Resource", resource_id)
        return Resource(id=resource_id, name=f"Stylist {str(resource_id)[:4]}")


class FakeServiceCatalog:
    def __init__(self, *services: CatalogService):
        self.services = {s.id: s for s in services}

    async def get(self, service_id):
        service = self.services.get(service_id)
        if service is None:
            raise NotFound("Service", service_id)
        return service


def standard_day(
    break_time: Optional[tuple[str, str]] = ("13:00", "14:00"),
    capacity: int = 1,
) -> WindowSpec:
    """09:00-18:00 working day with an optional break."""
    return WindowSpec(
        working_hours=Interval.parse("09:00", "18:00"),
        break_interval=Interval.parse(*break_time) if break_time else None,
        max_concurrent_bookings=capacity,
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        SLOT_GRANULARITY_MINUTES=30,
        DEFAULT_MIN_ADVANCE_HOURS=2,
        DEFAULT_MAX_ADVANCE_DAYS=30,
        CANCELLATION_CUTOFF_HOURS=2,
        RESCHEDULE_CUTOFF_HOURS=4,
        DEFAULT_TAX_RATE=0.0,
        MISSING_AVAILABILITY_POLICY="unavailable",
        MAX_WRITE_RETRIES=2,
        HOLIDAY_COUNTRY=None,
    )


@pytest.fixture
def resource_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def haircut() -> CatalogService:
    beard_trim = CatalogAddon(
        id=uuid.uuid4(),
        name="Beard Trim",
        price=Decimal("10.00"),
        duration_minutes=15,
        max_quantity=2,
    )
    return CatalogService(
        id=uuid.uuid4(),
        name="Haircut",
        price=Decimal("25.00"),
        duration_minutes=45,
        consumes_inventory=True,
        addons={beard_trim.id: beard_trim},
    )


@pytest.fixture
def booking_store() -> InMemoryBookingStore:
    return InMemoryBookingStore()


@pytest.fixture
def availability_store() -> InMemoryAvailabilityStore:
    return InMemoryAvailabilityStore()


@pytest.fixture
def availability_service(availability_store, booking_store, test_settings):
    return AvailabilityService(
        availability_store,
        booking_store,
        holiday_service=HolidayService(country=""),
        config=test_settings,
    )


@pytest.fixture
def lock_manager() -> LocalResourceLockManager:
    return LocalResourceLockManager(wait_seconds=1)
