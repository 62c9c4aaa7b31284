"""Persistence seams for the scheduling core.

The lifecycle and availability services only talk to the ``BookingStore`` and
``AvailabilityStore`` protocols. The SQLAlchemy implementations below are what
the API wires in; tests substitute in-memory fakes.
"""

from datetime import date as date_type
from typing import Iterable, Optional, Protocol
from uuid import UUID
import logging

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrencyConflict
from app.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentServiceLine,
    AppointmentStatus,
)
from app.models.availability import AvailabilityWindow


logger = logging.getLogger(__name__)


class BookingStore(Protocol):
    async def get(self, appointment_id: UUID) -> Optional[Appointment]: ...

    async def create(self, appointment: Appointment) -> Appointment: ...

    async def update(self, appointment: Appointment) -> Appointment: ...

    async def query_by_resource_and_date(
        self,
        resource_id: UUID,
        day: date_type,
        statuses: Iterable[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]: ...

    async def query_by_resource_and_range(
        self,
        resource_id: UUID,
        start_date: date_type,
        end_date: date_type,
        statuses: Iterable[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]: ...

    async def rollback(self) -> None: ...


class AvailabilityStore(Protocol):
    async def get_window(
        self, resource_id: UUID, day: date_type
    ) -> Optional[AvailabilityWindow]: ...

    async def list_windows(
        self, resource_id: UUID, start_date: date_type, end_date: date_type
    ) -> list[AvailabilityWindow]: ...

    async def save_window(self, window: AvailabilityWindow) -> AvailabilityWindow: ...

    async def save_windows(self, windows: list[AvailabilityWindow]) -> None: ...

    async def delete_window(self, window: AvailabilityWindow) -> None: ...


class SqlAlchemyBookingStore:
    """BookingStore over an AsyncSession.

    Writes commit immediately. A version mismatch on update surfaces as
    ConcurrencyConflict after the session is rolled back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, appointment_id: UUID) -> Optional[Appointment]:
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.uuid == appointment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        await self._commit(appointment)
        return appointment

    async def update(self, appointment: Appointment) -> Appointment:
        await self._commit(appointment)
        return appointment

    async def query_by_resource_and_date(
        self,
        resource_id: UUID,
        day: date_type,
        statuses: Iterable[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        return await self.query_by_resource_and_range(resource_id, day, day, statuses)

    async def query_by_resource_and_range(
        self,
        resource_id: UUID,
        start_date: date_type,
        end_date: date_type,
        statuses: Iterable[AppointmentStatus] = ACTIVE_STATUSES,
    ) -> list[Appointment]:
        status_values = [s.value for s in statuses]
        assigned = select(AppointmentServiceLine.appointment_id).where(
            AppointmentServiceLine.resource_id == resource_id
        )
        query = (
            select(Appointment)
            .where(
                and_(
                    Appointment.id.in_(assigned),
                    Appointment.date >= start_date,
                    Appointment.date <= end_date,
                    Appointment.status.in_(status_values),
                )
            )
            .order_by(Appointment.date, Appointment.start_minute)
        )
        result = await self.db.execute(query)
        appointments = list(result.scalars().all())
        logger.debug(
            f"Found {len(appointments)} appointments for resource {resource_id} "
            f"between {start_date} and {end_date}"
        )
        return appointments

    async def rollback(self) -> None:
        await self.db.rollback()

    async def _commit(self, appointment: Appointment) -> None:
        # Rollback expires the instance, so read the id while it is loaded
        appointment_id = appointment.uuid
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"Stale write for appointment {appointment_id}: {e}")
            raise ConcurrencyConflict(
                "Appointment was modified by another request",
                {"appointment_id": str(appointment_id)},
            ) from e
        # Reload server-generated columns and relationships while still async
        await self.db.refresh(appointment)


class SqlAlchemyAvailabilityStore:
    """AvailabilityStore over an AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_window(
        self, resource_id: UUID, day: date_type
    ) -> Optional[AvailabilityWindow]:
        result = await self.db.execute(
            select(AvailabilityWindow).where(
                and_(
                    AvailabilityWindow.resource_id == resource_id,
                    AvailabilityWindow.date == day,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_windows(
        self, resource_id: UUID, start_date: date_type, end_date: date_type
    ) -> list[AvailabilityWindow]:
        result = await self.db.execute(
            select(AvailabilityWindow)
            .where(
                and_(
                    AvailabilityWindow.resource_id == resource_id,
                    AvailabilityWindow.date >= start_date,
                    AvailabilityWindow.date <= end_date,
                )
            )
            .order_by(AvailabilityWindow.date)
        )
        return list(result.scalars().all())

    async def save_window(self, window: AvailabilityWindow) -> AvailabilityWindow:
        self.db.add(window)
        await self._commit()
        await self.db.refresh(window)
        return window

    async def save_windows(self, windows: list[AvailabilityWindow]) -> None:
        self.db.add_all(windows)
        await self._commit()

    async def delete_window(self, window: AvailabilityWindow) -> None:
        await self.db.delete(window)
        await self._commit()

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Another request created the same (resource, date) window first
            await self.db.rollback()
            logger.warning(f"Availability write rejected: {e.orig}")
            raise ConcurrencyConflict(
                "Availability for this resource and date was written concurrently"
            ) from e
