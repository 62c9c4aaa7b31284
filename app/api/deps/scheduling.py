from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps.database import get_db
from app.services.appointment import AppointmentLifecycleService
from app.services.availability import AvailabilityService
from app.services.collaborators import SqlResourceDirectory, SqlServiceCatalog
from app.services.locking import get_lock_manager
from app.services.stores import SqlAlchemyAvailabilityStore, SqlAlchemyBookingStore


def get_availability_service(db: AsyncSession = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(
        SqlAlchemyAvailabilityStore(db), SqlAlchemyBookingStore(db)
    )


def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
    availability: AvailabilityService = Depends(get_availability_service),
) -> AppointmentLifecycleService:
    return AppointmentLifecycleService(
        booking_store=availability.booking_store,
        availability=availability,
        resource_directory=SqlResourceDirectory(db),
        service_catalog=SqlServiceCatalog(db),
        lock_manager=get_lock_manager(),
    )
