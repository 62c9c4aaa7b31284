"""Collaborators the scheduling core consumes but does not own.

Each is a Protocol. The SQL-backed directory and catalog read the local
``staff`` and ``services`` tables; inventory and loyalty default to
implementations that only log, to be replaced by real integrations.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFound
from app.models.service import Service
from app.models.staff import Staff


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resource:
    id: UUID
    name: str


@dataclass(frozen=True)
class CatalogAddon:
    id: UUID
    name: str
    price: Decimal
    duration_minutes: int
    max_quantity: int = 1


@dataclass(frozen=True)
class CatalogService:
    id: UUID
    name: str
    price: Decimal
    duration_minutes: int
    consumes_inventory: bool = False
    min_advance_hours: Optional[float] = None
    max_advance_days: Optional[int] = None
    addons: dict[UUID, CatalogAddon] = field(default_factory=dict)


class ResourceDirectory(Protocol):
    async def get(self, resource_id: UUID) -> Resource: ...


class ServiceCatalog(Protocol):
    async def get(self, service_id: UUID) -> CatalogService: ...


class InventoryService(Protocol):
    async def consume(self, service_line: Any, appointment_id: UUID) -> None: ...


class LoyaltyService(Protocol):
    async def award(self, customer_id: Optional[str], amount: Decimal) -> None: ...


class SqlResourceDirectory:
    """Bookable staff members looked up by their public uuid."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, resource_id: UUID) -> Resource:
        result = await self.db.execute(select(Staff).where(Staff.uuid == resource_id))
        staff = result.scalar_one_or_none()
        if staff is None or not staff.is_active or not staff.is_bookable:
            raise NotFound("Resource", resource_id)
        return Resource(id=staff.uuid, name=staff.name)


class SqlServiceCatalog:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, service_id: UUID) -> CatalogService:
        result = await self.db.execute(select(Service).where(Service.uuid == service_id))
        service = result.scalar_one_or_none()
        if service is None or not service.is_active:
            raise NotFound("Service", service_id)

        return CatalogService(
            id=service.uuid,
            name=service.name,
            price=Decimal(service.price),
            duration_minutes=service.duration_minutes,
            consumes_inventory=service.consumes_inventory,
            min_advance_hours=(
                float(service.min_advance_hours)
                if service.min_advance_hours is not None
                else None
            ),
            max_advance_days=service.max_advance_days,
            addons={
                addon.uuid: CatalogAddon(
                    id=addon.uuid,
                    name=addon.name,
                    price=Decimal(addon.price),
                    duration_minutes=addon.extra_duration_minutes,
                    max_quantity=addon.max_quantity,
                )
                for addon in service.service_addons
            },
        )


class LoggingInventoryService:
    async def consume(self, service_line: Any, appointment_id: UUID) -> None:
        logger.info(
            f"Inventory consumption for appointment {appointment_id}: "
            f"service {service_line.service_id}"
        )


class LoggingLoyaltyService:
    async def award(self, customer_id: Optional[str], amount: Decimal) -> None:
        if not customer_id:
            logger.debug("Skipping loyalty award for appointment without customer")
            return
        logger.info(f"Loyalty award for customer {customer_id}: {amount}")
