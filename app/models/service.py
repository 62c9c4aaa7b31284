import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base


class Service(Base):
    """Bookable service with duration, pricing and booking window rules."""

    __tablename__ = "services"

    # Core identity
    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Service details
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    # Service behavior
    is_active = Column(Boolean, default=True, nullable=False)
    consumes_inventory = Column(Boolean, default=False, nullable=False)

    # Booking policy, falls back to settings defaults when null
    min_advance_hours = Column(Numeric(6, 2), nullable=True)
    max_advance_days = Column(Integer, nullable=True)

    # Audit timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_service_positive_duration"),
        CheckConstraint("price >= 0", name="check_service_non_negative_price"),
    )

    # Relationships
    service_addons = relationship(
        "ServiceAddon",
        back_populates="service",
        order_by="ServiceAddon.id",
        lazy="selectin",
    )

    def __repr__(self):
        return (
            f"<Service(id={self.id}, name='{self.name}', "
            f"duration={self.duration_minutes}min, price=${self.price})>"
        )
