import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship

from app.core.database import Base


class ServiceAddon(Base):
    """Optional extra on a service line, priced and timed per unit."""

    __tablename__ = "service_addons"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(Uuid, unique=True, nullable=False, default=uuid.uuid4, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    name = Column(String(255), nullable=False)

    # Per unit; a line may take up to max_quantity units
    extra_duration_minutes = Column(Integer, default=0, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    max_quantity = Column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_addon_price"),
        CheckConstraint("extra_duration_minutes >= 0", name="check_addon_duration"),
        CheckConstraint("max_quantity >= 1", name="check_addon_max_quantity"),
    )

    service = relationship("Service", back_populates="service_addons")

    def __repr__(self):
        return f"<ServiceAddon(name='{self.name}', +{self.extra_duration_minutes}min)>"
