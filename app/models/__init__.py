# Import all models to ensure they are registered with SQLAlchemy
from . import (
    appointment,
    availability,
    service,
    service_addon,
    staff,
)

__all__ = [
    "appointment",
    "availability",
    "service",
    "service_addon",
    "staff",
]
