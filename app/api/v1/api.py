from fastapi import APIRouter

from app.api.v1.endpoints import appointments, scheduling

api_router = APIRouter()

# Appointment lifecycle endpoints
api_router.include_router(
    appointments.router, prefix="/appointments", tags=["appointments"]
)

# Availability and slot endpoints
api_router.include_router(scheduling.router, prefix="/scheduling", tags=["scheduling"])
