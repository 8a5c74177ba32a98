"""API v1 router configuration."""

from fastapi import APIRouter

# Import endpoint routers
from fieldchart.api.v1.endpoints import audit, encounters, health

# Create API v1 router
api_router = APIRouter()

# Include endpoint routers
api_router.include_router(
    encounters.router,
    tags=["Encounters"],
)
api_router.include_router(
    audit.router,
    tags=["Audit"],
)
api_router.include_router(health.router)
