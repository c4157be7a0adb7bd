"""
API v1 Router Initialization
Exports all routers for the PawMart API v1
"""

from fastapi import APIRouter
from .health import router as health_router
from .orders import router as orders_router
from .payments import router as payments_router

# Create main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

# Include all routers
api_v1_router.include_router(orders_router)
api_v1_router.include_router(payments_router)
api_v1_router.include_router(health_router)

# Export the main router
__all__ = ["api_v1_router"]
