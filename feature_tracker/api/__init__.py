"""API routes for Feature Tracker."""

from fastapi import APIRouter

from .admin import router as admin_router
from .features import router as features_router
from .notifications import router as notifications_router
from .planning_history import router as planning_history_router
from .products import router as products_router
from .releases import router as releases_router
from .usage import router as usage_router

# Main API router
api_router = APIRouter()

# Catalog
api_router.include_router(products_router)
api_router.include_router(releases_router)
api_router.include_router(features_router)
api_router.include_router(planning_history_router)

# Telemetry and notifications
api_router.include_router(usage_router)
api_router.include_router(notifications_router)

# Admin-only operations
api_router.include_router(admin_router)

__all__ = ["api_router"]
