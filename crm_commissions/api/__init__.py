"""API router aggregation."""

from fastapi import APIRouter

from crm_commissions.api.commissions import router as commissions_router
from crm_commissions.api.errors import commission_error_handler
from crm_commissions.api.health import router as health_router
from crm_commissions.api.rules import router as rules_router

# Main API router (for /api/* endpoints)
api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(commissions_router)
api_router.include_router(rules_router)

__all__ = ["api_router", "commission_error_handler"]
