"""
Service health endpoints.
"""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_commissions.db import get_db, ping

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

SERVICE_NAME = "crm-commissions"


@router.get("")
async def health_check():
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """
    Ready once the commission database answers.

    Returns 503 with the driver error while it does not.
    """
    try:
        await ping(db)
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "database": f"error: {e}"},
        )

    return {"status": "ready", "database": "connected"}


@router.get("/live")
async def liveness_check():
    """Process liveness; never touches the database."""
    return {"status": "alive"}
