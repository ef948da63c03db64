"""
CRM Commissions - commission calculation and lifecycle engine

Main FastAPI application with:
- Commission creation, approval, payment and clawback
- Recalculation on sale changes
- Bulk approval and payment
- Commission rule management
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from crm_commissions.api import api_router, commission_error_handler
from crm_commissions.config import settings
from crm_commissions.db import engine, get_db_context, ping
from crm_commissions.errors import CommissionError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
    - Verifies the database is reachable

    Shutdown:
    - Closes pooled database connections
    """
    logger.info("Starting CRM Commissions...")

    async with get_db_context() as db:
        await ping(db)

    logger.info("CRM Commissions started successfully!")

    yield

    # Shutdown
    logger.info("Shutting down CRM Commissions...")
    await engine.dispose()


# Create FastAPI application
app = FastAPI(
    title="CRM Commissions",
    description="Commission calculation and lifecycle engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

app.add_exception_handler(CommissionError, commission_error_handler)

# Include routers
app.include_router(api_router)  # /api/* endpoints


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crm_commissions.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
    )
