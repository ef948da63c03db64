"""
FastAPI dependencies wiring services to the database.

Tests override ``get_session_factory`` to point every service at their
own engine.
"""

from functools import partial
from typing import Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from crm_commissions.db import AsyncSessionLocal
from crm_commissions.repositories import UnitOfWork
from crm_commissions.services import (
    BulkProcessor,
    CommissionService,
    RecalculationEngine,
    RuleRegistry,
)


def get_session_factory() -> async_sessionmaker:
    return AsyncSessionLocal


def get_uow_factory(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> Callable[[], UnitOfWork]:
    return partial(UnitOfWork, session_factory)


def get_commission_service(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
) -> CommissionService:
    return CommissionService(uow_factory)


def get_recalculation_engine(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
) -> RecalculationEngine:
    return RecalculationEngine(uow_factory)


def get_bulk_processor(
    service: CommissionService = Depends(get_commission_service),
) -> BulkProcessor:
    return BulkProcessor(service)


def get_rule_registry(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
) -> RuleRegistry:
    return RuleRegistry(uow_factory)
