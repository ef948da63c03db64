"""
Transactional boundary for engine operations.

Usage:
    async with UnitOfWork() as uow:
        commission = await uow.commissions.get(commission_id, for_update=True)
        ...
        await uow.commit()

Leaving the block without ``commit()`` rolls the transaction back.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from crm_commissions.db import AsyncSessionLocal
from crm_commissions.errors import ConcurrentModification
from crm_commissions.repositories.commissions import CommissionRepository
from crm_commissions.repositories.rules import RuleRepository
from crm_commissions.repositories.sales import SalesRepository

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One session, one transaction, and the repositories bound to it."""

    session: AsyncSession
    commissions: CommissionRepository
    rules: RuleRepository
    sales: SalesRepository

    def __init__(self, session_factory: Optional[async_sessionmaker] = None) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._committed = False

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        self.commissions = CommissionRepository(self.session)
        self.rules = RuleRepository(self.session)
        self.sales = SalesRepository(self.session)
        self._committed = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._committed:
                await self.session.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except StaleDataError as e:
            await self.session.rollback()
            logger.warning(f"Concurrent modification detected on commit: {e}")
            raise ConcurrentModification("Record was modified by another transaction") from e
        self._committed = True
