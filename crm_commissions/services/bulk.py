"""
Bulk approval and payment.

Every item runs in its own unit of work. A failing item is reported in
``failed`` and never stops the rest of the batch; there is no
transaction spanning the batch.
"""

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel, Field

from crm_commissions.config import settings
from crm_commissions.errors import CommissionError, InvalidInput
from crm_commissions.models.commission import PaymentMethod
from crm_commissions.schemas.commission import (
    BulkItemFailure,
    BulkItemSuccess,
    BulkResult,
    CommissionAggregate,
)
from crm_commissions.services.commission_service import CommissionService

logger = logging.getLogger(__name__)


class BulkPaymentData(BaseModel):
    """Payment fields shared by every item of a bulk payment."""

    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference: Optional[str] = None
    payment_date: date
    amounts: dict[int, Decimal] = Field(
        default_factory=dict,
        description="Per-commission amounts; missing ids are paid in full",
    )


ItemOperation = Callable[[int], Awaitable[tuple[CommissionAggregate, Decimal]]]


class BulkProcessor:
    def __init__(
        self,
        service: CommissionService,
        max_items: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> None:
        self.service = service
        self.max_items = max_items or settings.bulk_max_items
        self.concurrency = concurrency or settings.bulk_concurrency

    async def _run(self, action: str, commission_ids: Sequence[int], operation: ItemOperation) -> BulkResult:
        if len(commission_ids) > self.max_items:
            raise InvalidInput(
                f"At most {self.max_items} commissions can be processed in one request"
            )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def process(commission_id: int):
            async with semaphore:
                try:
                    commission, amount = await operation(commission_id)
                except CommissionError as e:
                    logger.warning(f"Bulk {action}: commission {commission_id} failed: {e.code}: {e.message}")
                    return BulkItemFailure(commission_id=commission_id, error=e.code, message=e.message)
                except Exception as e:
                    logger.exception(f"Bulk {action}: unexpected error on commission {commission_id}")
                    return BulkItemFailure(
                        commission_id=commission_id,
                        error="InternalError",
                        message=str(e),
                    )
                return BulkItemSuccess(
                    commission_id=commission_id,
                    partner_id=commission.partner_id,
                    amount=amount,
                    status=commission.status,
                )

        outcomes = await asyncio.gather(*(process(cid) for cid in commission_ids))

        result = BulkResult()
        for outcome in outcomes:
            if isinstance(outcome, BulkItemSuccess):
                result.successful.append(outcome)
                result.total_amount += outcome.amount
            else:
                result.failed.append(outcome)

        logger.info(
            f"Bulk {action}: {len(result.successful)} succeeded, {len(result.failed)} failed, "
            f"total {result.total_amount}"
        )
        return result

    async def bulk_approve(
        self,
        commission_ids: Sequence[int],
        actor_id: int,
        notes: Optional[str] = None,
    ) -> BulkResult:
        """Approve each commission; the total is the sum of their net amounts."""

        async def approve(commission_id: int):
            commission = await self.service.approve_commission(commission_id, actor_id, notes)
            return commission, commission.net_commission

        return await self._run("approve", commission_ids, approve)

    async def bulk_record_payments(
        self,
        commission_ids: Sequence[int],
        payment: BulkPaymentData,
        actor_id: int,
    ) -> BulkResult:
        """Pay each commission; the total is the sum actually paid."""

        async def pay(commission_id: int):
            commission = await self.service.record_payment(
                commission_id,
                payment.amounts.get(commission_id),
                payment.method,
                payment.reference,
                payment.payment_date,
                actor_id,
            )
            return commission, commission.payment_details.last_payment_amount

        return await self._run("payment", commission_ids, pay)
