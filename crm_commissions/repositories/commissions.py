"""
Commission record persistence.

Maps ``CommissionAggregate`` to ``PartnerCommission`` rows. Rows loaded
with ``get(..., for_update=True)`` stay in the session so that ``save``
updates them under the optimistic version check.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from crm_commissions.errors import ConcurrentModification, DuplicateCommission, NotFound
from crm_commissions.models import (
    PAYABLE_STATUSES,
    PartnerCommission,
)
from crm_commissions.schemas.commission import CommissionAggregate

logger = logging.getLogger(__name__)

UNIQUE_CONSTRAINT = "uq_commission_sale_partner"

_JSON_FIELDS = (
    "sale_snapshot",
    "performance_snapshot",
    "calculation",
    "payment_schedule",
    "payment_details",
    "tax_details",
    "approval_workflow",
    "clawback_details",
)


def _is_duplicate_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    if UNIQUE_CONSTRAINT in message:
        return True
    # SQLite reports the columns, not the constraint name
    return "unique" in message and "partner_commissions.sale_id" in message


def to_aggregate(row: PartnerCommission) -> CommissionAggregate:
    data = {field: getattr(row, field) for field in _JSON_FIELDS}
    return CommissionAggregate.model_validate({
        "id": row.id,
        "organization_id": row.organization_id,
        "project_id": row.project_id,
        "sale_id": row.sale_id,
        "partner_id": row.partner_id,
        "rule_id": row.rule_id,
        "status": row.status,
        "adjustments": row.adjustments or [],
        "created_by": row.created_by,
        "last_modified_by": row.last_modified_by,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "version": row.version,
        **data,
    })


def _apply(row: PartnerCommission, aggregate: CommissionAggregate) -> None:
    """Copy mutable aggregate state onto the row."""
    dumped = aggregate.model_dump(mode="json")
    for field in _JSON_FIELDS:
        setattr(row, field, dumped[field])
    row.adjustments = dumped["adjustments"]
    row.status = aggregate.status
    row.net_commission = aggregate.calculation.net_commission
    row.total_paid = aggregate.payment_details.total_paid
    row.total_pending = aggregate.payment_details.total_pending
    row.last_modified_by = aggregate.last_modified_by


class CommissionRepository:
    """Reads and writes commission records inside one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get_row(self, commission_id: int, for_update: bool = False) -> PartnerCommission:
        query = select(PartnerCommission).where(PartnerCommission.id == commission_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound("Commission", commission_id)
        return row

    async def get(self, commission_id: int, for_update: bool = False) -> CommissionAggregate:
        return to_aggregate(await self._get_row(commission_id, for_update=for_update))

    async def exists_for(self, sale_id: int, partner_id: int) -> bool:
        count = await self.session.scalar(
            select(func.count())
            .select_from(PartnerCommission)
            .where(
                PartnerCommission.sale_id == sale_id,
                PartnerCommission.partner_id == partner_id,
            )
        )
        return bool(count)

    async def add(self, aggregate: CommissionAggregate) -> CommissionAggregate:
        """
        Insert a new record.

        The existence check gives a clean error in the common case; the
        unique constraint decides concurrent inserts.
        """
        if await self.exists_for(aggregate.sale_id, aggregate.partner_id):
            raise DuplicateCommission(aggregate.sale_id, aggregate.partner_id)

        row = PartnerCommission(
            organization_id=aggregate.organization_id,
            project_id=aggregate.project_id,
            sale_id=aggregate.sale_id,
            partner_id=aggregate.partner_id,
            rule_id=aggregate.rule_id,
            created_by=aggregate.created_by,
        )
        _apply(row, aggregate)
        self.session.add(row)

        try:
            await self.session.flush()
        except IntegrityError as e:
            if _is_duplicate_violation(e):
                raise DuplicateCommission(aggregate.sale_id, aggregate.partner_id) from e
            raise

        await self.session.refresh(row)
        return to_aggregate(row)

    async def save(self, aggregate: CommissionAggregate) -> CommissionAggregate:
        """Write back an aggregate loaded in this session."""
        row = await self._get_row(aggregate.id)
        if aggregate.version is not None and row.version != aggregate.version:
            raise ConcurrentModification(
                f"Commission {aggregate.id} was modified by another transaction"
            )

        _apply(row, aggregate)
        try:
            await self.session.flush()
        except StaleDataError as e:
            logger.warning(f"Version conflict saving commission {aggregate.id}")
            raise ConcurrentModification(
                f"Commission {aggregate.id} was modified by another transaction"
            ) from e

        await self.session.refresh(row)
        return to_aggregate(row)

    async def list_for_sale(self, sale_id: int, for_update: bool = False) -> list[CommissionAggregate]:
        query = (
            select(PartnerCommission)
            .where(PartnerCommission.sale_id == sale_id)
            .order_by(PartnerCommission.id)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return [to_aggregate(row) for row in result.scalars().all()]

    async def count_for_rule(self, rule_id: int) -> int:
        count = await self.session.scalar(
            select(func.count())
            .select_from(PartnerCommission)
            .where(PartnerCommission.rule_id == rule_id)
        )
        return count or 0

    async def partner_has_commission(self, rule_id: int, partner_id: int) -> bool:
        count = await self.session.scalar(
            select(func.count())
            .select_from(PartnerCommission)
            .where(
                PartnerCommission.rule_id == rule_id,
                PartnerCommission.partner_id == partner_id,
            )
        )
        return bool(count)

    async def list_overdue(
        self,
        organization_id: int,
        as_of: date,
        limit: Optional[int] = None,
    ) -> list[CommissionAggregate]:
        """
        Payable records with an unpaid installment due before ``as_of``.

        Installments live in JSON, so the due-date filter runs in Python
        over the payable records with something still pending.
        """
        query = (
            select(PartnerCommission)
            .where(
                PartnerCommission.organization_id == organization_id,
                PartnerCommission.status.in_(PAYABLE_STATUSES),
                PartnerCommission.total_pending > Decimal("0"),
            )
            .order_by(PartnerCommission.id)
        )
        result = await self.session.execute(query)

        overdue = []
        for row in result.scalars().all():
            aggregate = to_aggregate(row)
            if any(
                inst.outstanding > 0 and inst.due_date < as_of
                for inst in aggregate.payment_schedule.installments
            ):
                overdue.append(aggregate)
                if limit is not None and len(overdue) >= limit:
                    break
        return overdue
