"""
Recalculation of commissions when their inputs change.

A sale edit re-runs the calculator with the new sale fields, the record's
own rule and freshly fetched partner performance. Changes at or below the
configured threshold are ignored so rounding residue never reaches the
adjustment log.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError

from crm_commissions.config import settings
from crm_commissions.errors import InvalidInput, InvalidState
from crm_commissions.models.commission import TERMINAL_STATUSES
from crm_commissions.repositories.unit_of_work import UnitOfWork
from crm_commissions.schemas.commission import (
    RecalculationResult,
    SaleChangeAdjustment,
    SaleSnapshot,
)
from crm_commissions.schemas.rule import RuleDefinition
from crm_commissions.services import lifecycle
from crm_commissions.services.calculator import calculate_commission

logger = logging.getLogger(__name__)

RECALCULABLE_FIELDS = frozenset({"sale_price", "base_price", "unit_type"})

SALE_MODIFICATION_REASON = "sale modification"
PERFORMANCE_REFRESH_REASON = "performance refresh"


def check_sale_changes(changes: Mapping[str, Any]) -> None:
    if not changes:
        raise InvalidInput("No sale changes supplied")
    unknown = set(changes) - RECALCULABLE_FIELDS
    if unknown:
        raise InvalidInput(
            f"Unsupported sale fields for recalculation: {', '.join(sorted(unknown))}"
        )


def apply_sale_changes(snapshot: SaleSnapshot, changes: Mapping[str, Any]) -> SaleSnapshot:
    """Overlay changed sale fields on a snapshot, validating the result."""
    check_sale_changes(changes)
    try:
        return SaleSnapshot.model_validate({**snapshot.model_dump(), **changes})
    except ValidationError as e:
        raise InvalidInput(f"Invalid sale changes: {e.errors()[0]['msg']}") from e


class RecalculationEngine:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        threshold: Optional[Decimal] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.threshold = settings.recalculation_threshold if threshold is None else threshold

    async def recalculate_for_sale_change(
        self,
        sale_id: int,
        changes: Mapping[str, Any],
        actor_id: int,
    ) -> list[SaleChangeAdjustment]:
        """
        Re-derive every commission on a sale after the sale was edited.

        All records on the sale are adjusted in one transaction. Records
        in a terminal status are left alone. Returns only the records
        that were actually adjusted.
        """
        check_sale_changes(changes)

        adjusted: list[SaleChangeAdjustment] = []
        rules: dict[int, RuleDefinition] = {}
        as_of = datetime.now(timezone.utc).date()

        async with self._uow_factory() as uow:
            await uow.sales.get_sale(sale_id)
            commissions = await uow.commissions.list_for_sale(sale_id, for_update=True)

            for commission in commissions:
                if commission.status in TERMINAL_STATUSES:
                    logger.info(
                        f"Skipping recalculation of commission {commission.id}: "
                        f"status {commission.status.value}"
                    )
                    continue

                if commission.rule_id not in rules:
                    rules[commission.rule_id] = await uow.rules.get(commission.rule_id)
                rule = rules[commission.rule_id]

                sale = apply_sale_changes(commission.sale_snapshot, changes)
                partner = await uow.sales.get_partner(commission.partner_id)
                performance = await uow.sales.partner_performance(
                    partner, as_of=as_of, exclude_sale_id=sale_id
                )
                calculation = calculate_commission(sale, performance, rule, require_active=False)

                old_amount = commission.net_commission
                new_amount = calculation.net_commission
                delta = new_amount - old_amount
                if abs(delta) <= self.threshold:
                    continue

                updated = lifecycle.adjust_amount(
                    commission,
                    calculation,
                    SALE_MODIFICATION_REASON,
                    actor_id,
                    rule=rule,
                    sale=sale,
                    performance=performance,
                )
                await uow.commissions.save(updated)
                adjusted.append(
                    SaleChangeAdjustment(
                        commission_id=commission.id,
                        partner_id=commission.partner_id,
                        old_amount=old_amount,
                        new_amount=new_amount,
                        delta=delta,
                    )
                )

            await uow.commit()

        logger.info(
            f"Sale {sale_id} change recalculated: {len(adjusted)} of "
            f"{len(commissions)} commission(s) adjusted"
        )
        return adjusted

    async def recalculate_single(self, commission_id: int, actor_id: int) -> RecalculationResult:
        """
        Refresh one commission against current partner performance.

        The computed amount and delta are returned even when the change is
        within the threshold and nothing is written.
        """
        async with self._uow_factory() as uow:
            commission = await uow.commissions.get(commission_id, for_update=True)
            if commission.status in TERMINAL_STATUSES:
                raise InvalidState(
                    f"Cannot recalculate commission {commission_id} in status "
                    f"'{commission.status.value}'"
                )

            rule = await uow.rules.get(commission.rule_id)
            partner = await uow.sales.get_partner(commission.partner_id)
            performance = await uow.sales.partner_performance(
                partner,
                as_of=datetime.now(timezone.utc).date(),
                exclude_sale_id=commission.sale_id,
            )
            calculation = calculate_commission(
                commission.sale_snapshot, performance, rule, require_active=False
            )

            old_amount = commission.net_commission
            new_amount = calculation.net_commission
            delta = new_amount - old_amount
            recalculated = abs(delta) > self.threshold

            if recalculated:
                updated = lifecycle.adjust_amount(
                    commission,
                    calculation,
                    PERFORMANCE_REFRESH_REASON,
                    actor_id,
                    rule=rule,
                    performance=performance,
                )
                await uow.commissions.save(updated)
                await uow.commit()
                logger.info(
                    f"Commission {commission_id} recalculated: {old_amount} -> {new_amount}"
                )

        return RecalculationResult(
            commission_id=commission_id,
            old_amount=old_amount,
            new_amount=new_amount,
            delta=delta,
            recalculated=recalculated,
        )
