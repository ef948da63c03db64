"""
Commission operations.

Each public method is one atomic unit: load inside a unit of work,
apply a lifecycle transition, save, commit. Any error rolls the whole
operation back.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from crm_commissions.errors import RuleMismatch
from crm_commissions.models.commission import PaymentMethod
from crm_commissions.repositories.sales import sale_snapshot
from crm_commissions.repositories.unit_of_work import UnitOfWork
from crm_commissions.schemas.commission import CommissionAggregate
from crm_commissions.services import lifecycle
from crm_commissions.services.calculator import calculate_commission

logger = logging.getLogger(__name__)

Transition = Callable[[CommissionAggregate], CommissionAggregate]


class CommissionService:
    """Creates commission records and drives them through their lifecycle."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def create_commission(
        self,
        sale_id: int,
        partner_id: int,
        rule_id: int,
        actor_id: int,
    ) -> CommissionAggregate:
        """
        Calculate and store the commission for a (sale, partner) pair.

        Raises:
            NotFound: sale, partner or rule does not exist.
            DuplicateCommission: the pair already has a record.
            InvalidCalculation: the rule does not apply to the sale or
                yields a negative net.
        """
        async with self._uow_factory() as uow:
            sale_row = await uow.sales.get_sale(sale_id)
            partner = await uow.sales.get_partner(partner_id)
            rule = await uow.rules.get(rule_id)

            if rule.organization_id != sale_row.organization_id:
                raise RuleMismatch(
                    f"Rule {rule_id} belongs to another organization than sale {sale_id}"
                )
            if rule.project_id is not None and rule.project_id != sale_row.project_id:
                raise RuleMismatch(f"Rule {rule_id} does not apply to the project of sale {sale_id}")

            sale = sale_snapshot(sale_row)
            performance = await uow.sales.partner_performance(
                partner,
                as_of=datetime.now(timezone.utc).date(),
                exclude_sale_id=sale_id,
            )
            calculation = calculate_commission(sale, performance, rule)

            aggregate = lifecycle.build_aggregate(
                organization_id=sale_row.organization_id,
                project_id=sale_row.project_id,
                sale_id=sale_id,
                partner_id=partner_id,
                rule=rule,
                sale=sale,
                performance=performance,
                calculation=calculation,
                actor_id=actor_id,
            )

            first_for_partner = not await uow.commissions.partner_has_commission(rule_id, partner_id)
            saved = await uow.commissions.add(aggregate)
            await uow.rules.record_usage(
                rule_id,
                calculation.net_commission,
                new_partner=first_for_partner,
                at=datetime.now(timezone.utc),
            )
            await uow.commit()

        logger.info(
            f"Commission {saved.id} created for sale {sale_id}, partner {partner_id}: "
            f"{saved.net_commission} ({saved.status.value})"
        )
        return saved

    async def _transition(self, commission_id: int, transition: Transition) -> CommissionAggregate:
        async with self._uow_factory() as uow:
            current = await uow.commissions.get(commission_id, for_update=True)
            saved = await uow.commissions.save(transition(current))
            await uow.commit()
        return saved

    async def get_commission(self, commission_id: int) -> CommissionAggregate:
        async with self._uow_factory() as uow:
            return await uow.commissions.get(commission_id)

    async def approve_commission(
        self,
        commission_id: int,
        actor_id: int,
        notes: Optional[str] = None,
    ) -> CommissionAggregate:
        saved = await self._transition(
            commission_id,
            lambda c: lifecycle.approve(c, actor_id, notes),
        )
        logger.info(
            f"Commission {commission_id} approval by user {actor_id} recorded "
            f"({saved.approval_workflow.approval_count}/"
            f"{saved.approval_workflow.required_approval_count}), status {saved.status.value}"
        )
        return saved

    async def reject_commission(self, commission_id: int, actor_id: int, reason: str) -> CommissionAggregate:
        saved = await self._transition(
            commission_id,
            lambda c: lifecycle.reject(c, actor_id, reason),
        )
        logger.info(f"Commission {commission_id} rejected by user {actor_id}: {reason}")
        return saved

    async def record_payment(
        self,
        commission_id: int,
        amount: Optional[Decimal],
        method: PaymentMethod,
        reference: Optional[str],
        payment_date: date,
        actor_id: int,
    ) -> CommissionAggregate:
        """Record a payout. ``amount=None`` pays the full pending balance."""

        def pay(current: CommissionAggregate) -> CommissionAggregate:
            to_pay = current.payment_details.total_pending if amount is None else amount
            return lifecycle.record_payment(
                current, to_pay, method, reference, payment_date, actor_id
            )

        saved = await self._transition(commission_id, pay)
        logger.info(
            f"Payment of {saved.payment_details.last_payment_amount} recorded for commission "
            f"{commission_id}; pending {saved.payment_details.total_pending}"
        )
        return saved

    async def put_on_hold(
        self,
        commission_id: int,
        actor_id: int,
        reason: str,
        hold_days: int,
    ) -> CommissionAggregate:
        saved = await self._transition(
            commission_id,
            lambda c: lifecycle.put_on_hold(c, actor_id, reason, hold_days),
        )
        logger.info(
            f"Commission {commission_id} put on hold by user {actor_id} until "
            f"{saved.payment_schedule.hold_until}: {reason}"
        )
        return saved

    async def release_hold(
        self,
        commission_id: int,
        actor_id: int,
        reason: Optional[str] = None,
    ) -> CommissionAggregate:
        saved = await self._transition(
            commission_id,
            lambda c: lifecycle.release_hold(c, actor_id, reason),
        )
        logger.info(f"Hold on commission {commission_id} released by user {actor_id}")
        return saved

    async def clawback_commission(
        self,
        commission_id: int,
        reason: str,
        actor_id: int,
        amount: Optional[Decimal] = None,
    ) -> CommissionAggregate:
        saved = await self._transition(
            commission_id,
            lambda c: lifecycle.clawback(c, reason, actor_id, amount),
        )
        logger.info(
            f"Commission {commission_id} clawed back by user {actor_id}: "
            f"{saved.clawback_details.amount} ({reason})"
        )
        return saved

    async def list_overdue_commissions(
        self,
        organization_id: int,
        as_of: Optional[date] = None,
    ) -> list[CommissionAggregate]:
        as_of = as_of or datetime.now(timezone.utc).date()
        async with self._uow_factory() as uow:
            return await uow.commissions.list_overdue(organization_id, as_of)
