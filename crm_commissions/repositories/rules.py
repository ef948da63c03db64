"""
Commission rule persistence.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_commissions.errors import NotFound
from crm_commissions.models import CommissionRule
from crm_commissions.schemas.rule import RuleDefinition, UsageStats

_JSON_FIELDS = (
    "tiers",
    "unit_type_rates",
    "bonus_rules",
    "deduction_rules",
    "tax_settings",
    "payment_terms",
    "approval_policy",
    "clawback_policy",
)


def to_definition(row: CommissionRule) -> RuleDefinition:
    return RuleDefinition.model_validate({
        "id": row.id,
        "organization_id": row.organization_id,
        "project_id": row.project_id,
        "name": row.name,
        "description": row.description,
        "calculation_method": row.calculation_method,
        "calculation_basis": row.calculation_basis,
        "base_rate": row.base_rate,
        "valid_from": row.valid_from,
        "valid_until": row.valid_until,
        "is_active": row.is_active,
        "created_by": row.created_by,
        "usage": UsageStats(
            total_partners_using=row.total_partners_using,
            total_commission_paid=row.total_commission_paid,
            last_used_at=row.last_used_at,
        ),
        **{field: getattr(row, field) for field in _JSON_FIELDS},
    })


def _apply(row: CommissionRule, rule: RuleDefinition) -> None:
    dumped = rule.model_dump(mode="json")
    for field in _JSON_FIELDS:
        setattr(row, field, dumped[field])
    row.organization_id = rule.organization_id
    row.project_id = rule.project_id
    row.name = rule.name
    row.description = rule.description
    row.calculation_method = rule.calculation_method
    row.calculation_basis = rule.calculation_basis
    row.base_rate = rule.base_rate
    row.valid_from = rule.valid_from
    row.valid_until = rule.valid_until
    row.is_active = rule.is_active


class RuleRepository:
    """Reads and writes commission rules inside one session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get_row(self, rule_id: int) -> CommissionRule:
        row = await self.session.get(CommissionRule, rule_id)
        if row is None:
            raise NotFound("Commission rule", rule_id)
        return row

    async def get(self, rule_id: int) -> RuleDefinition:
        return to_definition(await self._get_row(rule_id))

    async def add(self, rule: RuleDefinition) -> RuleDefinition:
        row = CommissionRule(created_by=rule.created_by)
        _apply(row, rule)
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return to_definition(row)

    async def replace(self, rule_id: int, rule: RuleDefinition) -> RuleDefinition:
        """Overwrite configuration; usage statistics and creator are kept."""
        row = await self._get_row(rule_id)
        _apply(row, rule)
        await self.session.flush()
        await self.session.refresh(row)
        return to_definition(row)

    async def deactivate(self, rule_id: int) -> RuleDefinition:
        """Retire a rule; configuration and usage statistics are kept."""
        row = await self._get_row(rule_id)
        row.is_active = False
        await self.session.flush()
        await self.session.refresh(row)
        return to_definition(row)

    async def record_usage(
        self,
        rule_id: int,
        commission_amount: Decimal,
        new_partner: bool,
        at: datetime,
    ) -> None:
        """
        Increment usage counters in one UPDATE.

        ``last_used_at`` only moves forward, so a late writer with an older
        timestamp cannot roll it back.
        """
        result = await self.session.execute(
            update(CommissionRule)
            .where(CommissionRule.id == rule_id)
            .values(
                total_partners_using=CommissionRule.total_partners_using + (1 if new_partner else 0),
                total_commission_paid=CommissionRule.total_commission_paid + commission_amount,
                last_used_at=case(
                    (CommissionRule.last_used_at.is_(None), at),
                    (CommissionRule.last_used_at < at, at),
                    else_=CommissionRule.last_used_at,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("Commission rule", rule_id)

