"""
Commission rule registry.

Validation runs when a rule is saved, never when a commission is created:
a rule that reaches the calculator has already passed ``validate_rule``.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from crm_commissions.errors import InvalidState, RuleValidationError
from crm_commissions.models.rule import CalculationMethod
from crm_commissions.repositories.unit_of_work import UnitOfWork
from crm_commissions.schemas.rule import RuleDefinition, RuleValidationResult

logger = logging.getLogger(__name__)

MAX_RATE = Decimal("100")
TDS_WARNING_RATE = Decimal("30")


def _check_rate(errors: list[str], label: str, rate: Decimal) -> None:
    if rate < 0 or rate > MAX_RATE:
        errors.append(f"{label}: rate must be between 0 and 100")


def _validate_tiers(rule: RuleDefinition, errors: list[str]) -> None:
    if not rule.tiers:
        errors.append("At least one commission tier is required for tiered calculation")
        return

    for index, tier in enumerate(rule.tiers, start=1):
        _check_rate(errors, f"Tier {index}", tier.rate)
        if tier.max_sales is not None and tier.min_sales >= tier.max_sales:
            errors.append(f"Tier {index}: maximum sales must be greater than minimum sales")

    # Bands must tile the volume axis without gaps or overlaps
    bands = sorted(rule.tiers, key=lambda t: t.min_sales)
    for current, following in zip(bands, bands[1:]):
        if current.max_sales is None:
            errors.append(
                f"Tier starting at {current.min_sales}: only the last tier may be open-ended"
            )
        elif current.max_sales > following.min_sales:
            errors.append(
                f"Tiers starting at {current.min_sales} and {following.min_sales} overlap"
            )
        elif current.max_sales < following.min_sales:
            errors.append(
                f"Gap between tiers: {current.max_sales} to {following.min_sales} is not covered"
            )


def validate_rule(rule: RuleDefinition) -> RuleValidationResult:
    """
    Check a rule configuration.

    Returns every error and warning found; ``is_valid`` is False if any
    error was found. An unusual TDS rate is a warning only.
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not rule.name or not rule.name.strip():
        errors.append("Rule name is required")

    if rule.calculation_method is None:
        errors.append("Calculation method is required")

    if rule.valid_from is None or rule.valid_until is None:
        errors.append("Validity period start and end dates are required")
    elif rule.valid_from >= rule.valid_until:
        errors.append("Start date must be before end date")

    if rule.calculation_method == CalculationMethod.FLAT:
        _check_rate(errors, "Base rate", rule.base_rate)
    elif rule.calculation_method == CalculationMethod.TIERED:
        _validate_tiers(rule, errors)
    elif rule.calculation_method == CalculationMethod.PER_UNIT_TYPE:
        if not rule.unit_type_rates:
            errors.append("At least one unit type rate is required for per-unit-type calculation")
        for unit_type, rate in rule.unit_type_rates.items():
            _check_rate(errors, f"Unit type {unit_type}", rate)

    for index, bonus in enumerate(rule.bonus_rules, start=1):
        if not bonus.name or not bonus.name.strip():
            errors.append(f"Performance bonus {index}: bonus name is required")
        if bonus.valid_from is None or bonus.valid_until is None:
            errors.append(f"Performance bonus {index}: valid from and until dates are required")
        elif bonus.valid_from >= bonus.valid_until:
            errors.append(
                f"Performance bonus {index}: valid from date must be before valid until date"
            )
        if bonus.amount < 0:
            errors.append(f"Performance bonus {index}: amount cannot be negative")
        _check_rate(errors, f"Performance bonus {index}", bonus.percentage)

    for index, deduction in enumerate(rule.deduction_rules, start=1):
        if not deduction.name or not deduction.name.strip():
            errors.append(f"Deduction {index}: deduction name is required")
        if deduction.amount < 0:
            errors.append(f"Deduction {index}: amount cannot be negative")
        _check_rate(errors, f"Deduction {index}", deduction.percentage)

    tax = rule.tax_settings
    _check_rate(errors, "TDS", tax.tds_rate)
    if TDS_WARNING_RATE < tax.tds_rate <= MAX_RATE:
        warnings.append("TDS rate seems unusually high")
    _check_rate(errors, "GST", tax.gst_rate)
    if tax.gst_rate > 0 and tax.gst_treatment is None:
        errors.append("GST treatment (withheld or added) is required when a GST rate is set")

    policy = rule.approval_policy
    if policy.requires_approval and policy.required_approval_count < 1:
        errors.append("Required approval count must be at least 1")
    if policy.approvers and policy.required_approval_count > len(policy.approvers):
        warnings.append("Required approval count exceeds the number of listed approvers")

    return RuleValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
    )


class RuleRegistry:
    """Stores, validates and serves commission rules."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]) -> None:
        self._uow_factory = uow_factory

    def validate(self, rule: RuleDefinition) -> RuleValidationResult:
        return validate_rule(rule)

    async def get_rule(self, rule_id: int) -> RuleDefinition:
        async with self._uow_factory() as uow:
            return await uow.rules.get(rule_id)

    async def create_rule(self, rule: RuleDefinition, actor_id: int) -> tuple[RuleDefinition, list[str]]:
        """Validate and store a new rule. Returns the saved rule and any warnings."""
        result = validate_rule(rule)
        if not result.is_valid:
            raise RuleValidationError(result.errors, result.warnings)
        for warning in result.warnings:
            logger.warning(f"Rule '{rule.name}': {warning}")

        async with self._uow_factory() as uow:
            saved = await uow.rules.add(rule.model_copy(update={"created_by": actor_id}))
            await uow.commit()

        logger.info(f"Commission rule {saved.id} created: {saved.name}")
        return saved, result.warnings

    async def update_rule(
        self,
        rule_id: int,
        rule: RuleDefinition,
    ) -> tuple[RuleDefinition, list[str]]:
        """Replace a rule's configuration. Rules already referenced by a commission are frozen."""
        result = validate_rule(rule)
        if not result.is_valid:
            raise RuleValidationError(result.errors, result.warnings)

        async with self._uow_factory() as uow:
            await uow.rules.get(rule_id)
            if await uow.commissions.count_for_rule(rule_id):
                raise InvalidState(f"Commission rule {rule_id} is in use and cannot be changed")
            saved = await uow.rules.replace(rule_id, rule)
            await uow.commit()

        logger.info(f"Commission rule {rule_id} updated")
        return saved, result.warnings

    async def deactivate_rule(
        self,
        rule_id: int,
        actor_id: int,
        reason: Optional[str] = None,
    ) -> RuleDefinition:
        """
        Stop offering a rule for new commissions.

        Allowed on rules in use: existing commissions keep the rule and
        are still recalculated under it.
        """
        async with self._uow_factory() as uow:
            saved = await uow.rules.deactivate(rule_id)
            await uow.commit()

        logger.info(
            f"Commission rule {rule_id} deactivated by user {actor_id}: "
            f"{reason or 'Commission rule deactivated'}"
        )
        return saved

    async def record_usage(self, rule_id: int, commission_amount: Decimal, new_partner: bool = True) -> None:
        """Bump usage counters for a rule outside any commission transaction."""
        async with self._uow_factory() as uow:
            await uow.rules.record_usage(
                rule_id,
                commission_amount,
                new_partner=new_partner,
                at=datetime.now(timezone.utc),
            )
            await uow.commit()
