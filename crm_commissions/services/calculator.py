"""
Commission calculator.

Pure functions over (sale snapshot, partner performance, rule). Each
calculation method is one variant class producing the gross breakdown
lines; bonuses, deductions and rounding are shared.

Rates are percentages (2 means 2%). Breakdown lines keep full precision;
only the totals and the net are rounded, and the net is rounded from the
unrounded sum.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from crm_commissions.errors import InvalidCalculation, RuleMismatch
from crm_commissions.models.rule import (
    BonusType,
    CalculationBasis,
    CalculationMethod,
    DeductionType,
    GstTreatment,
)
from crm_commissions.schemas.commission import (
    BonusLine,
    BreakdownLine,
    CalculationBreakdown,
    DeductionLine,
    PartnerPerformance,
    SaleSnapshot,
)
from crm_commissions.schemas.rule import BonusRule, RuleDefinition
from crm_commissions.utils.money import ZERO, percent_of, round_money


def calculation_base(sale: SaleSnapshot, basis: CalculationBasis) -> Decimal:
    if basis == CalculationBasis.BASE_PRICE:
        return sale.base_price
    return sale.sale_price


# ── Method variants ────────────────────────────────────────


class CalculationVariant:
    """Gross commission for one calculation method."""

    method: CalculationMethod

    def gross_lines(
        self,
        rule: RuleDefinition,
        sale: SaleSnapshot,
        performance: PartnerPerformance,
    ) -> list[BreakdownLine]:
        raise NotImplementedError


class FlatRateVariant(CalculationVariant):
    method = CalculationMethod.FLAT

    def gross_lines(self, rule, sale, performance):
        base = calculation_base(sale, rule.calculation_basis)
        return [
            BreakdownLine(
                label="Base commission",
                base_amount=base,
                rate=rule.base_rate,
                amount=percent_of(base, rule.base_rate),
            )
        ]


class TieredVolumeVariant(CalculationVariant):
    """
    Tier chosen by partner volume including the current sale; the tier
    rate applies to the current sale only.
    """

    method = CalculationMethod.TIERED

    def gross_lines(self, rule, sale, performance):
        volume = performance.total_sales_volume + sale.sale_price
        tier = next(
            (t for t in sorted(rule.tiers, key=lambda t: t.min_sales) if t.contains(volume)),
            None,
        )
        if tier is None:
            raise RuleMismatch(
                f"No commission tier of rule '{rule.name}' covers sales volume {volume}"
            )

        base = calculation_base(sale, rule.calculation_basis)
        return [
            BreakdownLine(
                label=f"Tier {tier.name}" if tier.name else "Tier commission",
                base_amount=base,
                rate=tier.rate,
                flat_amount=tier.flat_amount,
                amount=percent_of(base, tier.rate) + tier.flat_amount,
                tier=tier.name or None,
                partner_volume=volume,
            )
        ]


class PerUnitTypeVariant(CalculationVariant):
    method = CalculationMethod.PER_UNIT_TYPE

    def gross_lines(self, rule, sale, performance):
        rate = rule.unit_type_rates.get(sale.unit_type)
        if rate is None:
            raise RuleMismatch(
                f"Rule '{rule.name}' has no commission rate for unit type '{sale.unit_type}'"
            )

        base = calculation_base(sale, rule.calculation_basis)
        return [
            BreakdownLine(
                label=f"{sale.unit_type} commission",
                base_amount=base,
                rate=rate,
                amount=percent_of(base, rate),
            )
        ]


VARIANTS: dict[CalculationMethod, CalculationVariant] = {
    variant.method: variant
    for variant in (FlatRateVariant(), TieredVolumeVariant(), PerUnitTypeVariant())
}


# ── Bonuses and deductions ─────────────────────────────────


def _bonus_actual_value(
    bonus: BonusRule,
    sale: SaleSnapshot,
    performance: PartnerPerformance,
) -> Decimal:
    if bonus.bonus_type == BonusType.SALES_TARGET:
        return performance.total_sales_volume + sale.sale_price
    if bonus.bonus_type == BonusType.UNIT_COUNT:
        return Decimal(performance.total_units_sold + 1)
    if bonus.bonus_type == BonusType.CUSTOMER_RATING:
        return performance.average_rating
    # time_based: days from the start of the bonus window to the sale
    return Decimal((sale.sale_date - bonus.valid_from).days)


def _bonus_qualifies(bonus: BonusRule, actual: Decimal) -> bool:
    if bonus.bonus_type == BonusType.TIME_BASED:
        return actual <= bonus.criteria_value
    return actual >= bonus.criteria_value


def evaluate_bonuses(
    rule: RuleDefinition,
    sale: SaleSnapshot,
    performance: PartnerPerformance,
) -> list[BonusLine]:
    """One line per active bonus whose window contains the sale date."""
    lines = []
    for bonus in rule.bonus_rules:
        if not bonus.is_active or not bonus.in_window(sale.sale_date):
            continue

        actual = _bonus_actual_value(bonus, sale, performance)
        qualified = _bonus_qualifies(bonus, actual)
        amount = (bonus.amount + percent_of(sale.sale_price, bonus.percentage)) if qualified else ZERO
        lines.append(
            BonusLine(
                name=bonus.name,
                bonus_type=bonus.bonus_type,
                criteria_value=bonus.criteria_value,
                actual_value=actual,
                qualified=qualified,
                amount=amount,
            )
        )
    return lines


def evaluate_deductions(rule: RuleDefinition, gross: Decimal) -> list[DeductionLine]:
    """TDS, withheld GST and configured deductions, all against gross."""
    tax = rule.tax_settings
    lines = []

    if tax.tds_rate > 0:
        lines.append(
            DeductionLine(
                name="TDS",
                deduction_type=DeductionType.TDS,
                rate=tax.tds_rate,
                amount=percent_of(gross, tax.tds_rate),
            )
        )

    if tax.gst_rate > 0 and tax.gst_treatment == GstTreatment.WITHHELD:
        lines.append(
            DeductionLine(
                name="GST",
                deduction_type=DeductionType.GST,
                rate=tax.gst_rate,
                amount=percent_of(gross, tax.gst_rate),
            )
        )

    for deduction in rule.deduction_rules:
        if not deduction.is_active:
            continue
        lines.append(
            DeductionLine(
                name=deduction.name,
                deduction_type=deduction.deduction_type,
                rate=deduction.percentage,
                amount=deduction.amount + percent_of(gross, deduction.percentage),
            )
        )

    return lines


# ── Entry point ────────────────────────────────────────────


def calculate_commission(
    sale: SaleSnapshot,
    performance: PartnerPerformance,
    rule: RuleDefinition,
    calculated_at: Optional[datetime] = None,
    require_active: bool = True,
) -> CalculationBreakdown:
    """
    Apply a rule to a sale.

    Recalculating an existing record passes ``require_active=False``: a
    deactivated rule still governs the commissions created under it.

    Raises:
        RuleMismatch: rule inactive or outside its window on the sale date,
            no tier covers the volume, or no rate for the unit type.
        InvalidCalculation: the rule yields a negative net commission.
    """
    if not rule.is_valid_on(sale.sale_date, require_active=require_active):
        raise RuleMismatch(
            f"Rule '{rule.name}' is not active on sale date {sale.sale_date.isoformat()}"
        )

    variant = VARIANTS.get(rule.calculation_method)
    if variant is None:
        raise InvalidCalculation(f"Unsupported calculation method: {rule.calculation_method}")

    lines = variant.gross_lines(rule, sale, performance)
    gross = sum((line.amount for line in lines), ZERO)

    bonuses = evaluate_bonuses(rule, sale, performance)
    bonus_total = sum((line.amount for line in bonuses), ZERO)

    deductions = evaluate_deductions(rule, gross)
    deduction_total = sum((line.amount for line in deductions), ZERO)

    net = gross + bonus_total - deduction_total
    if net < 0:
        raise InvalidCalculation(
            f"Rule '{rule.name}' produces a negative net commission ({round_money(net)})"
        )

    tax = rule.tax_settings
    return CalculationBreakdown(
        method=rule.calculation_method,
        basis=rule.calculation_basis,
        breakdown=lines,
        gross_commission=round_money(gross),
        bonuses=bonuses,
        total_bonuses=round_money(bonus_total),
        deductions=deductions,
        total_deductions=round_money(deduction_total),
        net_commission=round_money(net),
        tds_amount=round_money(percent_of(gross, tax.tds_rate)),
        gst_amount=round_money(percent_of(gross, tax.gst_rate)),
        calculated_at=calculated_at or datetime.now(timezone.utc),
    )
