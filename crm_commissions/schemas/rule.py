"""
Commission rule schemas.

``RuleDefinition`` is the in-memory form of a ``CommissionRule`` row and
the payload accepted when a rule is created or updated. Range checks are
not enforced here: ``validate_rule`` reports them as a list so a caller
sees every problem at once.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from crm_commissions.models.rule import (
    BonusType,
    CalculationBasis,
    CalculationMethod,
    DeductionType,
    GstTreatment,
    PaymentScheduleType,
)


class Tier(BaseModel):
    """Sales volume band [min_sales, max_sales) with its own rate."""

    name: str = ""
    min_sales: Decimal = Decimal("0")
    max_sales: Optional[Decimal] = Field(
        None,
        description="None means the band is open-ended",
    )
    rate: Decimal
    flat_amount: Decimal = Decimal("0")

    def contains(self, volume: Decimal) -> bool:
        if volume < self.min_sales:
            return False
        return self.max_sales is None or volume < self.max_sales


class BonusRule(BaseModel):
    """Performance bonus, evaluated when the sale date is in its window."""

    name: str = ""
    bonus_type: BonusType
    criteria_value: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    percentage: Decimal = Field(
        Decimal("0"),
        description="Percentage of the sale price added on top of amount",
    )
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    is_active: bool = True

    def in_window(self, on: date) -> bool:
        if self.valid_from is None or self.valid_until is None:
            return False
        return self.valid_from <= on < self.valid_until


class DeductionRule(BaseModel):
    """Fixed and/or percentage-of-gross deduction besides TDS and GST."""

    name: str = ""
    deduction_type: DeductionType = DeductionType.OTHER
    amount: Decimal = Decimal("0")
    percentage: Decimal = Decimal("0")
    is_active: bool = True


class TaxSettings(BaseModel):
    tds_rate: Decimal = Decimal("0")
    gst_rate: Decimal = Decimal("0")
    gst_treatment: Optional[GstTreatment] = Field(
        None,
        description="Required whenever gst_rate is non-zero",
    )


class PaymentTerms(BaseModel):
    schedule: PaymentScheduleType = PaymentScheduleType.MONTHLY
    payment_delay_days: int = Field(30, ge=0)
    hold_period_days: int = Field(0, ge=0)
    minimum_payout_amount: Decimal = Field(Decimal("0"), ge=0)


class ApprovalPolicy(BaseModel):
    requires_approval: bool = False
    required_approval_count: int = 1
    approvers: list[int] = Field(default_factory=list)


class ClawbackPolicy(BaseModel):
    eligible: bool = True
    clawback_period_days: int = Field(90, ge=0)


class UsageStats(BaseModel):
    total_partners_using: int = 0
    total_commission_paid: Decimal = Decimal("0")
    last_used_at: Optional[datetime] = None


class RuleDefinition(BaseModel):
    """Complete commission rule configuration."""

    id: Optional[int] = None
    organization_id: int
    project_id: Optional[int] = None
    name: str = ""
    description: Optional[str] = None

    calculation_method: Optional[CalculationMethod] = None
    calculation_basis: CalculationBasis = CalculationBasis.SALE_PRICE
    base_rate: Decimal = Decimal("0")
    tiers: list[Tier] = Field(default_factory=list)
    unit_type_rates: dict[str, Decimal] = Field(default_factory=dict)

    bonus_rules: list[BonusRule] = Field(default_factory=list)
    deduction_rules: list[DeductionRule] = Field(default_factory=list)
    tax_settings: TaxSettings = Field(default_factory=TaxSettings)
    payment_terms: PaymentTerms = Field(default_factory=PaymentTerms)
    approval_policy: ApprovalPolicy = Field(default_factory=ApprovalPolicy)
    clawback_policy: ClawbackPolicy = Field(default_factory=ClawbackPolicy)

    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    is_active: bool = True

    usage: UsageStats = Field(default_factory=UsageStats)
    created_by: Optional[int] = None

    def is_valid_on(self, on: date, require_active: bool = True) -> bool:
        """Active (unless not required) and the date falls in [valid_from, valid_until)."""
        if require_active and not self.is_active:
            return False
        if self.valid_from is None or self.valid_until is None:
            return False
        return self.valid_from <= on < self.valid_until


class RuleValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
