"""
Commission aggregate and its parts.

``CommissionAggregate`` is the unit the lifecycle functions transform.
It is persisted by the commission repository; nothing in here touches
the database.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from crm_commissions.models.commission import (
    AdjustmentType,
    ApprovalStatus,
    CommissionStatus,
    InstallmentStatus,
    PaymentMethod,
)
from crm_commissions.models.rule import (
    BonusType,
    CalculationBasis,
    CalculationMethod,
    DeductionType,
    GstTreatment,
    PaymentScheduleType,
)


# ── Calculation inputs ─────────────────────────────────────


class SaleSnapshot(BaseModel):
    """Sale fields captured when the commission is (re)calculated."""

    sale_price: Decimal = Field(..., ge=0)
    base_price: Decimal = Field(..., ge=0)
    unit_type: str
    sale_date: date


class PartnerPerformance(BaseModel):
    """
    Partner history at calculation time.

    ``total_sales_volume`` and ``total_units_sold`` exclude the sale being
    commissioned.
    """

    total_sales_volume: Decimal = Decimal("0")
    total_units_sold: int = 0
    average_rating: Decimal = Decimal("0")
    months_with_company: int = 0
    last_sale_date: Optional[date] = None


# ── Calculation output ─────────────────────────────────────


class BreakdownLine(BaseModel):
    """One gross-commission line, kept at full precision for audit."""

    label: str
    base_amount: Decimal
    rate: Decimal
    flat_amount: Decimal = Decimal("0")
    amount: Decimal
    tier: Optional[str] = None
    partner_volume: Optional[Decimal] = None


class BonusLine(BaseModel):
    name: str
    bonus_type: BonusType
    criteria_value: Decimal
    actual_value: Decimal
    qualified: bool
    amount: Decimal


class DeductionLine(BaseModel):
    name: str
    deduction_type: DeductionType
    rate: Decimal = Decimal("0")
    amount: Decimal


class CalculationBreakdown(BaseModel):
    """
    Result of applying a rule to a sale.

    gross/total/net figures are rounded; ``net_commission`` is rounded from
    the unrounded sum, so ``gross + bonuses - deductions`` matches it to
    within one minor unit.
    """

    method: CalculationMethod
    basis: CalculationBasis
    breakdown: list[BreakdownLine] = Field(default_factory=list)
    gross_commission: Decimal
    bonuses: list[BonusLine] = Field(default_factory=list)
    total_bonuses: Decimal = Decimal("0")
    deductions: list[DeductionLine] = Field(default_factory=list)
    total_deductions: Decimal = Decimal("0")
    net_commission: Decimal
    tds_amount: Decimal = Decimal("0")
    gst_amount: Decimal = Decimal("0")
    calculated_at: datetime


# ── Payout state ───────────────────────────────────────────


class Installment(BaseModel):
    number: int
    amount: Decimal
    due_date: date
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_amount: Decimal = Decimal("0")
    paid_date: Optional[date] = None
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None

    @property
    def outstanding(self) -> Decimal:
        return self.amount - self.paid_amount


class PaymentSchedule(BaseModel):
    schedule_type: PaymentScheduleType
    scheduled_date: date
    hold_period_days: int = 0
    hold_until: Optional[date] = None
    installments: list[Installment] = Field(default_factory=list)

    @property
    def total_installments(self) -> int:
        return len(self.installments)


class PaymentDetails(BaseModel):
    total_paid: Decimal = Decimal("0")
    total_pending: Decimal = Decimal("0")
    last_payment_date: Optional[date] = None
    last_payment_amount: Optional[Decimal] = None
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None


class TaxDetails(BaseModel):
    tds_deducted: Decimal = Decimal("0")
    tds_rate: Decimal = Decimal("0")
    gst_amount: Decimal = Decimal("0")
    gst_rate: Decimal = Decimal("0")
    gst_treatment: Optional[GstTreatment] = None
    financial_year: str


class ApprovalDecision(BaseModel):
    actor_id: int
    decision: ApprovalStatus
    notes: Optional[str] = None
    decided_at: datetime


class ApprovalWorkflow(BaseModel):
    requires_approval: bool = False
    status: ApprovalStatus = ApprovalStatus.APPROVED
    required_approval_count: int = 1
    approvers: list[int] = Field(default_factory=list)
    decisions: list[ApprovalDecision] = Field(default_factory=list)

    @property
    def approval_count(self) -> int:
        return sum(1 for d in self.decisions if d.decision == ApprovalStatus.APPROVED)


class ClawbackDetails(BaseModel):
    eligible: bool = True
    period_days: int = 0
    expires_at: Optional[date] = None
    amount: Decimal = Decimal("0")
    clawed_back_at: Optional[datetime] = None
    reason: Optional[str] = None
    actor_id: Optional[int] = None


class Adjustment(BaseModel):
    """Append-only log entry for a change to the net amount, a clawback or a hold."""

    adjustment_type: AdjustmentType
    amount: Decimal
    previous_amount: Decimal
    new_amount: Decimal
    reason: str
    actor_id: int
    created_at: datetime


class CommissionAggregate(BaseModel):
    """A partner's commission on a sale, with its full lifecycle state."""

    id: Optional[int] = None
    organization_id: int
    project_id: Optional[int] = None
    sale_id: int
    partner_id: int
    rule_id: int

    status: CommissionStatus
    sale_snapshot: SaleSnapshot
    performance_snapshot: PartnerPerformance
    calculation: CalculationBreakdown
    payment_schedule: PaymentSchedule
    payment_details: PaymentDetails
    tax_details: TaxDetails
    approval_workflow: ApprovalWorkflow
    clawback_details: ClawbackDetails
    adjustments: list[Adjustment] = Field(default_factory=list)

    created_by: int
    last_modified_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: Optional[int] = None

    @property
    def net_commission(self) -> Decimal:
        return self.calculation.net_commission


# ── Operation results ──────────────────────────────────────


class BulkItemSuccess(BaseModel):
    commission_id: int
    partner_id: int
    amount: Decimal
    status: CommissionStatus


class BulkItemFailure(BaseModel):
    commission_id: int
    error: str
    message: str


class BulkResult(BaseModel):
    successful: list[BulkItemSuccess] = Field(default_factory=list)
    failed: list[BulkItemFailure] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")


class SaleChangeAdjustment(BaseModel):
    commission_id: int
    partner_id: int
    old_amount: Decimal
    new_amount: Decimal
    delta: Decimal


class RecalculationResult(BaseModel):
    """
    Freshly computed amount for one commission. ``recalculated`` says
    whether the change cleared the threshold and was written.
    """

    commission_id: int
    old_amount: Decimal
    new_amount: Decimal
    delta: Decimal
    recalculated: bool
