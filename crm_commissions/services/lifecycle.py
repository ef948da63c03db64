"""
Commission lifecycle state machine.

    pending_approval -> approved -> partially_paid -> paid
    pending_approval -> rejected
    approved | partially_paid | paid -> clawed_back

Every transition takes an aggregate and returns an updated copy, or
raises a ``CommissionError``. Nothing here touches storage; the service
layer loads, transitions and saves inside one unit of work.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

from crm_commissions.errors import AmountExceedsPending, InvalidInput, InvalidState
from crm_commissions.models.commission import (
    PAYABLE_STATUSES,
    TERMINAL_STATUSES,
    AdjustmentType,
    ApprovalStatus,
    CommissionStatus,
    InstallmentStatus,
    PaymentMethod,
)
from crm_commissions.schemas.commission import (
    Adjustment,
    ApprovalDecision,
    ApprovalWorkflow,
    CalculationBreakdown,
    ClawbackDetails,
    CommissionAggregate,
    Installment,
    PartnerPerformance,
    PaymentDetails,
    SaleSnapshot,
    TaxDetails,
)
from crm_commissions.schemas.rule import RuleDefinition
from crm_commissions.services.payment_schedule import build_payment_schedule
from crm_commissions.utils.money import ZERO, add_months, financial_year, round_money

CLAWBACK_STATUSES = frozenset({
    CommissionStatus.APPROVED,
    CommissionStatus.PARTIALLY_PAID,
    CommissionStatus.PAID,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_status(
    aggregate: CommissionAggregate,
    allowed: Iterable[CommissionStatus],
    action: str,
) -> None:
    if aggregate.status not in allowed:
        raise InvalidState(
            f"Cannot {action} commission {aggregate.id} in status '{aggregate.status.value}'"
        )


def _tax_details(calculation: CalculationBreakdown, rule: RuleDefinition, sale_date: date) -> TaxDetails:
    tax = rule.tax_settings
    return TaxDetails(
        tds_deducted=calculation.tds_amount,
        tds_rate=tax.tds_rate,
        gst_amount=calculation.gst_amount,
        gst_rate=tax.gst_rate,
        gst_treatment=tax.gst_treatment,
        financial_year=financial_year(sale_date),
    )


# ── Create ─────────────────────────────────────────────────


def build_aggregate(
    *,
    organization_id: int,
    project_id: Optional[int],
    sale_id: int,
    partner_id: int,
    rule: RuleDefinition,
    sale: SaleSnapshot,
    performance: PartnerPerformance,
    calculation: CalculationBreakdown,
    actor_id: int,
) -> CommissionAggregate:
    """
    Assemble a new commission record.

    The record starts approved when the rule does not require approval,
    otherwise pending approval.
    """
    net = calculation.net_commission
    policy = rule.approval_policy

    if policy.requires_approval:
        status = CommissionStatus.PENDING_APPROVAL
        workflow_status = ApprovalStatus.PENDING
    else:
        status = CommissionStatus.APPROVED
        workflow_status = ApprovalStatus.APPROVED

    clawback_policy = rule.clawback_policy
    expires_at = None
    if clawback_policy.eligible:
        expires_at = sale.sale_date + timedelta(days=clawback_policy.clawback_period_days)

    return CommissionAggregate(
        organization_id=organization_id,
        project_id=project_id,
        sale_id=sale_id,
        partner_id=partner_id,
        rule_id=rule.id,
        status=status,
        sale_snapshot=sale,
        performance_snapshot=performance,
        calculation=calculation,
        payment_schedule=build_payment_schedule(net, rule.payment_terms, sale.sale_date),
        payment_details=PaymentDetails(total_paid=ZERO, total_pending=net),
        tax_details=_tax_details(calculation, rule, sale.sale_date),
        approval_workflow=ApprovalWorkflow(
            requires_approval=policy.requires_approval,
            status=workflow_status,
            required_approval_count=policy.required_approval_count,
            approvers=list(policy.approvers),
        ),
        clawback_details=ClawbackDetails(
            eligible=clawback_policy.eligible,
            period_days=clawback_policy.clawback_period_days,
            expires_at=expires_at,
        ),
        created_by=actor_id,
        last_modified_by=actor_id,
    )


# ── Approval ───────────────────────────────────────────────


def approve(
    aggregate: CommissionAggregate,
    actor_id: int,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CommissionAggregate:
    """Record an approval; the record is approved once enough approvals are in."""
    _require_status(aggregate, {CommissionStatus.PENDING_APPROVAL}, "approve")

    workflow = aggregate.approval_workflow
    if any(
        d.actor_id == actor_id and d.decision == ApprovalStatus.APPROVED
        for d in workflow.decisions
    ):
        raise InvalidState(f"User {actor_id} has already approved commission {aggregate.id}")

    updated = aggregate.model_copy(deep=True)
    workflow = updated.approval_workflow
    workflow.decisions.append(
        ApprovalDecision(
            actor_id=actor_id,
            decision=ApprovalStatus.APPROVED,
            notes=notes,
            decided_at=now or _utcnow(),
        )
    )
    if workflow.approval_count >= workflow.required_approval_count:
        workflow.status = ApprovalStatus.APPROVED
        updated.status = CommissionStatus.APPROVED

    updated.last_modified_by = actor_id
    return updated


def reject(
    aggregate: CommissionAggregate,
    actor_id: int,
    reason: str,
    now: Optional[datetime] = None,
) -> CommissionAggregate:
    if not reason or not reason.strip():
        raise InvalidInput("Rejection reason is required")
    _require_status(aggregate, {CommissionStatus.PENDING_APPROVAL}, "reject")

    updated = aggregate.model_copy(deep=True)
    updated.approval_workflow.decisions.append(
        ApprovalDecision(
            actor_id=actor_id,
            decision=ApprovalStatus.REJECTED,
            notes=reason.strip(),
            decided_at=now or _utcnow(),
        )
    )
    updated.approval_workflow.status = ApprovalStatus.REJECTED
    updated.status = CommissionStatus.REJECTED
    updated.last_modified_by = actor_id
    return updated


# ── Payment ────────────────────────────────────────────────


def record_payment(
    aggregate: CommissionAggregate,
    amount: Decimal,
    method: PaymentMethod,
    reference: Optional[str],
    payment_date: date,
    actor_id: int,
) -> CommissionAggregate:
    """
    Apply a payout against the pending balance.

    The payment fills pending installments in due order. Payments dated
    before the hold period ends are refused. Amounts are rounded to
    paisa before they are applied.
    """
    _require_status(aggregate, PAYABLE_STATUSES, "record payment for")
    amount = round_money(amount)
    if amount <= 0:
        raise InvalidInput("Payment amount must be positive")

    details = aggregate.payment_details
    if amount > details.total_pending:
        raise AmountExceedsPending(amount, details.total_pending)

    hold_until = aggregate.payment_schedule.hold_until
    if hold_until is not None and payment_date < hold_until:
        raise InvalidState(
            f"Commission {aggregate.id} is on hold until {hold_until.isoformat()}"
        )

    updated = aggregate.model_copy(deep=True)

    remaining = amount
    for installment in updated.payment_schedule.installments:
        if remaining <= 0:
            break
        if installment.outstanding <= 0:
            continue
        portion = min(remaining, installment.outstanding)
        installment.paid_amount += portion
        installment.paid_date = payment_date
        installment.method = method
        installment.reference = reference
        if installment.outstanding == 0:
            installment.status = InstallmentStatus.PAID
        remaining -= portion

    details = updated.payment_details
    details.total_paid += amount
    details.total_pending -= amount
    details.last_payment_date = payment_date
    details.last_payment_amount = amount
    details.method = method
    details.reference = reference

    if details.total_pending == 0:
        updated.status = CommissionStatus.PAID
    else:
        updated.status = CommissionStatus.PARTIALLY_PAID

    updated.last_modified_by = actor_id
    return updated


# ── Hold ───────────────────────────────────────────────────


def _hold_entry(
    aggregate: CommissionAggregate,
    adjustment_type: AdjustmentType,
    reason: str,
    actor_id: int,
    now: datetime,
) -> Adjustment:
    net = aggregate.calculation.net_commission
    return Adjustment(
        adjustment_type=adjustment_type,
        amount=ZERO,
        previous_amount=net,
        new_amount=net,
        reason=reason,
        actor_id=actor_id,
        created_at=now,
    )


def put_on_hold(
    aggregate: CommissionAggregate,
    actor_id: int,
    reason: str,
    hold_days: int,
    now: Optional[datetime] = None,
) -> CommissionAggregate:
    """
    Block payouts for ``hold_days`` days from today.

    The status is left alone; ``record_payment`` refuses payments dated
    before the hold ends.
    """
    if not reason or not reason.strip():
        raise InvalidInput("Hold reason is required")
    if hold_days < 1:
        raise InvalidInput("Hold period must be at least one day")
    if aggregate.status in TERMINAL_STATUSES:
        raise InvalidState(
            f"Cannot put commission {aggregate.id} in status '{aggregate.status.value}' on hold"
        )

    now = now or _utcnow()
    updated = aggregate.model_copy(deep=True)
    updated.payment_schedule.hold_period_days = hold_days
    updated.payment_schedule.hold_until = now.date() + timedelta(days=hold_days)
    updated.adjustments.append(
        _hold_entry(updated, AdjustmentType.HOLD_APPLIED, reason.strip(), actor_id, now)
    )
    updated.last_modified_by = actor_id
    return updated


def release_hold(
    aggregate: CommissionAggregate,
    actor_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CommissionAggregate:
    """Lift a hold before it runs out."""
    now = now or _utcnow()
    hold_until = aggregate.payment_schedule.hold_until
    if (
        aggregate.status in TERMINAL_STATUSES
        or hold_until is None
        or hold_until <= now.date()
    ):
        raise InvalidState(f"Commission {aggregate.id} is not on hold")

    updated = aggregate.model_copy(deep=True)
    updated.payment_schedule.hold_period_days = 0
    updated.payment_schedule.hold_until = None
    updated.adjustments.append(
        _hold_entry(
            updated,
            AdjustmentType.HOLD_RELEASED,
            (reason or "").strip() or "Hold released",
            actor_id,
            now,
        )
    )
    updated.last_modified_by = actor_id
    return updated


# ── Adjustment ─────────────────────────────────────────────


def _rebalance_installments(installments: list[Installment], delta: Decimal) -> list[Installment]:
    """
    Spread a net change over unpaid installments so that installment
    amounts keep summing to the net.

    Increases go to the last open installment; decreases are taken from
    the latest open installments first and never cut below what was paid.
    """
    open_installments = [i for i in installments if i.status == InstallmentStatus.PENDING]

    if delta > 0:
        if open_installments:
            open_installments[-1].amount += delta
        else:
            last = installments[-1]
            installments.append(
                Installment(
                    number=last.number + 1,
                    amount=delta,
                    due_date=add_months(last.due_date, 1),
                )
            )
        return installments

    remaining = -delta
    for installment in reversed(open_installments):
        if remaining <= 0:
            break
        cut = min(remaining, installment.outstanding)
        installment.amount -= cut
        remaining -= cut
        if installment.outstanding == 0 and installment.paid_amount > 0:
            installment.status = InstallmentStatus.PAID

    kept = [i for i in installments if i.amount > 0 or i is installments[0]]
    for number, installment in enumerate(kept, start=1):
        installment.number = number
    return kept


def adjust_amount(
    aggregate: CommissionAggregate,
    calculation: CalculationBreakdown,
    reason: str,
    actor_id: int,
    rule: Optional[RuleDefinition] = None,
    sale: Optional[SaleSnapshot] = None,
    performance: Optional[PartnerPerformance] = None,
    now: Optional[datetime] = None,
) -> CommissionAggregate:
    """
    Replace the calculation with a re-derived one and log the change.

    Calculation, payment totals, schedule and adjustment log change
    together. A new net below what was already paid is refused: it needs
    a manual clawback.
    """
    if aggregate.status in TERMINAL_STATUSES:
        raise InvalidState(
            f"Cannot adjust commission {aggregate.id} in status '{aggregate.status.value}'"
        )

    old_amount = aggregate.calculation.net_commission
    new_amount = calculation.net_commission
    delta = new_amount - old_amount
    new_pending = new_amount - aggregate.payment_details.total_paid
    if new_pending < 0:
        raise InvalidState(
            f"New amount {new_amount} for commission {aggregate.id} is below the "
            f"{aggregate.payment_details.total_paid} already paid; a clawback is required"
        )

    updated = aggregate.model_copy(deep=True)
    updated.calculation = calculation
    updated.payment_details.total_pending = new_pending
    if sale is not None:
        updated.sale_snapshot = sale
    if performance is not None:
        updated.performance_snapshot = performance
    if rule is not None:
        updated.tax_details = _tax_details(calculation, rule, updated.sale_snapshot.sale_date)

    if delta != 0:
        schedule = updated.payment_schedule
        schedule.installments = _rebalance_installments(schedule.installments, delta)

    updated.adjustments.append(
        Adjustment(
            adjustment_type=(
                AdjustmentType.AMOUNT_INCREASE if delta > 0 else AdjustmentType.AMOUNT_DECREASE
            ),
            amount=abs(delta),
            previous_amount=old_amount,
            new_amount=new_amount,
            reason=reason,
            actor_id=actor_id,
            created_at=now or _utcnow(),
        )
    )

    if (
        updated.status == CommissionStatus.PARTIALLY_PAID
        and new_pending == 0
    ):
        updated.status = CommissionStatus.PAID

    updated.last_modified_by = actor_id
    return updated


# ── Clawback ───────────────────────────────────────────────


def clawback(
    aggregate: CommissionAggregate,
    reason: str,
    actor_id: int,
    amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> CommissionAggregate:
    """
    Reclaim paid commission while the clawback window is open.

    ``amount`` defaults to everything paid so far. The reclaimed amount
    moves from paid back to pending and the record becomes terminal.
    """
    if not reason or not reason.strip():
        raise InvalidInput("Clawback reason is required")
    _require_status(aggregate, CLAWBACK_STATUSES, "claw back")

    details = aggregate.clawback_details
    now = now or _utcnow()
    if not details.eligible:
        raise InvalidState(f"Commission {aggregate.id} is not eligible for clawback")
    if details.expires_at is not None and now.date() >= details.expires_at:
        raise InvalidState(
            f"Clawback window for commission {aggregate.id} closed on {details.expires_at.isoformat()}"
        )

    total_paid = aggregate.payment_details.total_paid
    if amount is None:
        amount = total_paid
    else:
        amount = round_money(amount)
        if amount <= 0:
            raise InvalidInput("Clawback amount must be positive")
    if amount > total_paid:
        raise InvalidInput(f"Clawback amount {amount} exceeds total paid {total_paid}")

    updated = aggregate.model_copy(deep=True)

    # Undo payouts from the latest installment backwards
    remaining = amount
    for installment in reversed(updated.payment_schedule.installments):
        if remaining <= 0:
            break
        reversed_amount = min(remaining, installment.paid_amount)
        if reversed_amount <= 0:
            continue
        installment.paid_amount -= reversed_amount
        installment.status = InstallmentStatus.PENDING
        remaining -= reversed_amount

    payment = updated.payment_details
    payment.total_paid -= amount
    payment.total_pending += amount

    net = updated.calculation.net_commission
    updated.clawback_details.amount = amount
    updated.clawback_details.clawed_back_at = now
    updated.clawback_details.reason = reason.strip()
    updated.clawback_details.actor_id = actor_id
    updated.adjustments.append(
        Adjustment(
            adjustment_type=AdjustmentType.CLAWBACK,
            amount=amount,
            previous_amount=net,
            new_amount=net,
            reason=reason.strip(),
            actor_id=actor_id,
            created_at=now,
        )
    )
    updated.status = CommissionStatus.CLAWED_BACK
    updated.last_modified_by = actor_id
    return updated
