"""
Tests for the commission state machine.

All transitions are pure, so these run without a database.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from crm_commissions.errors import AmountExceedsPending, InvalidInput, InvalidState
from crm_commissions.models import (
    AdjustmentType,
    ApprovalStatus,
    CommissionStatus,
    InstallmentStatus,
    PaymentMethod,
    PaymentScheduleType,
)
from crm_commissions.schemas.commission import PartnerPerformance, SaleSnapshot
from crm_commissions.schemas.rule import ApprovalPolicy, ClawbackPolicy, PaymentTerms
from crm_commissions.services import lifecycle
from crm_commissions.services.calculator import calculate_commission

SALE_DATE = date(2024, 6, 15)


def _make_sale(**kwargs):
    defaults = {
        "sale_price": Decimal("5000000"),
        "base_price": Decimal("5000000"),
        "unit_type": "2BHK",
        "sale_date": SALE_DATE,
    }
    defaults.update(kwargs)
    return SaleSnapshot(**defaults)


def _make_commission(rule, sale=None):
    sale = sale or _make_sale()
    performance = PartnerPerformance()
    aggregate = lifecycle.build_aggregate(
        organization_id=1,
        project_id=None,
        sale_id=10,
        partner_id=20,
        rule=rule.model_copy(update={"id": 1}),
        sale=sale,
        performance=performance,
        calculation=calculate_commission(sale, performance, rule),
        actor_id=99,
    )
    return aggregate.model_copy(update={"id": 1})


def _pay(commission, amount, payment_date=date(2024, 8, 1)):
    return lifecycle.record_payment(
        commission, Decimal(amount), PaymentMethod.BANK_TRANSFER, "UTR-1", payment_date, actor_id=5
    )


def _assert_balanced(commission):
    details = commission.payment_details
    assert details.total_paid + details.total_pending == commission.calculation.net_commission
    installments = commission.payment_schedule.installments
    assert sum(i.amount for i in installments) == commission.calculation.net_commission
    assert sum(i.outstanding for i in installments) == details.total_pending


def _recalculated(rule, sale_price):
    sale = _make_sale(sale_price=Decimal(sale_price))
    return sale, calculate_commission(sale, PartnerPerformance(), rule)


# ── Create ────────────────────────────────────────────────


class TestBuildAggregate:
    def test_no_approval_starts_approved(self, rule_factory):
        commission = _make_commission(rule_factory())
        assert commission.status == CommissionStatus.APPROVED
        assert commission.approval_workflow.status == ApprovalStatus.APPROVED
        assert commission.payment_details.total_pending == Decimal("100000.00")
        assert commission.payment_details.total_paid == Decimal("0")
        _assert_balanced(commission)

    def test_approval_required_starts_pending(self, rule_factory):
        rule = rule_factory(approval_policy=ApprovalPolicy(requires_approval=True, required_approval_count=2))
        commission = _make_commission(rule)
        assert commission.status == CommissionStatus.PENDING_APPROVAL
        assert commission.approval_workflow.required_approval_count == 2

    def test_tax_details_and_financial_year(self, rule_factory):
        commission = _make_commission(rule_factory(), _make_sale(sale_date=date(2025, 2, 10)))
        assert commission.tax_details.financial_year == "2024-25"

    def test_clawback_window(self, rule_factory):
        rule = rule_factory(clawback_policy=ClawbackPolicy(clawback_period_days=90))
        commission = _make_commission(rule)
        assert commission.clawback_details.expires_at == date(2024, 9, 13)

    def test_scenario_one_schedule(self, rule_factory):
        commission = _make_commission(rule_factory())
        installments = commission.payment_schedule.installments
        assert len(installments) == 1
        assert installments[0].amount == Decimal("100000.00")
        assert installments[0].due_date == date(2024, 7, 15)


# ── Approval ──────────────────────────────────────────────


class TestApproval:
    def _pending(self, rule_factory, count=1):
        rule = rule_factory(approval_policy=ApprovalPolicy(requires_approval=True, required_approval_count=count))
        return _make_commission(rule)

    def test_single_approval(self, rule_factory):
        approved = lifecycle.approve(self._pending(rule_factory), actor_id=1, notes="ok")
        assert approved.status == CommissionStatus.APPROVED
        assert approved.approval_workflow.decisions[0].notes == "ok"
        assert approved.last_modified_by == 1

    def test_needs_all_required_approvals(self, rule_factory):
        commission = self._pending(rule_factory, count=2)
        once = lifecycle.approve(commission, actor_id=1)
        assert once.status == CommissionStatus.PENDING_APPROVAL
        twice = lifecycle.approve(once, actor_id=2)
        assert twice.status == CommissionStatus.APPROVED

    def test_same_approver_twice(self, rule_factory):
        once = lifecycle.approve(self._pending(rule_factory, count=2), actor_id=1)
        with pytest.raises(InvalidState):
            lifecycle.approve(once, actor_id=1)

    def test_approve_only_from_pending(self, rule_factory):
        with pytest.raises(InvalidState):
            lifecycle.approve(_make_commission(rule_factory()), actor_id=1)

    def test_original_is_untouched(self, rule_factory):
        commission = self._pending(rule_factory)
        lifecycle.approve(commission, actor_id=1)
        assert commission.status == CommissionStatus.PENDING_APPROVAL
        assert commission.approval_workflow.decisions == []

    def test_reject(self, rule_factory):
        rejected = lifecycle.reject(self._pending(rule_factory), actor_id=1, reason="Duplicate booking")
        assert rejected.status == CommissionStatus.REJECTED
        assert rejected.approval_workflow.status == ApprovalStatus.REJECTED

    def test_reject_needs_reason(self, rule_factory):
        with pytest.raises(InvalidInput):
            lifecycle.reject(self._pending(rule_factory), actor_id=1, reason=" ")

    def test_reject_only_from_pending(self, rule_factory):
        with pytest.raises(InvalidState):
            lifecycle.reject(_make_commission(rule_factory()), actor_id=1, reason="no")


# ── Payment ───────────────────────────────────────────────


class TestRecordPayment:
    def test_partial_payment(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "60000")
        assert paid.status == CommissionStatus.PARTIALLY_PAID
        assert paid.payment_details.total_paid == Decimal("60000")
        assert paid.payment_details.total_pending == Decimal("40000")
        assert paid.payment_details.reference == "UTR-1"
        _assert_balanced(paid)

    def test_full_payment(self, rule_factory):
        paid = _pay(_pay(_make_commission(rule_factory()), "60000"), "40000")
        assert paid.status == CommissionStatus.PAID
        assert paid.payment_details.total_pending == Decimal("0")
        assert paid.payment_schedule.installments[0].status == InstallmentStatus.PAID

    def test_fills_installments_in_order(self, rule_factory):
        rule = rule_factory(payment_terms=PaymentTerms(schedule=PaymentScheduleType.MONTHLY))
        commission = _make_commission(rule)
        paid = _pay(commission, "40000")
        first, second, third = paid.payment_schedule.installments
        assert first.status == InstallmentStatus.PAID
        assert second.paid_amount == Decimal("6666.67")
        assert second.status == InstallmentStatus.PENDING
        assert third.paid_amount == Decimal("0")
        _assert_balanced(paid)

    def test_amount_exceeds_pending(self, rule_factory):
        with pytest.raises(AmountExceedsPending):
            _pay(_make_commission(rule_factory()), "100000.01")

    def test_non_positive_amount(self, rule_factory):
        with pytest.raises(InvalidInput):
            _pay(_make_commission(rule_factory()), "0")

    def test_not_payable_while_pending_approval(self, rule_factory):
        rule = rule_factory(approval_policy=ApprovalPolicy(requires_approval=True))
        with pytest.raises(InvalidState):
            _pay(_make_commission(rule), "100")

    def test_not_payable_once_paid(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "100000")
        with pytest.raises(InvalidState):
            _pay(paid, "1")

    def test_paid_record_refused_before_amount_check(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "100000")
        with pytest.raises(InvalidState):
            _pay(paid, "0")

    def test_amount_rounded_to_paisa(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "100.005")
        assert paid.payment_details.total_paid == Decimal("100.01")
        assert paid.payment_details.total_pending == Decimal("99899.99")
        assert paid.payment_details.last_payment_amount == Decimal("100.01")
        _assert_balanced(paid)

    def test_hold_period_enforced(self, rule_factory):
        rule = rule_factory(
            payment_terms=PaymentTerms(
                schedule=PaymentScheduleType.IMMEDIATE,
                payment_delay_days=30,
                hold_period_days=15,
            )
        )
        commission = _make_commission(rule)
        with pytest.raises(InvalidState):
            _pay(commission, "100", payment_date=date(2024, 7, 29))
        assert _pay(commission, "100", payment_date=date(2024, 7, 30)).status == CommissionStatus.PARTIALLY_PAID


# ── Hold ──────────────────────────────────────────────────


class TestHold:
    NOW = datetime(2024, 8, 1, tzinfo=timezone.utc)

    def _held(self, commission, hold_days=10):
        return lifecycle.put_on_hold(
            commission, actor_id=3, reason="KYC documents pending", hold_days=hold_days, now=self.NOW
        )

    def test_hold_blocks_payment(self, rule_factory):
        held = self._held(_make_commission(rule_factory()))

        assert held.status == CommissionStatus.APPROVED
        assert held.payment_schedule.hold_until == date(2024, 8, 11)
        assert held.payment_schedule.hold_period_days == 10
        entry = held.adjustments[-1]
        assert entry.adjustment_type == AdjustmentType.HOLD_APPLIED
        assert entry.amount == Decimal("0")
        assert entry.previous_amount == entry.new_amount == Decimal("100000.00")
        assert held.last_modified_by == 3

        with pytest.raises(InvalidState):
            _pay(held, "100", payment_date=date(2024, 8, 5))
        assert _pay(held, "100", payment_date=date(2024, 8, 11)).status == CommissionStatus.PARTIALLY_PAID

    def test_release_allows_payment(self, rule_factory):
        held = self._held(_make_commission(rule_factory()))
        released = lifecycle.release_hold(held, actor_id=3, now=self.NOW)

        assert released.status == CommissionStatus.APPROVED
        assert released.payment_schedule.hold_until is None
        assert released.payment_schedule.hold_period_days == 0
        assert [a.adjustment_type for a in released.adjustments] == [
            AdjustmentType.HOLD_APPLIED,
            AdjustmentType.HOLD_RELEASED,
        ]
        assert _pay(released, "100", payment_date=date(2024, 8, 2)).status == CommissionStatus.PARTIALLY_PAID

    def test_pending_approval_can_be_held(self, rule_factory):
        rule = rule_factory(approval_policy=ApprovalPolicy(requires_approval=True))
        held = self._held(_make_commission(rule))
        assert held.status == CommissionStatus.PENDING_APPROVAL

    def test_partially_paid_can_be_held(self, rule_factory):
        held = self._held(_pay(_make_commission(rule_factory()), "100"))
        assert held.status == CommissionStatus.PARTIALLY_PAID
        _assert_balanced(held)

    def test_terminal_record_cannot_be_held(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "100000")
        with pytest.raises(InvalidState):
            self._held(paid)

    def test_hold_needs_reason_and_days(self, rule_factory):
        commission = _make_commission(rule_factory())
        with pytest.raises(InvalidInput):
            lifecycle.put_on_hold(commission, actor_id=3, reason=" ", hold_days=10, now=self.NOW)
        with pytest.raises(InvalidInput):
            self._held(commission, hold_days=0)

    def test_release_when_not_on_hold(self, rule_factory):
        with pytest.raises(InvalidState):
            lifecycle.release_hold(_make_commission(rule_factory()), actor_id=3, now=self.NOW)

    def test_release_after_hold_ran_out(self, rule_factory):
        held = self._held(_make_commission(rule_factory()))
        with pytest.raises(InvalidState):
            lifecycle.release_hold(held, actor_id=3, now=datetime(2024, 8, 20, tzinfo=timezone.utc))


# ── Adjustment ────────────────────────────────────────────


class TestAdjustAmount:
    def test_scenario_three(self, rule_factory):
        rule = rule_factory()
        partially_paid = _pay(_make_commission(rule), "60000")
        sale, calculation = _recalculated(rule, "5200000")

        adjusted = lifecycle.adjust_amount(
            partially_paid, calculation, "sale modification", actor_id=3, rule=rule, sale=sale
        )

        assert adjusted.calculation.gross_commission == Decimal("104000.00")
        assert adjusted.payment_details.total_pending == Decimal("44000.00")
        assert adjusted.status == CommissionStatus.PARTIALLY_PAID
        assert adjusted.sale_snapshot.sale_price == Decimal("5200000")
        assert len(adjusted.adjustments) == 1
        entry = adjusted.adjustments[0]
        assert entry.adjustment_type == AdjustmentType.AMOUNT_INCREASE
        assert entry.amount == Decimal("4000.00")
        assert entry.previous_amount == Decimal("100000.00")
        assert entry.new_amount == Decimal("104000.00")
        _assert_balanced(adjusted)

    def test_decrease_spreads_over_open_installments(self, rule_factory):
        rule = rule_factory(payment_terms=PaymentTerms(schedule=PaymentScheduleType.MONTHLY))
        commission = _pay(_make_commission(rule), "40000")
        _, calculation = _recalculated(rule, "3000000")

        adjusted = lifecycle.adjust_amount(commission, calculation, "sale modification", actor_id=3)

        assert adjusted.calculation.net_commission == Decimal("60000.00")
        assert adjusted.adjustments[0].adjustment_type == AdjustmentType.AMOUNT_DECREASE
        _assert_balanced(adjusted)

    def test_decrease_to_paid_amount_completes(self, rule_factory):
        rule = rule_factory()
        commission = _pay(_make_commission(rule), "60000")
        _, calculation = _recalculated(rule, "3000000")

        adjusted = lifecycle.adjust_amount(commission, calculation, "sale modification", actor_id=3)
        assert adjusted.payment_details.total_pending == Decimal("0")
        assert adjusted.status == CommissionStatus.PAID
        _assert_balanced(adjusted)

    def test_below_paid_requires_clawback(self, rule_factory):
        rule = rule_factory()
        commission = _pay(_make_commission(rule), "60000")
        _, calculation = _recalculated(rule, "2000000")
        with pytest.raises(InvalidState):
            lifecycle.adjust_amount(commission, calculation, "sale modification", actor_id=3)

    def test_increase_after_full_installment_payment_adds_installment(self, rule_factory):
        rule = rule_factory()
        commission = _pay(_make_commission(rule), "60000")
        # Settle the single installment at 60000, as after an earlier decrease
        installment = commission.payment_schedule.installments[0]
        installment.amount = Decimal("60000")
        installment.status = InstallmentStatus.PAID
        commission.calculation.net_commission = Decimal("60000.00")
        commission.payment_details.total_pending = Decimal("0")

        _, calculation = _recalculated(rule, "5000000")
        adjusted = lifecycle.adjust_amount(commission, calculation, "sale modification", actor_id=3)

        assert adjusted.payment_schedule.total_installments == 2
        assert adjusted.payment_schedule.installments[1].amount == Decimal("40000.00")
        _assert_balanced(adjusted)

    def test_terminal_records_cannot_be_adjusted(self, rule_factory):
        rule = rule_factory(approval_policy=ApprovalPolicy(requires_approval=True))
        rejected = lifecycle.reject(_make_commission(rule), actor_id=1, reason="no")
        _, calculation = _recalculated(rule, "5200000")
        with pytest.raises(InvalidState):
            lifecycle.adjust_amount(rejected, calculation, "sale modification", actor_id=3)


# ── Clawback ──────────────────────────────────────────────


class TestClawback:
    NOW = datetime(2024, 8, 1, tzinfo=timezone.utc)

    def test_full_clawback(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "100000")
        clawed = lifecycle.clawback(paid, "Sale cancelled", actor_id=4, now=self.NOW)

        assert clawed.status == CommissionStatus.CLAWED_BACK
        assert clawed.payment_details.total_paid == Decimal("0")
        assert clawed.payment_details.total_pending == Decimal("100000.00")
        assert clawed.clawback_details.amount == Decimal("100000")
        assert clawed.adjustments[-1].adjustment_type == AdjustmentType.CLAWBACK
        _assert_balanced(clawed)

    def test_partial_clawback(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "60000")
        clawed = lifecycle.clawback(paid, "Refund", actor_id=4, amount=Decimal("10000"), now=self.NOW)
        assert clawed.payment_details.total_paid == Decimal("50000")
        _assert_balanced(clawed)

    def test_amount_above_paid(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "60000")
        with pytest.raises(InvalidInput):
            lifecycle.clawback(paid, "Refund", actor_id=4, amount=Decimal("70000"), now=self.NOW)

    def test_window_closed(self, rule_factory):
        paid = _pay(_make_commission(rule_factory()), "100000")
        late = datetime(2024, 9, 13, tzinfo=timezone.utc)
        with pytest.raises(InvalidState):
            lifecycle.clawback(paid, "Too late", actor_id=4, now=late)

    def test_not_eligible(self, rule_factory):
        rule = rule_factory(clawback_policy=ClawbackPolicy(eligible=False))
        paid = _pay(_make_commission(rule), "100000")
        with pytest.raises(InvalidState):
            lifecycle.clawback(paid, "Sale cancelled", actor_id=4, now=self.NOW)

    def test_not_from_pending_approval(self, rule_factory):
        rule = rule_factory(approval_policy=ApprovalPolicy(requires_approval=True))
        with pytest.raises(InvalidState):
            lifecycle.clawback(_make_commission(rule), "x", actor_id=4, now=self.NOW)

    def test_paid_only_decreases_through_clawback(self, rule_factory):
        rule = rule_factory()
        commission = _make_commission(rule)
        history = [commission.payment_details.total_paid]
        for step in (
            lambda c: _pay(c, "30000"),
            lambda c: lifecycle.adjust_amount(c, _recalculated(rule, "5200000")[1], "sale modification", 3),
            lambda c: _pay(c, "20000"),
        ):
            commission = step(commission)
            history.append(commission.payment_details.total_paid)
        assert history == sorted(history)

        clawed = lifecycle.clawback(commission, "Sale cancelled", actor_id=4, now=self.NOW)
        assert clawed.payment_details.total_paid < history[-1]
