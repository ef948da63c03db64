"""
Tests for recalculating commissions after a sale edit or a performance refresh.
"""

from datetime import date
from decimal import Decimal

import pytest

from crm_commissions.errors import InvalidInput, InvalidState, NotFound
from crm_commissions.models import AdjustmentType, CalculationMethod, CommissionStatus, PaymentMethod
from crm_commissions.schemas.rule import ApprovalPolicy, Tier
from crm_commissions.services.recalculation import SALE_MODIFICATION_REASON, RecalculationEngine

TIERS = [
    Tier(name="Bronze", min_sales=Decimal("0"), max_sales=Decimal("8000000"), rate=Decimal("1")),
    Tier(name="Silver", min_sales=Decimal("8000000"), max_sales=None, rate=Decimal("2")),
]


async def _setup(service, seed, **rule_overrides):
    partner_id = await seed.partner()
    sale_id = await seed.sale(partner_id)
    rule_id = await seed.rule(**rule_overrides)
    commission = await service.create_commission(sale_id, partner_id, rule_id, actor_id=1)
    return sale_id, commission


class TestSaleChange:
    @pytest.mark.asyncio
    async def test_price_correction_after_partial_payment(self, service, recalculation, seed):
        sale_id, commission = await _setup(service, seed)
        await service.record_payment(
            commission.id, Decimal("60000"), PaymentMethod.BANK_TRANSFER, None, date(2024, 8, 1), actor_id=2
        )

        adjusted = await recalculation.recalculate_for_sale_change(
            sale_id, {"sale_price": Decimal("5200000")}, actor_id=3
        )

        assert len(adjusted) == 1
        assert adjusted[0].commission_id == commission.id
        assert adjusted[0].old_amount == Decimal("100000")
        assert adjusted[0].new_amount == Decimal("104000")
        assert adjusted[0].delta == Decimal("4000")

        updated = await service.get_commission(commission.id)
        assert updated.status == CommissionStatus.PARTIALLY_PAID
        assert updated.sale_snapshot.sale_price == Decimal("5200000")
        assert updated.payment_details.total_paid == Decimal("60000")
        assert updated.payment_details.total_pending == Decimal("44000")
        assert len(updated.adjustments) == 1
        assert updated.adjustments[0].adjustment_type == AdjustmentType.AMOUNT_INCREASE
        assert updated.adjustments[0].reason == SALE_MODIFICATION_REASON
        assert updated.adjustments[0].actor_id == 3

    @pytest.mark.asyncio
    async def test_change_below_threshold_is_ignored(self, service, recalculation, seed):
        # 2% of 0.25 moves the net by a single paisa
        sale_id, commission = await _setup(service, seed)
        adjusted = await recalculation.recalculate_for_sale_change(
            sale_id, {"sale_price": Decimal("5000000.25")}, actor_id=3
        )
        assert adjusted == []

        unchanged = await service.get_commission(commission.id)
        assert unchanged.adjustments == []
        assert unchanged.version == commission.version

    @pytest.mark.asyncio
    async def test_irrelevant_field_change(self, service, recalculation, seed):
        # Flat rule on sale price: the unit type does not matter
        sale_id, commission = await _setup(service, seed)
        adjusted = await recalculation.recalculate_for_sale_change(
            sale_id, {"unit_type": "3BHK"}, actor_id=3
        )
        assert adjusted == []

    @pytest.mark.asyncio
    async def test_decrease(self, service, recalculation, seed):
        sale_id, commission = await _setup(service, seed)
        adjusted = await recalculation.recalculate_for_sale_change(
            sale_id, {"sale_price": Decimal("4000000")}, actor_id=3
        )
        assert adjusted[0].delta == Decimal("-20000")

        updated = await service.get_commission(commission.id)
        assert updated.payment_details.total_pending == Decimal("80000")
        assert updated.adjustments[0].adjustment_type == AdjustmentType.AMOUNT_DECREASE
        assert sum(i.amount for i in updated.payment_schedule.installments) == Decimal("80000")

    @pytest.mark.asyncio
    async def test_terminal_records_are_skipped(self, service, recalculation, seed):
        sale_id, commission = await _setup(
            service, seed, approval_policy=ApprovalPolicy(requires_approval=True)
        )
        await service.reject_commission(commission.id, actor_id=2, reason="Duplicate booking")

        adjusted = await recalculation.recalculate_for_sale_change(
            sale_id, {"sale_price": Decimal("5200000")}, actor_id=3
        )
        assert adjusted == []
        rejected = await service.get_commission(commission.id)
        assert rejected.net_commission == Decimal("100000")

    @pytest.mark.asyncio
    async def test_every_partner_on_the_sale(self, service, recalculation, seed):
        sale_id, first = await _setup(service, seed)
        other_partner = await seed.partner(name="Co-broker")
        second = await service.create_commission(sale_id, other_partner, first.rule_id, actor_id=1)

        adjusted = await recalculation.recalculate_for_sale_change(
            sale_id, {"sale_price": Decimal("5200000")}, actor_id=3
        )
        assert [a.commission_id for a in adjusted] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_sale_without_commissions(self, recalculation, seed):
        sale_id = await seed.sale(await seed.partner())
        assert await recalculation.recalculate_for_sale_change(
            sale_id, {"sale_price": Decimal("1")}, actor_id=3
        ) == []

    @pytest.mark.asyncio
    async def test_unknown_sale(self, recalculation):
        with pytest.raises(NotFound):
            await recalculation.recalculate_for_sale_change(999, {"sale_price": Decimal("1")}, actor_id=3)

    @pytest.mark.asyncio
    async def test_unsupported_field(self, service, recalculation, seed):
        sale_id, _ = await _setup(service, seed)
        with pytest.raises(InvalidInput):
            await recalculation.recalculate_for_sale_change(sale_id, {"booking_date": date(2024, 1, 1)}, actor_id=3)

    @pytest.mark.asyncio
    async def test_empty_changes(self, service, recalculation, seed):
        sale_id, _ = await _setup(service, seed)
        with pytest.raises(InvalidInput):
            await recalculation.recalculate_for_sale_change(sale_id, {}, actor_id=3)

    @pytest.mark.asyncio
    async def test_negative_price(self, service, recalculation, seed):
        sale_id, _ = await _setup(service, seed)
        with pytest.raises(InvalidInput):
            await recalculation.recalculate_for_sale_change(sale_id, {"sale_price": Decimal("-1")}, actor_id=3)

    @pytest.mark.asyncio
    async def test_change_that_needs_clawback_rolls_back(self, service, recalculation, seed):
        sale_id, commission = await _setup(service, seed)
        await service.record_payment(
            commission.id, Decimal("90000"), PaymentMethod.BANK_TRANSFER, None, date(2024, 8, 1), actor_id=2
        )
        with pytest.raises(InvalidState):
            await recalculation.recalculate_for_sale_change(
                sale_id, {"sale_price": Decimal("1000000")}, actor_id=3
            )
        unchanged = await service.get_commission(commission.id)
        assert unchanged.net_commission == Decimal("100000")


class TestRecalculateSingle:
    @pytest.mark.asyncio
    async def test_new_volume_moves_tier(self, service, recalculation, seed):
        partner_id = await seed.partner()
        sale_id = await seed.sale(partner_id)
        rule_id = await seed.rule(calculation_method=CalculationMethod.TIERED, tiers=TIERS)
        commission = await service.create_commission(sale_id, partner_id, rule_id, actor_id=1)
        assert commission.net_commission == Decimal("50000")

        # A later sale lifts the partner's volume into the Silver band
        await seed.sale(partner_id, booking_date=date(2024, 7, 1))

        result = await recalculation.recalculate_single(commission.id, actor_id=3)
        assert result.recalculated
        assert result.old_amount == Decimal("50000")
        assert result.new_amount == Decimal("100000")
        assert result.delta == Decimal("50000")

        updated = await service.get_commission(commission.id)
        assert updated.performance_snapshot.total_units_sold == 1
        assert updated.calculation.breakdown[0].tier == "Silver"

    @pytest.mark.asyncio
    async def test_change_within_threshold_is_reported_not_applied(self, service, uow_factory, seed):
        partner_id = await seed.partner()
        sale_id = await seed.sale(partner_id)
        rule_id = await seed.rule(calculation_method=CalculationMethod.TIERED, tiers=TIERS)
        commission = await service.create_commission(sale_id, partner_id, rule_id, actor_id=1)
        await seed.sale(partner_id, booking_date=date(2024, 7, 1))

        engine = RecalculationEngine(uow_factory, threshold=Decimal("100000"))
        result = await engine.recalculate_single(commission.id, actor_id=3)

        assert not result.recalculated
        assert result.old_amount == Decimal("50000")
        assert result.new_amount == Decimal("100000")
        assert result.delta == Decimal("50000")

        stored = await service.get_commission(commission.id)
        assert stored.net_commission == Decimal("50000")
        assert stored.adjustments == []

    @pytest.mark.asyncio
    async def test_deactivated_rule_still_recalculates(self, service, recalculation, registry, seed):
        partner_id = await seed.partner()
        sale_id = await seed.sale(partner_id)
        rule_id = await seed.rule(calculation_method=CalculationMethod.TIERED, tiers=TIERS)
        commission = await service.create_commission(sale_id, partner_id, rule_id, actor_id=1)
        await registry.deactivate_rule(rule_id, actor_id=1)
        await seed.sale(partner_id, booking_date=date(2024, 7, 1))

        result = await recalculation.recalculate_single(commission.id, actor_id=3)

        assert result.recalculated
        assert result.new_amount == Decimal("100000")

    @pytest.mark.asyncio
    async def test_nothing_changed(self, service, recalculation, seed):
        _, commission = await _setup(service, seed)
        result = await recalculation.recalculate_single(commission.id, actor_id=3)
        assert not result.recalculated
        assert result.new_amount == result.old_amount
        assert result.delta == Decimal("0")

    @pytest.mark.asyncio
    async def test_terminal_record(self, service, recalculation, seed):
        _, commission = await _setup(service, seed)
        await service.record_payment(
            commission.id, None, PaymentMethod.BANK_TRANSFER, None, date(2024, 8, 1), actor_id=2
        )
        with pytest.raises(InvalidState):
            await recalculation.recalculate_single(commission.id, actor_id=3)

    @pytest.mark.asyncio
    async def test_missing_commission(self, recalculation):
        with pytest.raises(NotFound):
            await recalculation.recalculate_single(404, actor_id=3)
