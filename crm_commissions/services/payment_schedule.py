"""
Payout schedule derived from a rule's payment terms.
"""

from datetime import date, timedelta
from decimal import Decimal

from crm_commissions.models.rule import PaymentScheduleType
from crm_commissions.schemas.commission import Installment, PaymentSchedule
from crm_commissions.schemas.rule import PaymentTerms
from crm_commissions.utils.money import add_months, split_evenly

# Monthly payouts are split into this many installments when the amount
# is large enough; not configurable per rule.
MONTHLY_INSTALLMENTS = 3


def build_payment_schedule(net: Decimal, terms: PaymentTerms, sale_date: date) -> PaymentSchedule:
    """
    Build the installment list for a net commission.

    The first payout is due ``payment_delay_days`` after the sale. A hold
    period delays when funds become payable without changing the
    installments. Monthly schedules split into three equal payouts only
    when ``net > minimum_payout_amount * 3``; smaller amounts are paid at
    once.
    """
    scheduled_date = sale_date + timedelta(days=terms.payment_delay_days)
    hold_until = None
    if terms.hold_period_days > 0:
        hold_until = scheduled_date + timedelta(days=terms.hold_period_days)

    split = (
        terms.schedule == PaymentScheduleType.MONTHLY
        and net > terms.minimum_payout_amount * MONTHLY_INSTALLMENTS
    )

    if split:
        installments = [
            Installment(number=i + 1, amount=amount, due_date=add_months(scheduled_date, i))
            for i, amount in enumerate(split_evenly(net, MONTHLY_INSTALLMENTS))
        ]
    else:
        installments = [Installment(number=1, amount=net, due_date=scheduled_date)]

    return PaymentSchedule(
        schedule_type=terms.schedule,
        scheduled_date=scheduled_date,
        hold_period_days=terms.hold_period_days,
        hold_until=hold_until,
        installments=installments,
    )
