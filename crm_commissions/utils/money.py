"""
Money and date helpers shared by the calculator and scheduler.
"""

import calendar
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional

from crm_commissions.config import settings

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def quantum(minor_units: Optional[int] = None) -> Decimal:
    """Smallest currency unit, e.g. Decimal("0.01") for two minor units."""
    if minor_units is None:
        minor_units = settings.currency_minor_units
    return Decimal(1).scaleb(-minor_units)


def round_money(amount: Decimal, minor_units: Optional[int] = None) -> Decimal:
    """Round to the currency's minor unit using round-half-up."""
    return Decimal(amount).quantize(quantum(minor_units), rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    """Apply a percentage rate (0-100) at full precision."""
    return amount * rate / HUNDRED


def split_evenly(amount: Decimal, parts: int, minor_units: Optional[int] = None) -> list[Decimal]:
    """
    Split an amount into equal parts that sum exactly to the amount.

    Each part is rounded down to the minor unit; the remainder lands on
    the last part.
    """
    step = quantum(minor_units)
    share = (amount / parts).quantize(step, rounding=ROUND_DOWN)
    shares = [share] * parts
    shares[-1] = amount - share * (parts - 1)
    return shares


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def financial_year(on: date) -> str:
    """
    Indian financial year label for a date, e.g. "2024-25".

    The year starts on 1 April; January to March belong to the year
    that started the previous April.
    """
    start_year = on.year if on.month >= 4 else on.year - 1
    return f"{start_year}-{str(start_year + 1)[-2:]}"


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start to end, never negative."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)
