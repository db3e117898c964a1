"""Fee calculation for enrollments and registrations.

Weeks are counted Monday through Sunday. A Marathon enrollment pays, for its
first month, the share of the monthly price covering the weeks still ahead in
the enrollment month. Enrolling on a Saturday or Sunday skips the current
week, since its classes are over.

Totals always apply in one order:

    base -> minus discount -> plus admin fee (on the discounted base)
         -> plus tax (on discounted base + admin fee)
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from app.utils.dates import add_months

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Round to cents, halves away from zero."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of a fee calculation."""

    base_amount: Decimal
    discount_percent: Optional[int]
    discount_amount: Decimal
    discounted_amount: Decimal
    admin_percent: Decimal
    admin_fee: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def _first_week_start(any_day: date) -> date:
    first = any_day.replace(day=1)
    return first - timedelta(days=first.weekday())


def _last_day_of_month(any_day: date) -> date:
    return add_months(any_day.replace(day=1), 1) - timedelta(days=1)


def weeks_in_month(any_day: date) -> int:
    """Number of Monday-Sunday weeks that touch the month of ``any_day``."""
    start = _first_week_start(any_day)
    return (_last_day_of_month(any_day) - start).days // 7 + 1


def weeks_remaining(enrollment_date: date) -> int:
    """Chargeable weeks from ``enrollment_date`` to the end of its month, never negative."""
    week_index = (enrollment_date - _first_week_start(enrollment_date)).days // 7
    remaining = weeks_in_month(enrollment_date) - week_index
    if enrollment_date.weekday() >= 5:
        remaining -= 1
    return max(0, remaining)


def compute_first_payment_amount(enrollment_date: date, monthly_price: Number) -> Decimal:
    """Pro-rated first invoice of a Marathon enrollment."""
    price = Decimal(str(monthly_price))
    if price <= 0:
        return Decimal("0.00")
    per_week = price / weeks_in_month(enrollment_date)
    return to_money(per_week * weeks_remaining(enrollment_date))


def compute_totals(
    base_amount: Number,
    admin_fee_percent: Number,
    tax_percent: Number,
    discount_percent: Optional[int] = None,
) -> FeeBreakdown:
    """Apply discount, admin fee and tax to a base amount.

    >>> compute_totals(100, 5, 7).total_amount
    Decimal('112.35')
    """
    base = to_money(base_amount)
    admin_pct = Decimal(str(admin_fee_percent))
    tax_pct = Decimal(str(tax_percent))

    discount_amount = Decimal("0.00")
    if discount_percent:
        discount_amount = to_money(base * Decimal(discount_percent) / HUNDRED)
    discounted = base - discount_amount

    admin_fee = to_money(discounted * admin_pct / HUNDRED)
    tax_amount = to_money((discounted + admin_fee) * tax_pct / HUNDRED)

    return FeeBreakdown(
        base_amount=base,
        discount_percent=discount_percent,
        discount_amount=discount_amount,
        discounted_amount=discounted,
        admin_percent=admin_pct,
        admin_fee=admin_fee,
        tax_percent=tax_pct,
        tax_amount=tax_amount,
        total_amount=discounted + admin_fee + tax_amount,
    )
