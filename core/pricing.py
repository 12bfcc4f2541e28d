"""
Subtotal and charge calculation.

Pure functions of their explicit inputs. Tax is always computed on the
pre-discount subtotal; that ordering is fixed so totals stay comparable with
figures computed elsewhere.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from core.models import DiscountSpec, DiscountType, LineItem
from core.money import HUNDRED, Money


@dataclass(frozen=True)
class ChargeBreakdown:
    """Subtotal and the charges derived from it."""

    subtotal: Money
    tax_amount: Money
    discount_amount: Money
    total_amount: Money


def line_amount(item: LineItem, currency: str) -> Money:
    """quantity x rate for one item, rounded once."""
    return Money(item.rate_cents, currency).times(item.quantity)


def aggregate_subtotal(items: Iterable[LineItem], currency: str) -> Money:
    """
    Sum of line amounts. An empty sequence yields zero.

    Items are assumed validated (positive quantity, non-negative rate).
    """
    subtotal = Money.zero(currency)
    for item in items:
        subtotal = subtotal + line_amount(item, currency)
    return subtotal


def calculate_discount(subtotal: Money, discount: DiscountSpec) -> Money:
    """Discount amount, never larger than the subtotal."""
    if discount.type == DiscountType.PERCENTAGE:
        return subtotal.percent(min(discount.value, HUNDRED))

    fixed = Money.from_decimal(discount.value, subtotal.currency)
    return fixed.min(subtotal)


def calculate_charges(subtotal: Money, tax_rate: Decimal, discount: DiscountSpec) -> ChargeBreakdown:
    """
    Apply tax and discount to a subtotal.

    Args:
        subtotal: Sum of line amounts
        tax_rate: Percent, 0-100
        discount: Fixed amount or percentage

    Returns:
        ChargeBreakdown where total = subtotal + tax - discount (floored at 0)
    """
    tax_amount = subtotal.percent(tax_rate)
    discount_amount = calculate_discount(subtotal, discount)
    total_amount = (subtotal + tax_amount - discount_amount).clamp_non_negative()

    return ChargeBreakdown(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total_amount=total_amount,
    )
