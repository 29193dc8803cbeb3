"""Line-item pricing: per-line and aggregate totals with flat and percent discounts.

All arithmetic is done in ``Decimal``. Rounding (half-up, two places) only
happens when a value leaves this module, so discounts do not accumulate
rounding error across a list of items.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from dealdesk.utils.validators import ZERO, to_decimal

CENT = Decimal("0.01")


class PricedItem(Protocol):
    quantity: Any
    unit_price: Any
    discount_amount: Any
    discount_percent: Any


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal
    total: Decimal

    @property
    def discount(self) -> Decimal:
        return self.subtotal - self.total


@dataclass(frozen=True)
class AggregateTotals:
    subtotal: Decimal
    total: Decimal

    @property
    def discount(self) -> Decimal:
        return self.subtotal - self.total


def round_money(value: Any) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_totals(item: PricedItem) -> LineTotals:
    quantity = max(int(to_decimal(item.quantity)), 1)
    subtotal = quantity * to_decimal(item.unit_price)
    percent_discount = subtotal * (to_decimal(item.discount_percent) / 100)
    total_discount = min(subtotal, max(ZERO, to_decimal(item.discount_amount) + percent_discount))
    total = max(ZERO, subtotal - total_discount)
    return LineTotals(subtotal=round_money(subtotal), total=round_money(total))


def aggregate(items: Iterable[PricedItem]) -> AggregateTotals:
    """Sum the rounded per-item values; an empty list yields zeros."""
    subtotal = ZERO
    total = ZERO
    for item in items:
        totals = line_totals(item)
        subtotal += totals.subtotal
        total += totals.total
    return AggregateTotals(subtotal=round_money(subtotal), total=round_money(total))
