# core/services/totals.py
"""
Order money rollup.

Pure functions: no database access, so they are shared by purchase and
sales orders and can be tested in isolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from django.utils.translation import gettext as _

from core.exceptions import InconsistentTotals, InvalidQuantity
from core.utils import DECIMAL_ZERO, MONEY_PLACES, to_money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    shipping_total: Decimal
    grand_total: Decimal
    paid_total: Decimal
    due_total: Decimal

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "subtotal": self.subtotal,
            "discount_total": self.discount_total,
            "tax_total": self.tax_total,
            "shipping_total": self.shipping_total,
            "grand_total": self.grand_total,
            "paid_total": self.paid_total,
            "due_total": self.due_total,
        }


def compute_line_total(
    quantity,
    unit_price,
    discount_amount=DECIMAL_ZERO,
    discount_percent=DECIMAL_ZERO,
) -> Decimal:
    """
    max(unit_price * qty - discount_amount - unit_price * qty * percent / 100, 0)
    """
    qty = Decimal(str(quantity or 0))
    price = to_money(unit_price, field="unit_price")
    amount = to_money(discount_amount, field="discount_amount")
    percent = Decimal(str(discount_percent or 0))

    if percent < 0 or percent > HUNDRED:
        raise InvalidQuantity(_("نسبة الخصم يجب أن تكون بين 0% و 100%."))

    base = price * qty
    total = base - amount - (base * percent / HUNDRED)
    if total < 0:
        total = DECIMAL_ZERO
    return total.quantize(MONEY_PLACES)


def compute_order_totals(
    item_totals: Iterable[Decimal],
    *,
    discount_total=DECIMAL_ZERO,
    tax_total=DECIMAL_ZERO,
    shipping_total=DECIMAL_ZERO,
    paid_total=DECIMAL_ZERO,
) -> OrderTotals:
    subtotal = sum((Decimal(t) for t in item_totals), DECIMAL_ZERO).quantize(MONEY_PLACES)
    discount = to_money(discount_total, field="discount_total")
    tax = to_money(tax_total, field="tax_total")
    shipping = to_money(shipping_total, field="shipping_total")
    paid = to_money(paid_total, field="paid_total")

    grand = max(subtotal - discount + tax + shipping, DECIMAL_ZERO)
    due = max(grand - paid, DECIMAL_ZERO)

    return OrderTotals(
        subtotal=subtotal,
        discount_total=discount,
        tax_total=tax,
        shipping_total=shipping,
        grand_total=grand.quantize(MONEY_PLACES),
        paid_total=paid,
        due_total=due.quantize(MONEY_PLACES),
    )


def check_item_total(item) -> None:
    """
    Raise InconsistentTotals when a stored item total drifted from its
    own quantity / price / discount fields.
    """
    expected = compute_line_total(
        item.quantity,
        item.unit_price,
        item.discount_amount,
        item.discount_percent,
    )
    if Decimal(item.total).quantize(MONEY_PLACES) != expected:
        raise InconsistentTotals(
            _("إجمالي البند #%(item)s (%(stored)s) لا يطابق المحسوب (%(expected)s).")
            % {"item": item.pk, "stored": item.total, "expected": expected}
        )
