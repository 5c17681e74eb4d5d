# core/utils.py

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from django.utils.translation import gettext as _

from core.exceptions import InvalidQuantity

DECIMAL_ZERO = Decimal("0.000")
MONEY_PLACES = Decimal("0.000")


def normalize_quantity(value: Any, *, field: str = "quantity") -> int:
    """
    Return value as a positive int.

    Accepts ints, integral Decimals and numeric strings ("5", "5.000").
    Rejects zero, negatives, fractions, booleans and garbage.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidQuantity(_("قيمة غير صالحة للحقل %(field)s.") % {"field": field})

    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidQuantity(_("قيمة غير صالحة للحقل %(field)s.") % {"field": field})

    if not number.is_finite() or number != number.to_integral_value():
        raise InvalidQuantity(_("الكمية يجب أن تكون عدداً صحيحاً."))
    if number <= 0:
        raise InvalidQuantity(_("الكمية يجب أن تكون أكبر من صفر."))
    return int(number)


def to_money(value: Any, *, field: str = "amount", allow_negative: bool = False) -> Decimal:
    """Parse a monetary value into a Decimal quantized to 3 places."""
    if value is None or value == "":
        return DECIMAL_ZERO
    if isinstance(value, bool):
        raise InvalidQuantity(_("قيمة غير صالحة للحقل %(field)s.") % {"field": field})
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidQuantity(_("قيمة غير صالحة للحقل %(field)s.") % {"field": field})
    if not amount.is_finite():
        raise InvalidQuantity(_("قيمة غير صالحة للحقل %(field)s.") % {"field": field})
    if amount < 0 and not allow_negative:
        raise InvalidQuantity(_("الحقل %(field)s لا يمكن أن يكون سالباً.") % {"field": field})
    return amount.quantize(MONEY_PLACES)


def pk_of(obj: Any):
    """Accept a model instance or a raw id."""
    return obj.pk if hasattr(obj, "pk") else obj


def actor_or_none(user: Any):
    """The user to store in created_by / updated_by: authenticated users only."""
    if user is not None and getattr(user, "is_authenticated", False):
        return user
    return None
