# core/exceptions.py
"""
Domain errors raised by ledger services.

All of them are ValidationError subclasses so existing callers that catch
ValidationError (forms, views, management commands) keep working, while
services and tests can tell the failure kinds apart by class or by code.
"""

from __future__ import annotations

from django.core.exceptions import ValidationError
from django.utils.translation import gettext_lazy as _


class InventoryError(ValidationError):
    default_message = _("تعذّر تنفيذ العملية على المخزون.")
    default_code = "inventory_error"

    def __init__(self, message=None, code=None, params=None):
        super().__init__(
            message if message is not None else self.default_message,
            code=code or self.default_code,
            params=params,
        )


class NotFound(InventoryError):
    default_message = _("السجل المطلوب غير موجود.")
    default_code = "not_found"


class InvalidQuantity(InventoryError):
    default_message = _("الكمية يجب أن تكون عدداً صحيحاً أكبر من صفر.")
    default_code = "invalid_quantity"


class InsufficientStock(InventoryError):
    default_message = _("الكمية المتوفرة غير كافية.")
    default_code = "insufficient_stock"


class DuplicateBatchIdentity(InventoryError):
    default_message = _("رقم التشغيلة مستخدم لمنتج آخر.")
    default_code = "duplicate_batch_identity"


class InconsistentTotals(InventoryError):
    default_message = _("إجماليات المستند غير متطابقة مع البنود.")
    default_code = "inconsistent_totals"


class InvalidState(InventoryError):
    default_message = _("لا يمكن تنفيذ العملية في الحالة الحالية للمستند.")
    default_code = "invalid_state"


class ConcurrencyConflict(InventoryError):
    """Transient: safe to retry the whole operation."""

    default_message = _("تعارض مع عملية متزامنة، يرجى إعادة المحاولة.")
    default_code = "concurrency_conflict"
