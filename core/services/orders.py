# core/services/orders.py
"""
Shared order workflow for purchase and sales orders.

Subclasses bind the concrete models and implement the stock hooks:

- _prepare_extra(order, product, raw)       -> extra item fields (validated, no writes)
- _apply_item(item, raw, user)              -> stock effect of a new item
- _reconcile_item(item, new_fields, user)   -> stock effect of an edit (item still holds old values)
- _reverse_item(item, user)                 -> undo the stock effect of an item

Stock hooks run only while the order is POSTED. A DRAFT order holds items
and totals without touching stock until post_order applies them.

Every public operation runs in one transaction: item rows, stock effects
and header totals commit together or not at all.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from django.db import transaction
from django.utils import timezone
from django.utils.translation import gettext as _

from core.exceptions import InvalidQuantity, InvalidState, NotFound
from core.models import AuditLog
from core.services.audit import log_event
from core.services.retry import retry_on_conflict
from core.utils import actor_or_none, normalize_quantity, pk_of, to_money
from inventory.services.lookups import get_branch, get_product

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _clean_percent(value) -> Decimal:
    percent = to_money(value, field="discount_percent")
    if percent > HUNDRED:
        raise InvalidQuantity(_("نسبة الخصم يجب أن تكون بين 0% و 100%."))
    return percent.quantize(Decimal("0.01"))


class BaseOrderService:
    order_model: Any = None
    item_model: Any = None
    payment_model: Any = None
    reference_prefix = "ORD"

    ORDER_FIELDS = ("note", "discount_total", "tax_total", "shipping_total", "status")
    MONEY_HEADER_FIELDS = ("discount_total", "tax_total", "shipping_total")
    ITEM_FIELDS = ("quantity", "unit_price", "discount_amount", "discount_percent")
    extra_order_fields: tuple[str, ...] = ()
    extra_item_update_fields: tuple[str, ...] = ()

    # ============================================================
    # Lookups
    # ============================================================
    @classmethod
    def get_order(cls, order, *, for_update: bool = False):
        qs = cls.order_model.objects.all()
        if for_update:
            qs = qs.select_for_update()
        try:
            return qs.get(pk=pk_of(order))
        except (cls.order_model.DoesNotExist, ValueError, TypeError):
            raise NotFound(_("المستند #%(id)s غير موجود.") % {"id": pk_of(order)})

    @classmethod
    def get_item(cls, item, *, for_update: bool = False):
        qs = cls.item_model.objects.all()
        if for_update:
            qs = qs.select_for_update()
        try:
            return qs.get(pk=pk_of(item))
        except (cls.item_model.DoesNotExist, ValueError, TypeError):
            raise NotFound(_("البند #%(id)s غير موجود.") % {"id": pk_of(item)})

    @classmethod
    def list_orders(cls, *, branch=None, status: Optional[str] = None, query: Optional[str] = None):
        qs = cls.order_model.objects.select_related("branch")
        if branch is not None:
            qs = qs.for_branch(branch)
        if status:
            qs = qs.with_status(status)
        return qs.search(query)

    @classmethod
    def reference_for(cls, item) -> str:
        return f"{cls.reference_prefix}-{item.order_id}/{item.pk}"

    # ============================================================
    # Helpers
    # ============================================================
    @classmethod
    def _ensure_editable(cls, order) -> None:
        if order.status == order.Status.CANCELLED:
            raise InvalidState(_("لا يمكن تعديل مستند ملغي."))
        if order.status == order.Status.RETURNED:
            raise InvalidState(_("لا يمكن تعديل مستند مرتجع."))

    @staticmethod
    def _stock_applies(order) -> bool:
        return order.status == order.Status.POSTED

    @classmethod
    def _clean_item_fields(cls, raw: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
        cleaners = {
            "quantity": normalize_quantity,
            "unit_price": lambda v: to_money(v, field="unit_price"),
            "discount_amount": lambda v: to_money(v, field="discount_amount"),
            "discount_percent": _clean_percent,
        }
        fields: dict[str, Any] = {}
        for name, cleaner in cleaners.items():
            if name in raw:
                fields[name] = cleaner(raw[name])
            elif not partial:
                fields[name] = cleaner(raw.get(name))
        return fields

    @classmethod
    def _log(cls, *, order, action, message: str, user=None, extra=None) -> None:
        log_event(action=action, message=message, actor=user, target=order, extra=extra or {})

    @staticmethod
    def _item_extra(item) -> dict[str, Any]:
        return {
            "item": item.pk,
            "product": item.product_id,
            "batch": item.batch_id,
            "quantity": item.quantity,
            "total": str(item.total),
        }

    # ============================================================
    # Stock hooks (overridden)
    # ============================================================
    @classmethod
    def _prepare_extra(cls, order, product, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {}

    @classmethod
    def _apply_item(cls, item, raw: Mapping[str, Any], user=None) -> None:
        return None

    @classmethod
    def _clean_extra_updates(cls, item, updates: Mapping[str, Any]) -> dict[str, Any]:
        return {}

    @classmethod
    def _reconcile_item(cls, item, new_fields: dict[str, Any], user=None) -> None:
        return None

    @classmethod
    def _reverse_item(cls, item, user=None) -> None:
        return None

    # ============================================================
    # Orders
    # ============================================================
    @classmethod
    @transaction.atomic
    def create_order(cls, *, branch, user=None, **fields):
        allowed = set(cls.ORDER_FIELDS) | set(cls.extra_order_fields)
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown order fields: {sorted(unknown)}")

        for name in cls.MONEY_HEADER_FIELDS:
            if name in fields:
                fields[name] = to_money(fields[name], field=name)
        # cancelled / returned are reached through their own operations
        if "status" in fields and fields["status"] not in (cls.order_model.Status.DRAFT, cls.order_model.Status.POSTED):
            raise InvalidState(_("حالة غير صالحة: %(status)s") % {"status": fields["status"]})

        order = cls.order_model.objects.create(branch=get_branch(branch), created_by=actor_or_none(user), **fields)
        order.recompute_totals()
        cls._log(order=order, action=AuditLog.Action.CREATE, message=f"{order} created", user=user)
        return order

    @classmethod
    @retry_on_conflict
    @transaction.atomic
    def add_items(cls, order, items: Iterable[Mapping[str, Any]], *, user=None) -> list:
        """
        Add items and apply their stock effects.

        items: list of dicts with product, quantity, unit_price,
        discount_amount, discount_percent, optional request_key and the
        side-specific batch fields.

        Every item is validated before anything is written. Items whose
        request_key already exists on the order are returned as-is.
        """
        order = cls.get_order(order, for_update=True)
        cls._ensure_editable(order)

        items = list(items or [])
        if not items:
            raise InvalidQuantity(_("يجب إضافة بند واحد على الأقل."))

        prepared = []
        for raw in items:
            product = get_product(raw.get("product"))
            fields = cls._clean_item_fields(raw)
            fields.update(cls._prepare_extra(order, product, raw))
            prepared.append((raw, product, fields))

        result = []
        for raw, product, fields in prepared:
            key = (raw.get("request_key") or "").strip() or None
            if key is not None:
                existing = cls.item_model.objects.filter(order=order, request_key=key).first()
                if existing is not None:
                    logger.info("%s: item with request key %s already added", order, key)
                    result.append(existing)
                    continue

            item = cls.item_model(order=order, product=product, request_key=key, created_by=actor_or_none(user), **fields)
            item.save()
            if cls._stock_applies(order):
                cls._apply_item(item, raw, user=user)

            cls._log(
                order=order,
                action=AuditLog.Action.CREATE,
                message=f"{order}: item {item.pk} added",
                user=user,
                extra=cls._item_extra(item),
            )
            result.append(item)

        order.recompute_totals()
        logger.info("%s: %s item(s) added", order, len(result))
        return result

    @classmethod
    @retry_on_conflict
    @transaction.atomic
    def update_item(cls, item, *, user=None, **updates):
        """
        Change quantity / price / discounts / batch of an item and
        reconcile its stock effect against the previous values.
        """
        allowed = set(cls.ITEM_FIELDS) | set(cls.extra_item_update_fields)
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown item fields: {sorted(unknown)}")

        item = cls.get_item(item, for_update=True)
        order = cls.get_order(item.order_id, for_update=True)
        cls._ensure_editable(order)

        new_fields = cls._clean_item_fields(updates, partial=True)
        new_fields.update(cls._clean_extra_updates(item, updates))

        before = cls._item_extra(item)
        if cls._stock_applies(order):
            cls._reconcile_item(item, new_fields, user=user)

        for name, value in new_fields.items():
            setattr(item, name, value)
        item.updated_by = actor_or_none(user)
        item.save()

        cls._log(
            order=order,
            action=AuditLog.Action.UPDATE,
            message=f"{order}: item {item.pk} updated",
            user=user,
            extra={"before": before, "after": cls._item_extra(item)},
        )
        order.recompute_totals()
        logger.info("%s: item %s updated", order, item.pk)
        return item

    @classmethod
    @retry_on_conflict
    @transaction.atomic
    def delete_item(cls, item, *, user=None):
        """Reverse the item's stock effect, then remove the row."""
        item = cls.get_item(item, for_update=True)
        order = cls.get_order(item.order_id, for_update=True)
        cls._ensure_editable(order)

        if cls._stock_applies(order):
            cls._reverse_item(item, user=user)
        extra = cls._item_extra(item)
        item.delete()

        cls._log(
            order=order,
            action=AuditLog.Action.DELETE,
            message=f"{order}: item {extra['item']} deleted",
            user=user,
            extra=extra,
        )
        order.recompute_totals()
        logger.info("%s: item %s deleted", order, extra["item"])
        return order

    @classmethod
    @retry_on_conflict
    @transaction.atomic
    def cancel_order(cls, order, *, user=None):
        """Reverse every item's stock effect (if posted) and mark the order cancelled."""
        order = cls.get_order(order, for_update=True)
        cls._ensure_editable(order)

        if cls._stock_applies(order):
            for item in order.items.select_for_update().order_by("id"):
                cls._reverse_item(item, user=user)

        return cls._change_status(order, order.Status.CANCELLED, user=user)

    @classmethod
    @retry_on_conflict
    @transaction.atomic
    def post_order(cls, order, *, user=None):
        """
        DRAFT → POSTED: apply the stock effect of every item.
        One failing item (e.g. short stock) leaves the order a draft.
        """
        order = cls.get_order(order, for_update=True)
        if order.status != order.Status.DRAFT:
            raise InvalidState(_("يمكن ترحيل المسودات فقط."))

        for item in order.items.select_for_update().order_by("id"):
            cls._apply_item(item, {}, user=user)

        return cls._change_status(order, order.Status.POSTED, user=user)

    @classmethod
    @retry_on_conflict
    @transaction.atomic
    def return_order(cls, order, *, user=None):
        """POSTED → RETURNED: the whole order comes back, items stay for the record."""
        order = cls.get_order(order, for_update=True)
        if order.status != order.Status.POSTED:
            raise InvalidState(_("يمكن إرجاع المستندات المرحّلة فقط."))

        for item in order.items.select_for_update().order_by("id"):
            cls._reverse_item(item, user=user)

        return cls._change_status(order, order.Status.RETURNED, user=user)

    @classmethod
    def _change_status(cls, order, status, *, user=None):
        old_status = order.status
        order.status = status
        order.save(update_fields=["status", *order.stamp_update(user)])

        cls._log(
            order=order,
            action=AuditLog.Action.STATUS_CHANGE,
            message=f"{order}: {old_status} → {status}",
            user=user,
            extra={"old_status": old_status, "new_status": status},
        )
        logger.info("%s: %s → %s", order, old_status, status)
        return order

    @classmethod
    @transaction.atomic
    def update_order(cls, order, *, user=None, **fields):
        """Header edits: note, counterparty fields and money adjustments."""
        allowed = {"note", *cls.MONEY_HEADER_FIELDS, *cls.extra_order_fields}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown order fields: {sorted(unknown)}")

        order = cls.get_order(order, for_update=True)
        cls._ensure_editable(order)

        changes = {}
        for name, value in fields.items():
            if name in cls.MONEY_HEADER_FIELDS:
                value = to_money(value, field=name)
            else:
                value = value or ""
            if getattr(order, name) != value:
                changes[name] = value

        if not changes:
            return order

        before = {name: getattr(order, name) for name in changes}
        for name, value in changes.items():
            setattr(order, name, value)
        order.save(update_fields=[*changes, *order.stamp_update(user)])
        order.recompute_totals()

        cls._log(
            order=order,
            action=AuditLog.Action.UPDATE,
            message=f"{order} updated",
            user=user,
            extra={"before": before, "after": changes},
        )
        return order

    # ============================================================
    # Money
    # ============================================================
    @classmethod
    @transaction.atomic
    def add_payment(cls, order, *, amount, method=None, reference: str = "", paid_at=None, user=None):
        order = cls.get_order(order, for_update=True)
        cls._ensure_editable(order)

        value = to_money(amount, field="amount")
        if value <= 0:
            raise InvalidQuantity(_("مبلغ الدفعة يجب أن يكون أكبر من صفر."))

        method = method or cls.payment_model.Method.CASH
        if method not in cls.payment_model.Method.values:
            raise InvalidQuantity(_("طريقة دفع غير صالحة: %(method)s") % {"method": method})

        payment = cls.payment_model.objects.create(
            order=order,
            amount=value,
            method=method,
            reference=reference or "",
            paid_at=paid_at or timezone.now(),
            received_by=actor_or_none(user),
        )
        order.recompute_totals()
        logger.info("%s: payment %s of %s recorded", order, payment.pk, value)
        return payment

    @classmethod
    @transaction.atomic
    def set_adjustments(cls, order, *, discount_total=None, tax_total=None, shipping_total=None, user=None):
        """Operator-supplied header adjustments; everything else is derived."""
        order = cls.get_order(order, for_update=True)
        cls._ensure_editable(order)

        values = {
            "discount_total": discount_total,
            "tax_total": tax_total,
            "shipping_total": shipping_total,
        }
        changed = []
        for name, value in values.items():
            if value is None:
                continue
            setattr(order, name, to_money(value, field=name))
            changed.append(name)

        if changed:
            order.save(update_fields=[*changed, *order.stamp_update(user)])
        order.recompute_totals()
        return order

    @classmethod
    @transaction.atomic
    def recompute(cls, order):
        """
        Rebuild header totals from items and payments.
        Raises InconsistentTotals when a stored item total drifted.
        """
        order = cls.get_order(order, for_update=True)
        order.recompute_totals()
        return order
