# sales/services.py

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from django.utils.translation import gettext as _

from core.exceptions import InvalidState, NotFound
from core.services.orders import BaseOrderService
from core.utils import pk_of
from inventory.models import ProductBatch, StockMovement
from inventory.services.batches import consume_quantity, get_batch_by_number, restore_quantity, verify_batch_allocation
from inventory.services.branch_stock import adjust_branch_stock
from inventory.services.lookups import ensure_batch_belongs_to, get_batch
from inventory.services.movements import record_movement

from .models import SalesOrder, SalesOrderItem, SalesPayment

logger = logging.getLogger(__name__)

UNSELLABLE_STATUSES = (ProductBatch.Status.EXPIRED, ProductBatch.Status.RECALLED)


class SalesService(BaseOrderService):
    """
    خدمة أوامر البيع: كل بند مرتبط بتشغيلة يخصم من رصيد فرع الأمر
    ومن الكمية المتبقية للتشغيلة في نفس المعاملة.
    """

    order_model = SalesOrder
    item_model = SalesOrderItem
    payment_model = SalesPayment
    reference_prefix = "SO"

    extra_order_fields = ("customer_name", "customer_phone")
    extra_item_update_fields = ("batch", "batch_number")

    # ============================================================
    # Stock primitives
    # ============================================================
    @staticmethod
    def _ensure_sellable(batch) -> ProductBatch:
        batch = get_batch(batch)
        if batch.status in UNSELLABLE_STATUSES:
            raise InvalidState(
                _("لا يمكن البيع من التشغيلة %(number)s بحالة %(status)s.")
                % {"number": batch.batch_number, "status": batch.get_status_display()}
            )
        return batch

    @classmethod
    def _issue(cls, item, batch_id: int, quantity: int, *, user=None) -> None:
        """Branch first, then batch: allocation stays within remaining."""
        # every debit path (add, edit, post) checks the batch's current status
        cls._ensure_sellable(batch_id)
        branch_id = item.order.branch_id
        adjust_branch_stock(product=item.product_id, branch=branch_id, batch=batch_id, delta=-quantity)
        consume_quantity(batch_id, quantity)
        record_movement(
            product=item.product_id,
            batch=batch_id,
            branch=branch_id,
            quantity=quantity,
            reason=StockMovement.Reason.SALE,
            reference=cls.reference_for(item),
            user=user,
        )

    @classmethod
    def _return(cls, item, batch_id: int, quantity: int, *, user=None) -> None:
        """Batch first, then branch (mirror of _issue)."""
        branch_id = item.order.branch_id
        restore_quantity(batch_id, quantity)
        adjust_branch_stock(product=item.product_id, branch=branch_id, batch=batch_id, delta=quantity)
        verify_batch_allocation(batch_id)
        record_movement(
            product=item.product_id,
            batch=batch_id,
            branch=branch_id,
            quantity=quantity,
            reason=StockMovement.Reason.SALE_REVERSAL,
            reference=cls.reference_for(item),
            user=user,
        )

    @classmethod
    def _resolve_batch(cls, product, raw: Mapping[str, Any]) -> Optional[ProductBatch]:
        """
        A sold batch is given either as `batch` (instance / id) or as
        `batch_number` of the item's product. Neither means non-tracked.
        """
        if raw.get("batch") is not None:
            batch = get_batch(raw["batch"])
            ensure_batch_belongs_to(batch, product)
        elif raw.get("batch_number"):
            batch = get_batch_by_number(product, raw["batch_number"])
            if batch is None:
                raise NotFound(
                    _("التشغيلة %(number)s غير موجودة لهذا المنتج.") % {"number": raw["batch_number"]}
                )
        else:
            return None

        return cls._ensure_sellable(batch)

    # ============================================================
    # Hooks
    # ============================================================
    @classmethod
    def _prepare_extra(cls, order, product, raw: Mapping[str, Any]) -> dict[str, Any]:
        return {"batch": cls._resolve_batch(product, raw)}

    @classmethod
    def _apply_item(cls, item, raw: Mapping[str, Any], user=None) -> None:
        if item.batch_id:
            cls._issue(item, item.batch_id, item.quantity, user=user)

    @classmethod
    def _clean_extra_updates(cls, item, updates: Mapping[str, Any]) -> dict[str, Any]:
        if "batch" not in updates and "batch_number" not in updates:
            return {}
        return {"batch": cls._resolve_batch(item.product_id, updates)}

    @classmethod
    def _reconcile_item(cls, item, new_fields: dict[str, Any], user=None) -> None:
        new_qty = new_fields.get("quantity", item.quantity)
        if "batch" in new_fields:
            new_batch_id = pk_of(new_fields["batch"]) if new_fields["batch"] is not None else None
        else:
            new_batch_id = item.batch_id

        if new_batch_id != item.batch_id:
            logger.debug("Item %s: batch %s → %s", item.pk, item.batch_id, new_batch_id)
            if item.batch_id:
                cls._return(item, item.batch_id, item.quantity, user=user)
            if new_batch_id:
                cls._issue(item, new_batch_id, new_qty, user=user)
            return

        if not item.batch_id or new_qty == item.quantity:
            return

        diff = new_qty - item.quantity
        if diff > 0:
            cls._issue(item, item.batch_id, diff, user=user)
        else:
            cls._return(item, item.batch_id, -diff, user=user)

    @classmethod
    def _reverse_item(cls, item, user=None) -> None:
        if item.batch_id:
            cls._return(item, item.batch_id, item.quantity, user=user)
