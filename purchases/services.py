# purchases/services.py

from __future__ import annotations

import logging
from typing import Any, Mapping

from core.services.orders import BaseOrderService
from core.utils import to_money
from inventory.models import StockMovement
from inventory.services.batches import (
    adjust_quantity,
    clean_batch_dates,
    create_or_merge_batch,
    verify_batch_allocation,
)
from inventory.services.branch_stock import adjust_branch_stock
from inventory.services.movements import record_movement

from .models import PurchaseOrder, PurchaseOrderItem, PurchasePayment

logger = logging.getLogger(__name__)


class PurchaseService(BaseOrderService):
    """
    Purchase orders: every tracked item (one with a batch number) is a
    receipt into the order's branch.
    """

    order_model = PurchaseOrder
    item_model = PurchaseOrderItem
    payment_model = PurchasePayment
    reference_prefix = "PO"

    extra_order_fields = ("supplier_name", "supplier_phone")
    extra_item_update_fields = ("batch_number",)

    # ============================================================
    # Stock primitives
    # ============================================================
    @classmethod
    def _receive(cls, item, batch, quantity: int, *, user=None, request_key=None) -> None:
        """Credit the order's branch with `quantity` of an already-credited batch."""
        branch_id = item.order.branch_id
        adjust_branch_stock(product=item.product_id, branch=branch_id, batch=batch, delta=quantity)
        verify_batch_allocation(batch)
        record_movement(
            product=item.product_id,
            batch=batch,
            branch=branch_id,
            quantity=quantity,
            reason=StockMovement.Reason.PURCHASE,
            reference=cls.reference_for(item),
            request_key=request_key,
            user=user,
        )

    @classmethod
    def _unreceive(cls, item, batch_id: int, quantity: int, *, user=None) -> None:
        """Branch first, then batch, so allocation never exceeds remaining."""
        branch_id = item.order.branch_id
        adjust_branch_stock(product=item.product_id, branch=branch_id, batch=batch_id, delta=-quantity)
        adjust_quantity(batch_id, -quantity, user=user)
        record_movement(
            product=item.product_id,
            batch=batch_id,
            branch=branch_id,
            quantity=quantity,
            reason=StockMovement.Reason.PURCHASE_REVERSAL,
            reference=cls.reference_for(item),
            user=user,
        )

    @classmethod
    def _receive_new_batch(cls, item, batch_number: str, quantity: int, *, user=None, request_key=None):
        """Merge into or create the batch from the item's receipt details, then credit the branch."""
        pricing = {
            "cost_price": item.unit_price,
            "purchase_price": item.unit_price,
            "trade_price": item.trade_price,
            "mrp": item.mrp,
        }
        dates = {
            "manufacturing_date": item.manufacturing_date,
            "expiry_date": item.expiry_date,
        }
        batch = create_or_merge_batch(
            product=item.product_id,
            batch_number=batch_number,
            quantity=quantity,
            pricing=pricing,
            dates=dates,
            supplier_batch_number=item.supplier_batch_number,
            request_key=request_key,
            user=user,
        )
        cls._receive(item, batch, quantity, user=user, request_key=request_key)
        return batch

    @classmethod
    def receipt_key(cls, item):
        """
        Movement key of an item's receipt. The item id is part of it, so a
        line deleted and added again under the same request key is a new receipt.
        """
        if not item.request_key:
            return None
        return f"{cls.reference_prefix}:{item.order_id}:{item.pk}:{item.request_key}"

    # ============================================================
    # Hooks
    # ============================================================
    @classmethod
    def _prepare_extra(cls, order, product, raw: Mapping[str, Any]) -> dict[str, Any]:
        extra: dict[str, Any] = {
            "batch_number": (raw.get("batch_number") or "").strip(),
            "supplier_batch_number": (raw.get("supplier_batch_number") or "").strip(),
        }
        extra.update(
            clean_batch_dates(
                {
                    "manufacturing_date": raw.get("manufacturing_date"),
                    "expiry_date": raw.get("expiry_date"),
                }
            )
        )
        for name in ("trade_price", "mrp"):
            value = raw.get(name)
            extra[name] = to_money(value, field=name) if value not in (None, "") else None
        return extra

    @classmethod
    def _apply_item(cls, item, raw: Mapping[str, Any], user=None) -> None:
        if not item.batch_number:
            return
        request_key = cls.receipt_key(item)
        if request_key and StockMovement.objects.filter(request_key=request_key).exists():
            logger.info("Item %s: receipt %s already applied", item.pk, request_key)
            return
        item.batch = cls._receive_new_batch(
            item,
            item.batch_number,
            item.quantity,
            user=user,
            request_key=request_key,
        )
        item.save(update_fields=["batch", "updated_at"])

    @classmethod
    def _clean_extra_updates(cls, item, updates: Mapping[str, Any]) -> dict[str, Any]:
        if "batch_number" not in updates:
            return {}
        return {"batch_number": (updates.get("batch_number") or "").strip()}

    @classmethod
    def _reconcile_item(cls, item, new_fields: dict[str, Any], user=None) -> None:
        new_qty = new_fields.get("quantity", item.quantity)
        new_number = new_fields.get("batch_number", item.batch_number)

        if new_number != item.batch_number:
            logger.debug("Item %s: batch %r → %r", item.pk, item.batch_number, new_number)
            if item.batch_id:
                cls._unreceive(item, item.batch_id, item.quantity, user=user)
            new_fields["batch"] = None
            if new_number:
                item.unit_price = new_fields.get("unit_price", item.unit_price)
                new_fields["batch"] = cls._receive_new_batch(item, new_number, new_qty, user=user)
            return

        if not item.batch_id or new_qty == item.quantity:
            return

        diff = new_qty - item.quantity
        if diff > 0:
            adjust_quantity(item.batch_id, diff, user=user)
            cls._receive(item, item.batch_id, diff, user=user)
        else:
            cls._unreceive(item, item.batch_id, -diff, user=user)

    @classmethod
    def _reverse_item(cls, item, user=None) -> None:
        if item.batch_id:
            cls._unreceive(item, item.batch_id, item.quantity, user=user)
