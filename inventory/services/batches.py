# inventory/services/batches.py
"""
BatchStore: network-wide counters of each (product, batch_number).

Every change to quantity_received / quantity_remaining is a single
conditional UPDATE with F() expressions, so two concurrent debits can
never both pass a stale "enough stock" check.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.translation import gettext as _

from core.exceptions import (
    DuplicateBatchIdentity,
    InsufficientStock,
    InvalidQuantity,
    InvalidState,
    InventoryError,
)
from core.models import AuditLog
from core.services.audit import log_event
from core.services.numbering import month_period, next_sequence_value
from core.utils import actor_or_none, normalize_quantity, pk_of, to_money

from ..models import InventorySettings, ProductBatch, ProductBranchBatchStock, StockMovement
from .lookups import get_batch, get_product

logger = logging.getLogger(__name__)


# ============================================================
# Input cleaning
# ============================================================

def _clean_pricing(pricing: Optional[Mapping[str, Any]]) -> dict[str, Decimal]:
    if not pricing:
        return {}
    unknown = set(pricing) - set(ProductBatch.PRICE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown pricing fields: {sorted(unknown)}")
    return {
        name: to_money(value, field=name)
        for name, value in pricing.items()
        if value is not None and value != ""
    }


def _with_price_defaults(prices: dict[str, Decimal]) -> dict[str, Decimal]:
    """
    purchase ← cost, trade ← purchase, mrp ← trade.
    Only used when a batch is first created.
    """
    zero = Decimal("0.000")
    cost = prices.get("cost_price") or zero
    purchase = prices.get("purchase_price") or cost
    trade = prices.get("trade_price") or purchase
    mrp = prices.get("mrp") or trade
    return {"cost_price": cost, "purchase_price": purchase, "trade_price": trade, "mrp": mrp}


def clean_batch_dates(dates: Optional[Mapping[str, Any]], *, keep_empty: bool = False) -> dict[str, Optional[date]]:
    """
    Parse manufacturing / expiry dates (date or ISO string).
    Empty values are dropped unless keep_empty, where they clear the field.
    """
    if not dates:
        return {}
    unknown = set(dates) - set(ProductBatch.DATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown date fields: {sorted(unknown)}")
    cleaned: dict[str, Optional[date]] = {}
    for name, value in dates.items():
        if value in (None, ""):
            if keep_empty:
                cleaned[name] = None
            continue
        if isinstance(value, str):
            try:
                value = date.fromisoformat(value)
            except ValueError:
                raise InventoryError(
                    _("تاريخ غير صالح للحقل %(field)s.") % {"field": name},
                    code="invalid_date",
                )
        cleaned[name] = value

    made, expires = cleaned.get("manufacturing_date"), cleaned.get("expiry_date")
    if made and expires and expires < made:
        raise InventoryError(_("تاريخ الانتهاء يسبق تاريخ الإنتاج."), code="invalid_date")
    return cleaned


def _clean_delta(delta: Any) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int):
        try:
            number = Decimal(str(delta))
        except (InvalidOperation, ValueError):
            raise InvalidQuantity(_("قيمة التعديل غير صالحة."))
        if not number.is_finite() or number != number.to_integral_value():
            raise InvalidQuantity(_("قيمة التعديل يجب أن تكون عدداً صحيحاً."))
        delta = int(number)
    return delta


# ============================================================
# Lookups
# ============================================================

def get_batch_by_number(product, batch_number: str) -> Optional[ProductBatch]:
    return (
        ProductBatch.objects.filter(product_id=pk_of(product), batch_number=(batch_number or "").strip())
        .select_related("product")
        .first()
    )


def list_active_batches(product):
    return ProductBatch.objects.for_product(product).active().order_by("-created_at", "-id")


# ============================================================
# Status policy helpers
# ============================================================

def _mark_consumed_if_empty(batch_id: int) -> None:
    if not InventorySettings.get_solo().mark_consumed_when_empty:
        return
    ProductBatch.objects.filter(
        pk=batch_id,
        quantity_remaining=0,
        status=ProductBatch.Status.ACTIVE,
    ).update(status=ProductBatch.Status.CONSUMED, updated_at=timezone.now())


def _reactivate_if_consumed(batch_id: int) -> None:
    ProductBatch.objects.filter(
        pk=batch_id,
        quantity_remaining__gt=0,
        status=ProductBatch.Status.CONSUMED,
    ).update(status=ProductBatch.Status.ACTIVE, updated_at=timezone.now())


def verify_batch_allocation(batch) -> ProductBatch:
    """
    Branch rows of a batch may never hold more than the batch has left.
    Call at the end of any transaction that changed either side.
    """
    batch = get_batch(batch)
    allocated = ProductBranchBatchStock.objects.for_batch(batch).total_quantity()
    if allocated > batch.quantity_remaining:
        logger.warning(
            "Batch %s allocation %s exceeds remaining %s",
            batch.pk,
            allocated,
            batch.quantity_remaining,
        )
        raise InsufficientStock(
            _("مجموع أرصدة الفروع (%(allocated)s) للتشغيلة %(batch)s يتجاوز الكمية المتبقية (%(remaining)s).")
            % {"allocated": allocated, "batch": batch.batch_number, "remaining": batch.quantity_remaining},
            code="allocation_exceeds_remaining",
        )
    return batch


# ============================================================
# Create / merge
# ============================================================

def _check_global_batch_number(product_id: int, batch_number: str) -> None:
    if not InventorySettings.get_solo().enforce_global_batch_numbers:
        return
    clash = (
        ProductBatch.objects.filter(batch_number=batch_number)
        .exclude(product_id=product_id)
        .exists()
    )
    if clash:
        raise DuplicateBatchIdentity(
            _("رقم التشغيلة %(number)s مستخدم لمنتج آخر.") % {"number": batch_number}
        )


def _merge_receipt(batch: ProductBatch, quantity: int, prices: dict[str, Decimal], user=None) -> ProductBatch:
    actor = actor_or_none(user)
    extra = {"updated_by": actor} if actor is not None else {}
    ProductBatch.objects.filter(pk=batch.pk).update(
        quantity_received=F("quantity_received") + quantity,
        quantity_remaining=F("quantity_remaining") + quantity,
        updated_at=timezone.now(),
        **prices,
        **extra,
    )
    _reactivate_if_consumed(batch.pk)
    batch.refresh_from_db()
    logger.debug("Merged %s into batch %s (%s)", quantity, batch.pk, batch.batch_number)
    return batch


@transaction.atomic
def create_or_merge_batch(
    *,
    product,
    batch_number: str,
    quantity,
    pricing: Optional[Mapping[str, Any]] = None,
    dates: Optional[Mapping[str, Any]] = None,
    supplier_batch_number: str = "",
    request_key: Optional[str] = None,
    user=None,
) -> ProductBatch:
    """
    Receive `quantity` of (product, batch_number).

    An existing batch is merged (both counters grow, provided prices are
    overwritten); otherwise a new active batch is created with price
    defaults cascading from the cost price.

    A batch number already used by another product raises
    DuplicateBatchIdentity while InventorySettings.enforce_global_batch_numbers
    is on (the default). Turning it off scopes numbers per product.

    Without `request_key` a retried call is applied twice. With a key,
    a receipt already logged under it (StockMovement.request_key) is
    not re-applied and the batch is returned unchanged.
    """
    product = get_product(product)
    qty = normalize_quantity(quantity)
    batch_number = (batch_number or "").strip()
    if not batch_number:
        raise InventoryError(_("رقم التشغيلة مطلوب."), code="batch_number_required")

    prices = _clean_pricing(pricing)
    clean_dates = clean_batch_dates(dates)

    if request_key and StockMovement.objects.filter(request_key=request_key).exists():
        existing = get_batch_by_number(product, batch_number)
        if existing is not None:
            logger.info("Receipt %s already applied to batch %s", request_key, existing.pk)
            return existing

    _check_global_batch_number(product.pk, batch_number)

    batch = (
        ProductBatch.objects.select_for_update()
        .filter(product=product, batch_number=batch_number)
        .first()
    )
    if batch is not None:
        return _merge_receipt(batch, qty, prices, user=user)

    try:
        with transaction.atomic():
            batch = ProductBatch.objects.create(
                product=product,
                batch_number=batch_number,
                supplier_batch_number=supplier_batch_number or "",
                quantity_received=qty,
                quantity_remaining=qty,
                status=ProductBatch.Status.ACTIVE,
                created_by=actor_or_none(user),
                **clean_dates,
                **_with_price_defaults(prices),
            )
    except IntegrityError:
        # lost the race against a concurrent insert of the same identity
        batch = ProductBatch.objects.select_for_update().get(product=product, batch_number=batch_number)
        return _merge_receipt(batch, qty, prices, user=user)

    logger.info("Created batch %s (%s) for product %s with %s", batch.pk, batch_number, product.code, qty)
    return batch


# ============================================================
# Quantity changes
# ============================================================

@transaction.atomic
def adjust_quantity(batch, delta, *, pricing: Optional[Mapping[str, Any]] = None, user=None) -> ProductBatch:
    """
    Apply `delta` to both quantity_received and quantity_remaining.

    Used for corrections and for reversing purchase items. A negative
    delta only applies when neither counter would go below zero, and the
    branch allocation must still fit afterwards.
    """
    delta = _clean_delta(delta)
    prices = _clean_pricing(pricing)
    batch_id = pk_of(batch)

    if delta == 0 and not prices:
        return get_batch(batch_id)

    qs = ProductBatch.objects.filter(pk=batch_id)
    if delta < 0:
        qs = qs.filter(quantity_remaining__gte=-delta)

    actor = actor_or_none(user)
    extra = {"updated_by": actor} if actor is not None else {}
    updated = qs.update(
        quantity_received=F("quantity_received") + delta,
        quantity_remaining=F("quantity_remaining") + delta,
        updated_at=timezone.now(),
        **prices,
        **extra,
    )
    if not updated:
        current = get_batch(batch_id)  # raises NotFound
        raise InsufficientStock(
            _("لا يمكن خصم %(qty)s من التشغيلة %(batch)s، المتبقي %(remaining)s فقط.")
            % {"qty": -delta, "batch": current.batch_number, "remaining": current.quantity_remaining},
            code="negative_quantity",
        )

    if delta < 0:
        _mark_consumed_if_empty(batch_id)
        verify_batch_allocation(batch_id)
    elif delta > 0:
        _reactivate_if_consumed(batch_id)

    logger.debug("Adjusted batch %s by %s", batch_id, delta)
    return get_batch(batch_id)


@transaction.atomic
def consume_quantity(batch, quantity) -> ProductBatch:
    """Decrease quantity_remaining only (a sale)."""
    qty = normalize_quantity(quantity)
    batch_id = pk_of(batch)

    updated = ProductBatch.objects.filter(pk=batch_id, quantity_remaining__gte=qty).update(
        quantity_remaining=F("quantity_remaining") - qty,
        updated_at=timezone.now(),
    )
    if not updated:
        current = get_batch(batch_id)
        logger.warning("Batch %s: consume %s rejected, remaining %s", batch_id, qty, current.quantity_remaining)
        raise InsufficientStock(
            _("الكمية المتبقية من التشغيلة %(batch)s (%(remaining)s) أقل من المطلوب (%(qty)s).")
            % {"batch": current.batch_number, "remaining": current.quantity_remaining, "qty": qty}
        )

    _mark_consumed_if_empty(batch_id)
    verify_batch_allocation(batch_id)
    return get_batch(batch_id)


@transaction.atomic
def restore_quantity(batch, quantity) -> ProductBatch:
    """Give back a previous consumption; remaining never exceeds received."""
    qty = normalize_quantity(quantity)
    batch_id = pk_of(batch)

    updated = ProductBatch.objects.filter(
        pk=batch_id,
        quantity_remaining__lte=F("quantity_received") - qty,
    ).update(
        quantity_remaining=F("quantity_remaining") + qty,
        updated_at=timezone.now(),
    )
    if not updated:
        current = get_batch(batch_id)
        raise InvalidQuantity(
            _("إرجاع %(qty)s إلى التشغيلة %(batch)s يتجاوز الكمية المستلمة.")
            % {"qty": qty, "batch": current.batch_number}
        )

    _reactivate_if_consumed(batch_id)
    return get_batch(batch_id)


@transaction.atomic
def set_status(batch, status: str, *, user=None) -> ProductBatch:
    if status not in ProductBatch.Status.values:
        raise InvalidState(_("حالة التشغيلة غير صالحة: %(status)s") % {"status": status})

    batch = get_batch(batch, for_update=True)
    old_status = batch.status
    if old_status == status:
        return batch

    batch.status = status
    batch.save(update_fields=["status", *batch.stamp_update(user)])

    log_event(
        action=AuditLog.Action.STATUS_CHANGE,
        message=f"Batch {batch.batch_number}: {old_status} → {status}",
        actor=user,
        target=batch,
        extra={"old_status": old_status, "new_status": status, "product": batch.product.code},
    )
    logger.info("Batch %s status %s → %s", batch.pk, old_status, status)
    return batch


BATCH_DETAIL_FIELDS = ("batch_number", "supplier_batch_number", *ProductBatch.DATE_FIELDS, *ProductBatch.PRICE_FIELDS)


@transaction.atomic
def update_batch_details(batch, *, user=None, **fields) -> ProductBatch:
    """
    Edit descriptive fields of a batch: number, supplier number, dates
    and prices. Quantities and status have their own operations.
    """
    unknown = set(fields) - set(BATCH_DETAIL_FIELDS)
    if unknown:
        raise ValueError(f"Unknown batch fields: {sorted(unknown)}")

    batch = get_batch(batch, for_update=True)
    changes: dict[str, Any] = {}

    if "batch_number" in fields:
        number = (fields["batch_number"] or "").strip()
        if not number:
            raise InventoryError(_("رقم التشغيلة مطلوب."), code="batch_number_required")
        if number != batch.batch_number:
            taken = (
                ProductBatch.objects.filter(product_id=batch.product_id, batch_number=number)
                .exclude(pk=batch.pk)
                .exists()
            )
            if taken:
                raise DuplicateBatchIdentity(
                    _("رقم التشغيلة %(number)s مستخدم لهذا المنتج.") % {"number": number}
                )
            _check_global_batch_number(batch.product_id, number)
            changes["batch_number"] = number

    if "supplier_batch_number" in fields:
        changes["supplier_batch_number"] = (fields["supplier_batch_number"] or "").strip()

    dates = {name: fields[name] for name in ProductBatch.DATE_FIELDS if name in fields}
    changes.update(clean_batch_dates(dates, keep_empty=True))
    merged_made = changes.get("manufacturing_date", batch.manufacturing_date)
    merged_expiry = changes.get("expiry_date", batch.expiry_date)
    if merged_made and merged_expiry and merged_expiry < merged_made:
        raise InventoryError(_("تاريخ الانتهاء يسبق تاريخ الإنتاج."), code="invalid_date")

    changes.update(_clean_pricing({name: fields[name] for name in ProductBatch.PRICE_FIELDS if name in fields}))

    changes = {name: value for name, value in changes.items() if getattr(batch, name) != value}
    if not changes:
        return batch

    before = {name: getattr(batch, name) for name in changes}
    for name, value in changes.items():
        setattr(batch, name, value)
    batch.save(update_fields=[*changes, *batch.stamp_update(user)])

    log_event(
        action=AuditLog.Action.UPDATE,
        message=f"Batch {batch.batch_number} details updated",
        actor=user,
        target=batch,
        extra={"before": before, "after": changes},
    )
    logger.info("Batch %s details updated: %s", batch.pk, sorted(changes))
    return batch


# ============================================================
# Numbering
# ============================================================

def generate_batch_number(product, *, now=None) -> str:
    """
    <first 3 chars of product code><YY><MM><3-digit sequence>, e.g. "PAR2610004".
    Numbers already used by the product are skipped.
    """
    product = get_product(product)
    prefix = (product.code or "")[:3].upper() or InventorySettings.get_solo().batch_number_fallback_prefix.upper()
    period = month_period(now)
    key = f"{ProductBatch._meta.label}:{product.pk}"

    while True:
        seq = next_sequence_value(key=key, period=period)
        candidate = f"{prefix}{period}{seq:03d}"
        if not ProductBatch.objects.filter(product=product, batch_number=candidate).exists():
            return candidate
