# inventory/services/branch_stock.py
"""
BranchStockStore: per-branch quantity of each batch.

Never touches ProductBatch counters; coordinators combine the two stores
inside one transaction and check allocation at the end.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from django.utils.translation import gettext as _

from core.exceptions import InsufficientStock, InvalidQuantity, NotFound
from core.utils import pk_of

from ..models import ProductBranchBatchStock
from .lookups import ensure_batch_belongs_to, get_batch, get_branch, get_product

logger = logging.getLogger(__name__)


# ============================================================
# Row access (locked)
# ============================================================

def get_or_create_branch_stock(*, product, branch, batch) -> ProductBranchBatchStock:
    """
    Select-for-update + get_or_create, starting at zero.
    Must run inside a transaction.
    """
    product = get_product(product)
    branch = get_branch(branch)
    batch = get_batch(batch)
    ensure_batch_belongs_to(batch, product)

    stock, created = ProductBranchBatchStock.objects.select_for_update().get_or_create(
        product=product,
        branch=branch,
        batch=batch,
        defaults={"quantity": 0},
    )
    if created:
        logger.debug("Opened branch stock row %s (%s @ %s)", stock.pk, batch.batch_number, branch.code)
    return stock


def get_branch_stock(*, product, branch, batch):
    return ProductBranchBatchStock.objects.filter(
        product_id=pk_of(product),
        branch_id=pk_of(branch),
        batch_id=pk_of(batch),
    ).first()


def available_quantity(*, product, branch, batch) -> int:
    stock = get_branch_stock(product=product, branch=branch, batch=batch)
    return stock.quantity if stock is not None else 0


# ============================================================
# Adjust
# ============================================================

@transaction.atomic
def adjust_branch_stock(
    stock=None,
    *,
    product=None,
    branch=None,
    batch=None,
    delta: int,
) -> ProductBranchBatchStock:
    """
    Apply `delta` to one branch row, addressed by `stock` (instance/id)
    or by the (product, branch, batch) key.

    Credits create the row if needed. Debits match only rows holding at
    least `-delta`; a missing row is never created by a debit.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidQuantity(_("قيمة التعديل يجب أن تكون عدداً صحيحاً."))

    if stock is not None:
        stock_id = pk_of(stock)
    elif delta > 0:
        stock_id = get_or_create_branch_stock(product=product, branch=branch, batch=batch).pk
    else:
        existing = get_branch_stock(product=product, branch=branch, batch=batch)
        if existing is None:
            get_product(product)
            get_branch(branch)
            ensure_batch_belongs_to(get_batch(batch), product)
            raise InsufficientStock(
                _("لا يوجد رصيد لهذه التشغيلة في الفرع المحدد.")
            )
        stock_id = existing.pk

    if delta == 0:
        return _get_stock(stock_id)

    qs = ProductBranchBatchStock.objects.filter(pk=stock_id)
    if delta < 0:
        qs = qs.filter(quantity__gte=-delta)

    updated = qs.update(quantity=F("quantity") + delta, updated_at=timezone.now())
    if not updated:
        current = _get_stock(stock_id)
        logger.warning(
            "Branch stock %s: debit %s rejected, holds %s",
            stock_id,
            -delta,
            current.quantity,
        )
        raise InsufficientStock(
            _("الرصيد المتوفر في الفرع %(branch)s للتشغيلة %(batch)s هو %(available)s فقط، المطلوب %(qty)s.")
            % {
                "branch": current.branch.code,
                "batch": current.batch.batch_number,
                "available": current.quantity,
                "qty": -delta,
            }
        )

    logger.debug("Branch stock %s adjusted by %s", stock_id, delta)
    return _get_stock(stock_id)


def _get_stock(stock_id) -> ProductBranchBatchStock:
    try:
        return ProductBranchBatchStock.objects.select_related("branch", "batch", "product").get(pk=stock_id)
    except ProductBranchBatchStock.DoesNotExist:
        raise NotFound(_("رصيد الفرع #%(id)s غير موجود.") % {"id": stock_id})


# ============================================================
# Listings (for pickers / reports)
# ============================================================

def list_branch_stock(branch):
    return (
        ProductBranchBatchStock.objects.for_branch(branch)
        .with_batch()
        .order_by("-created_at", "-id")
    )


def list_branch_stock_for_product(product, branch, *, only_available: bool = False):
    """Rows with batch details (number, dates, prices), newest first."""
    qs = (
        ProductBranchBatchStock.objects.for_branch(branch)
        .for_product(product)
        .with_batch()
        .order_by("-created_at", "-id")
    )
    if only_available:
        qs = qs.available()
    return qs


# ============================================================
# Product totals
# ============================================================

def total_stock_for_product(product) -> int:
    """Quantity of the product held across all branches and batches."""
    return ProductBranchBatchStock.objects.for_product(get_product(product)).total_quantity()


def branch_totals_for_product(product) -> list[dict]:
    """[{"branch_id", "branch__code", "branch__name", "stock"}], largest first."""
    return list(ProductBranchBatchStock.objects.for_product(get_product(product)).totals_by_branch())
