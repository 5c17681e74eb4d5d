# inventory/managers.py
from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.db.models import Q, Sum
from django.db.models.functions import Coalesce

if TYPE_CHECKING:
    from .models import (
        Branch,
        BranchTransfer,
        BranchTransferItem,
        Product,
        ProductBatch,
        ProductBranchBatchStock,
        StockMovement,
    )


def _pk(obj):
    return obj.pk if hasattr(obj, "pk") else obj


# ============================================================
# Branch / Product
# ============================================================
class BranchQuerySet(models.QuerySet["Branch"]):
    def active(self) -> "BranchQuerySet":
        return self.filter(is_active=True)


class BranchManager(models.Manager.from_queryset(BranchQuerySet)):  # type: ignore[misc]
    pass


class ProductQuerySet(models.QuerySet["Product"]):
    def active(self) -> "ProductQuerySet":
        return self.filter(is_active=True)

    def search(self, query: str | None) -> "ProductQuerySet":
        if not query:
            return self
        return self.filter(Q(code__icontains=query) | Q(name__icontains=query))


class ProductManager(models.Manager.from_queryset(ProductQuerySet)):  # type: ignore[misc]
    pass


# ============================================================
# ProductBatch
# ============================================================
class ProductBatchQuerySet(models.QuerySet["ProductBatch"]):
    def for_product(self, product) -> "ProductBatchQuerySet":
        return self.filter(product_id=_pk(product))

    def active(self) -> "ProductBatchQuerySet":
        return self.filter(status=self.model.Status.ACTIVE)

    def with_remaining(self) -> "ProductBatchQuerySet":
        return self.filter(quantity_remaining__gt=0)

    def expiring_before(self, date) -> "ProductBatchQuerySet":
        return self.filter(expiry_date__isnull=False, expiry_date__lt=date)

    def with_allocated(self) -> "ProductBatchQuerySet":
        """Annotate `allocated`: sum of branch stock rows for each batch."""
        return self.annotate(allocated=Coalesce(Sum("branch_stocks__quantity"), 0))


class ProductBatchManager(models.Manager.from_queryset(ProductBatchQuerySet)):  # type: ignore[misc]
    pass


# ============================================================
# ProductBranchBatchStock
# ============================================================
class BranchStockQuerySet(models.QuerySet["ProductBranchBatchStock"]):
    def for_branch(self, branch) -> "BranchStockQuerySet":
        return self.filter(branch_id=_pk(branch))

    def for_product(self, product) -> "BranchStockQuerySet":
        return self.filter(product_id=_pk(product))

    def for_batch(self, batch) -> "BranchStockQuerySet":
        return self.filter(batch_id=_pk(batch))

    def available(self) -> "BranchStockQuerySet":
        return self.filter(quantity__gt=0)

    def with_batch(self) -> "BranchStockQuerySet":
        return self.select_related("batch", "product", "branch")

    def total_quantity(self) -> int:
        return self.aggregate(t=Coalesce(Sum("quantity"), 0))["t"]

    def totals_by_branch(self):
        """One row per branch: branch_id, branch__code, branch__name, stock."""
        return (
            self.values("branch_id", "branch__code", "branch__name")
            .annotate(stock=Coalesce(Sum("quantity"), 0))
            .order_by("-stock", "branch__code")
        )


class BranchStockManager(models.Manager.from_queryset(BranchStockQuerySet)):  # type: ignore[misc]
    pass


# ============================================================
# StockMovement
# ============================================================
class StockMovementQuerySet(models.QuerySet["StockMovement"]):
    def for_branch(self, branch) -> "StockMovementQuerySet":
        return self.filter(branch_id=_pk(branch))

    def for_batch(self, batch) -> "StockMovementQuerySet":
        return self.filter(batch_id=_pk(batch))

    def for_product(self, product) -> "StockMovementQuerySet":
        return self.filter(product_id=_pk(product))

    def incoming(self) -> "StockMovementQuerySet":
        return self.filter(direction=self.model.Direction.IN)

    def outgoing(self) -> "StockMovementQuerySet":
        return self.filter(direction=self.model.Direction.OUT)

    def newest_first(self) -> "StockMovementQuerySet":
        return self.order_by("-created_at", "-id")


class StockMovementManager(models.Manager.from_queryset(StockMovementQuerySet)):  # type: ignore[misc]
    pass


# ============================================================
# BranchTransfer
# ============================================================
class BranchTransferQuerySet(models.QuerySet["BranchTransfer"]):
    def for_branch(self, branch) -> "BranchTransferQuerySet":
        branch_id = _pk(branch)
        return self.filter(Q(from_branch_id=branch_id) | Q(to_branch_id=branch_id))

    def with_status(self, status) -> "BranchTransferQuerySet":
        return self.filter(status=status)

    def completed(self) -> "BranchTransferQuerySet":
        return self.filter(status=self.model.Status.COMPLETED)

    def with_items(self) -> "BranchTransferQuerySet":
        return self.select_related("from_branch", "to_branch").prefetch_related("items__batch", "items__product")


class BranchTransferManager(models.Manager.from_queryset(BranchTransferQuerySet)):  # type: ignore[misc]
    pass


class BranchTransferItemQuerySet(models.QuerySet["BranchTransferItem"]):
    def for_transfer(self, transfer) -> "BranchTransferItemQuerySet":
        return self.filter(transfer_id=_pk(transfer))


class BranchTransferItemManager(models.Manager.from_queryset(BranchTransferItemQuerySet)):  # type: ignore[misc]
    pass
