# inventory/services/lookups.py

from __future__ import annotations

from django.utils.translation import gettext as _

from core.exceptions import DuplicateBatchIdentity, NotFound
from core.utils import pk_of

from ..models import Branch, Product, ProductBatch


def get_product(product) -> Product:
    if isinstance(product, Product):
        return product
    try:
        return Product.objects.get(pk=product)
    except (Product.DoesNotExist, ValueError, TypeError):
        raise NotFound(_("المنتج #%(id)s غير موجود.") % {"id": product})


def get_branch(branch) -> Branch:
    if isinstance(branch, Branch):
        return branch
    try:
        return Branch.objects.get(pk=branch)
    except (Branch.DoesNotExist, ValueError, TypeError):
        raise NotFound(_("الفرع #%(id)s غير موجود.") % {"id": branch})


def get_batch(batch, *, for_update: bool = False) -> ProductBatch:
    """
    Fetch a fresh batch row by instance or id.
    Instances are re-read so callers never act on stale counters.
    """
    qs = ProductBatch.objects.select_related("product")
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=pk_of(batch))
    except (ProductBatch.DoesNotExist, ValueError, TypeError):
        raise NotFound(_("التشغيلة #%(id)s غير موجودة.") % {"id": pk_of(batch)})


def ensure_batch_belongs_to(batch: ProductBatch, product) -> None:
    product_id = pk_of(product)
    if batch.product_id != product_id:
        raise DuplicateBatchIdentity(
            _("التشغيلة %(batch)s تتبع منتجاً آخر وليس المنتج #%(product)s.")
            % {"batch": batch.batch_number, "product": product_id}
        )
