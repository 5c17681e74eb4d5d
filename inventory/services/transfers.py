# inventory/services/transfers.py
"""
TransferCoordinator: move batch quantities between branches.

Only branch rows change; a transfer never touches ProductBatch counters,
so network-wide remaining quantity is unaffected.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Iterable, Mapping, Optional

from django.db import transaction
from django.utils import timezone
from django.utils.translation import gettext as _

from core.exceptions import InsufficientStock, InvalidQuantity, InvalidState, NotFound
from core.models import AuditLog
from core.services.audit import log_event
from core.services.retry import retry_on_conflict
from core.utils import actor_or_none, normalize_quantity, pk_of

from ..models import BranchTransfer, BranchTransferItem, ProductBranchBatchStock, StockMovement
from .branch_stock import adjust_branch_stock
from .lookups import ensure_batch_belongs_to, get_batch, get_branch
from .movements import record_movement

logger = logging.getLogger(__name__)


# ============================================================
# Helpers
# ============================================================

def _clean_items(items: Iterable[Mapping[str, Any]]) -> list[tuple[int, Any, int]]:
    """
    Validate every line up front: no line is silently skipped.
    Returns (product_id, batch, quantity) tuples.
    """
    lines = []
    for index, raw in enumerate(items or [], start=1):
        if raw.get("batch") is None:
            raise InvalidQuantity(_("البند %(n)s: التشغيلة مطلوبة.") % {"n": index})
        batch = get_batch(raw["batch"])
        product = raw.get("product")
        if product is not None:
            ensure_batch_belongs_to(batch, product)
        qty = normalize_quantity(raw.get("quantity"))
        lines.append((batch.product_id, batch, qty))

    if not lines:
        raise InvalidQuantity(_("يجب إضافة بند واحد على الأقل للتحويل."))
    return lines


def _check_source_availability(branch, lines) -> None:
    required: dict[int, int] = defaultdict(int)
    numbers: dict[int, str] = {}
    for _product_id, batch, qty in lines:
        required[batch.pk] += qty
        numbers[batch.pk] = batch.batch_number

    # lock in a fixed order so concurrent transfers cannot deadlock
    for batch_id in sorted(required):
        stock = (
            ProductBranchBatchStock.objects.select_for_update()
            .filter(branch=branch, batch_id=batch_id)
            .first()
        )
        available = stock.quantity if stock is not None else 0
        if available < required[batch_id]:
            logger.warning(
                "Transfer rejected: branch %s holds %s of batch %s, needs %s",
                branch.code,
                available,
                batch_id,
                required[batch_id],
            )
            raise InsufficientStock(
                _("الرصيد في الفرع %(branch)s للتشغيلة %(batch)s هو %(available)s، المطلوب %(qty)s.")
                % {
                    "branch": branch.code,
                    "batch": numbers[batch_id],
                    "available": available,
                    "qty": required[batch_id],
                }
            )


def _apply_transfer(transfer: BranchTransfer, *, factor: int, user=None) -> None:
    """
    factor = +1: from_branch → to_branch (completion)
    factor = -1: to_branch → from_branch (cancellation)
    """
    if factor > 0:
        source, destination = transfer.from_branch, transfer.to_branch
        reference = f"TRF-{transfer.pk}"
    else:
        source, destination = transfer.to_branch, transfer.from_branch
        reference = f"TRF-{transfer.pk}/cancel"

    for item in transfer.items.order_by("batch_id", "id"):
        adjust_branch_stock(product=item.product_id, branch=source, batch=item.batch_id, delta=-item.quantity)
        adjust_branch_stock(product=item.product_id, branch=destination, batch=item.batch_id, delta=item.quantity)

        common = {
            "product": item.product_id,
            "batch": item.batch_id,
            "quantity": item.quantity,
            "transfer": transfer,
            "reference": reference,
            "user": user,
        }
        record_movement(branch=source, reason=StockMovement.Reason.TRANSFER_OUT, **common)
        record_movement(branch=destination, reason=StockMovement.Reason.TRANSFER_IN, **common)


def _transfer_audit_extra(transfer: BranchTransfer) -> dict[str, Any]:
    return {
        "from_branch": transfer.from_branch.code,
        "to_branch": transfer.to_branch.code,
        "status": str(transfer.status),
        "items": [
            {"batch": item.batch.batch_number, "quantity": item.quantity}
            for item in transfer.items.select_related("batch")
        ],
    }


# ============================================================
# Public API
# ============================================================

@retry_on_conflict
@transaction.atomic
def create_transfer(
    *,
    from_branch,
    to_branch,
    items: Iterable[Mapping[str, Any]],
    note: str = "",
    user=None,
) -> BranchTransfer:
    """
    Move quantities of specific batches from one branch to another.

    items: [{"batch": <ProductBatch|id>, "quantity": int, "product": optional}]

    All-or-nothing: on any failure no branch row changes and no transfer
    row is kept.
    """
    from_branch = get_branch(from_branch)
    to_branch = get_branch(to_branch)
    if from_branch.pk == to_branch.pk:
        raise InvalidState(_("لا يمكن التحويل إلى نفس الفرع."))

    lines = _clean_items(items)
    _check_source_availability(from_branch, lines)

    transfer = BranchTransfer.objects.create(
        from_branch=from_branch,
        to_branch=to_branch,
        note=note or "",
        status=BranchTransfer.Status.PENDING,
        created_by=actor_or_none(user),
    )
    BranchTransferItem.objects.bulk_create(
        [
            BranchTransferItem(transfer=transfer, product_id=product_id, batch=batch, quantity=qty)
            for product_id, batch, qty in lines
        ]
    )

    _apply_transfer(transfer, factor=1, user=user)

    transfer.status = BranchTransfer.Status.COMPLETED
    transfer.completed_at = timezone.now()
    transfer.save(update_fields=["status", "completed_at", *transfer.stamp_update(user)])

    log_event(
        action=AuditLog.Action.STOCK,
        message=f"Transfer {transfer.pk}: {from_branch.code} → {to_branch.code}",
        actor=user,
        target=transfer,
        extra=_transfer_audit_extra(transfer),
    )
    logger.info("Transfer %s completed (%s → %s, %s lines)", transfer.pk, from_branch.code, to_branch.code, len(lines))
    return transfer


@retry_on_conflict
@transaction.atomic
def cancel_transfer(transfer, *, user=None) -> BranchTransfer:
    """
    Reverse a completed transfer. Fails with InsufficientStock when the
    destination no longer holds the transferred quantity.
    """
    transfer = get_transfer(transfer, for_update=True)
    if transfer.status != BranchTransfer.Status.COMPLETED:
        raise InvalidState(_("يمكن إلغاء التحويلات المكتملة فقط."))

    _apply_transfer(transfer, factor=-1, user=user)

    transfer.status = BranchTransfer.Status.CANCELLED
    transfer.cancelled_at = timezone.now()
    transfer.save(update_fields=["status", "cancelled_at", *transfer.stamp_update(user)])

    log_event(
        action=AuditLog.Action.STATUS_CHANGE,
        message=f"Transfer {transfer.pk} cancelled",
        actor=user,
        target=transfer,
        extra=_transfer_audit_extra(transfer),
    )
    logger.info("Transfer %s cancelled", transfer.pk)
    return transfer


def get_transfer(transfer, *, for_update: bool = False) -> BranchTransfer:
    qs = BranchTransfer.objects.select_related("from_branch", "to_branch")
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=pk_of(transfer))
    except (BranchTransfer.DoesNotExist, ValueError, TypeError):
        raise NotFound(_("التحويل #%(id)s غير موجود.") % {"id": pk_of(transfer)})


def get_transfer_items(transfer):
    return BranchTransferItem.objects.for_transfer(transfer).select_related("product", "batch")


def list_transfers(*, branch=None, status: Optional[str] = None):
    qs = BranchTransfer.objects.select_related("from_branch", "to_branch")
    if branch is not None:
        qs = qs.for_branch(branch)
    if status:
        qs = qs.with_status(status)
    return qs.order_by("-created_at", "-id")
