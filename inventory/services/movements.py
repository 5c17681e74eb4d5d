# inventory/services/movements.py
"""StockMovementLog: append-only record of every branch-level quantity change."""

from __future__ import annotations

from collections import defaultdict
from typing import Optional

from django.db.models import Sum

from core.utils import actor_or_none, normalize_quantity, pk_of

from ..models import StockMovement


def record_movement(
    *,
    product,
    batch,
    branch,
    quantity,
    reason: str,
    direction: Optional[str] = None,
    transfer=None,
    reference: str = "",
    request_key: Optional[str] = None,
    user=None,
) -> StockMovement:
    """
    Append one movement. `direction` defaults from the reason and must
    agree with it when given.
    """
    expected = StockMovement.REASON_TO_DIRECTION.get(reason)
    if expected is None:
        raise ValueError(f"Unknown movement reason '{reason}'")
    if direction is not None and direction != expected:
        raise ValueError(f"Reason '{reason}' implies direction '{expected}', got '{direction}'")

    return StockMovement.objects.create(
        product_id=pk_of(product),
        batch_id=pk_of(batch),
        branch_id=pk_of(branch),
        direction=expected,
        quantity=normalize_quantity(quantity),
        reason=reason,
        transfer_id=pk_of(transfer) if transfer is not None else None,
        reference=reference or "",
        request_key=request_key or None,
        created_by=actor_or_none(user),
    )


def list_movements_for_branch(branch, limit: int = 100):
    return (
        StockMovement.objects.for_branch(branch)
        .select_related("product", "batch", "transfer")
        .newest_first()[:limit]
    )


def list_movements_for_batch(batch):
    return StockMovement.objects.for_batch(batch).select_related("branch").newest_first()


def replay_branch_quantities(batch) -> dict[int, int]:
    """
    Rebuild {branch_id: quantity} for a batch from the log alone.
    """
    result: dict[int, int] = defaultdict(int)
    rows = (
        StockMovement.objects.for_batch(batch)
        .order_by()
        .values("branch_id", "direction")
        .annotate(total=Sum("quantity"))
    )
    for row in rows:
        sign = 1 if row["direction"] == StockMovement.Direction.IN else -1
        result[row["branch_id"]] += sign * row["total"]
    return dict(result)
