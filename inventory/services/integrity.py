# inventory/services/integrity.py
"""Read-only checks of the batch / branch-stock / movement-log invariants."""

from __future__ import annotations

from dataclasses import dataclass

from ..models import ProductBatch, ProductBranchBatchStock
from .movements import replay_branch_quantities


@dataclass(frozen=True)
class BatchViolation:
    batch_id: int
    batch_number: str
    kind: str
    detail: str

    def __str__(self) -> str:
        return f"[{self.kind}] batch {self.batch_number} (#{self.batch_id}): {self.detail}"


def check_batch(batch: ProductBatch) -> list[BatchViolation]:
    problems: list[BatchViolation] = []

    def add(kind: str, detail: str) -> None:
        problems.append(BatchViolation(batch.pk, batch.batch_number, kind, detail))

    if batch.quantity_remaining < 0:
        add("negative_remaining", f"remaining={batch.quantity_remaining}")
    if batch.quantity_remaining > batch.quantity_received:
        add("remaining_exceeds_received", f"remaining={batch.quantity_remaining} received={batch.quantity_received}")

    rows = {
        row.branch_id: row.quantity
        for row in ProductBranchBatchStock.objects.for_batch(batch)
    }
    allocated = sum(rows.values())
    if allocated > batch.quantity_remaining:
        add("allocation_exceeds_remaining", f"allocated={allocated} remaining={batch.quantity_remaining}")

    replayed = replay_branch_quantities(batch)
    for branch_id in sorted(set(rows) | set(replayed)):
        stored = rows.get(branch_id, 0)
        logged = replayed.get(branch_id, 0)
        if stored != logged:
            add("log_mismatch", f"branch #{branch_id}: stored={stored} log={logged}")

    return problems


def find_batch_violations(batch_ids=None) -> list[BatchViolation]:
    qs = ProductBatch.objects.order_by("id")
    if batch_ids:
        qs = qs.filter(pk__in=batch_ids)

    problems: list[BatchViolation] = []
    for batch in qs.iterator():
        problems.extend(check_batch(batch))
    return problems
