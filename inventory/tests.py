# inventory/tests.py

from datetime import date
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from core.exceptions import (
    DuplicateBatchIdentity,
    InsufficientStock,
    InvalidQuantity,
    InvalidState,
    InventoryError,
    NotFound,
)
from core.models import AuditLog
from core.services.audit import audit_trail

from .models import (
    Branch,
    BranchTransfer,
    InventorySettings,
    Product,
    ProductBatch,
    ProductBranchBatchStock,
    StockMovement,
)
from .services import batches, branch_stock, movements, transfers
from .services.integrity import find_batch_violations


class BaseInventoryTestCase(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="storekeeper", password="x")

        self.paracetamol = Product.objects.create(code="PARA500", name="Paracetamol 500")
        self.ibuprofen = Product.objects.create(code="IBU200", name="Ibuprofen 200")

        self.branch_x = Branch.objects.create(code="X", name="Branch X")
        self.branch_y = Branch.objects.create(code="Y", name="Branch Y")
        self.branch_z = Branch.objects.create(code="Z", name="Branch Z")

    # -------- helpers --------
    def receive(self, product, batch_number, quantity, branch, **kwargs):
        """Receipt the way purchase fulfillment does it: batch, branch row, log."""
        batch = batches.create_or_merge_batch(
            product=product,
            batch_number=batch_number,
            quantity=quantity,
            **kwargs,
        )
        branch_stock.adjust_branch_stock(product=product, branch=branch, batch=batch, delta=quantity)
        movements.record_movement(
            product=product,
            batch=batch,
            branch=branch,
            quantity=quantity,
            reason=StockMovement.Reason.PURCHASE,
        )
        return batch

    def held(self, branch, batch):
        return branch_stock.available_quantity(product=batch.product_id, branch=branch, batch=batch)

    def assertBatch(self, batch, *, received, remaining):
        batch.refresh_from_db()
        self.assertEqual(batch.quantity_received, received)
        self.assertEqual(batch.quantity_remaining, remaining)


# ============================================================
# BatchStore
# ============================================================
class BatchStoreTests(BaseInventoryTestCase):
    def test_create_new_batch_with_price_defaults(self):
        batch = batches.create_or_merge_batch(
            product=self.paracetamol,
            batch_number=" B1 ",
            quantity=100,
            pricing={"cost_price": "2.000"},
            dates={"expiry_date": "2027-01-31"},
        )

        self.assertEqual(batch.batch_number, "B1")
        self.assertEqual(batch.status, ProductBatch.Status.ACTIVE)
        self.assertBatch(batch, received=100, remaining=100)
        self.assertEqual(batch.purchase_price, Decimal("2.000"))
        self.assertEqual(batch.trade_price, Decimal("2.000"))
        self.assertEqual(batch.mrp, Decimal("2.000"))
        self.assertEqual(batch.expiry_date, date(2027, 1, 31))

    def test_second_receipt_merges_into_same_batch(self):
        first = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=40)
        second = batches.create_or_merge_batch(
            product=self.paracetamol,
            batch_number="B1",
            quantity=60,
            pricing={"mrp": "3.500"},
        )

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(ProductBatch.objects.filter(product=self.paracetamol).count(), 1)
        self.assertBatch(second, received=100, remaining=100)
        self.assertEqual(second.mrp, Decimal("3.500"))

    def test_same_number_for_other_product_is_rejected_by_default(self):
        batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=5)

        with self.assertRaises(DuplicateBatchIdentity):
            batches.create_or_merge_batch(product=self.ibuprofen, batch_number="B1", quantity=7)
        self.assertFalse(ProductBatch.objects.filter(product=self.ibuprofen).exists())

    def test_batch_numbers_can_be_scoped_per_product(self):
        config = InventorySettings.get_solo()
        config.enforce_global_batch_numbers = False
        config.save()

        a = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=5)
        b = batches.create_or_merge_batch(product=self.ibuprofen, batch_number="B1", quantity=7)

        self.assertNotEqual(a.pk, b.pk)
        self.assertBatch(b, received=7, remaining=7)

    def test_anonymous_user_is_not_stamped(self):
        anonymous = AnonymousUser()
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=5, user=anonymous)
        batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=5, user=anonymous)
        batches.adjust_quantity(batch, 2, user=anonymous)

        batch.refresh_from_db()
        self.assertIsNone(batch.created_by)
        self.assertIsNone(batch.updated_by)
        self.assertBatch(batch, received=12, remaining=12)

        batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=1, user=self.user)
        batch.refresh_from_db()
        self.assertEqual(batch.updated_by, self.user)

    def test_bad_dates_are_rejected(self):
        with self.assertRaises(InventoryError) as ctx:
            batches.create_or_merge_batch(
                product=self.paracetamol, batch_number="B1", quantity=1, dates={"expiry_date": "31/01/2027"}
            )
        self.assertEqual(ctx.exception.code, "invalid_date")
        with self.assertRaises(InventoryError):
            batches.create_or_merge_batch(
                product=self.paracetamol,
                batch_number="B1",
                quantity=1,
                dates={"manufacturing_date": "2027-01-01", "expiry_date": "2026-01-01"},
            )
        self.assertFalse(ProductBatch.objects.exists())

    def test_invalid_input_is_rejected(self):
        with self.assertRaises(InvalidQuantity):
            batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=0)
        with self.assertRaises(InvalidQuantity):
            batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity="2.5")
        with self.assertRaises(InventoryError):
            batches.create_or_merge_batch(product=self.paracetamol, batch_number="  ", quantity=1)
        with self.assertRaises(NotFound):
            batches.create_or_merge_batch(product=999999, batch_number="B1", quantity=1)
        self.assertFalse(ProductBatch.objects.exists())

    def test_request_key_prevents_double_receipt(self):
        batch = batches.create_or_merge_batch(
            product=self.paracetamol,
            batch_number="B1",
            quantity=10,
            request_key="receipt-1",
        )
        branch_stock.adjust_branch_stock(product=self.paracetamol, branch=self.branch_x, batch=batch, delta=10)
        movements.record_movement(
            product=self.paracetamol,
            batch=batch,
            branch=self.branch_x,
            quantity=10,
            reason=StockMovement.Reason.PURCHASE,
            request_key="receipt-1",
        )

        again = batches.create_or_merge_batch(
            product=self.paracetamol,
            batch_number="B1",
            quantity=10,
            request_key="receipt-1",
        )
        self.assertEqual(again.pk, batch.pk)
        self.assertBatch(again, received=10, remaining=10)

    def test_adjust_quantity_moves_both_counters(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=10)

        batches.adjust_quantity(batch, 5)
        self.assertBatch(batch, received=15, remaining=15)

        batches.adjust_quantity(batch, -3)
        self.assertBatch(batch, received=12, remaining=12)

    def test_adjust_quantity_rejects_negative_result(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=10)
        batches.consume_quantity(batch, 8)

        with self.assertRaises(InsufficientStock) as ctx:
            batches.adjust_quantity(batch, -5)
        self.assertEqual(ctx.exception.code, "negative_quantity")
        self.assertBatch(batch, received=10, remaining=2)

    def test_adjust_quantity_cannot_orphan_branch_stock(self):
        batch = self.receive(self.paracetamol, "B1", 10, self.branch_x)

        with self.assertRaises(InsufficientStock):
            batches.adjust_quantity(batch, -4)
        self.assertBatch(batch, received=10, remaining=10)

    def test_consume_and_restore(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=10)

        batches.consume_quantity(batch, 4)
        self.assertBatch(batch, received=10, remaining=6)

        with self.assertRaises(InsufficientStock):
            batches.consume_quantity(batch, 7)
        self.assertBatch(batch, received=10, remaining=6)

        batches.restore_quantity(batch, 4)
        self.assertBatch(batch, received=10, remaining=10)

        with self.assertRaises(InvalidQuantity):
            batches.restore_quantity(batch, 1)

    def test_empty_batch_is_marked_consumed_and_reactivated(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=3)

        batches.consume_quantity(batch, 3)
        batch.refresh_from_db()
        self.assertEqual(batch.status, ProductBatch.Status.CONSUMED)

        batches.restore_quantity(batch, 1)
        batch.refresh_from_db()
        self.assertEqual(batch.status, ProductBatch.Status.ACTIVE)

    def test_consumed_policy_can_be_disabled(self):
        config = InventorySettings.get_solo()
        config.mark_consumed_when_empty = False
        config.save()

        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=3)
        batches.consume_quantity(batch, 3)
        batch.refresh_from_db()
        self.assertEqual(batch.status, ProductBatch.Status.ACTIVE)

    def test_set_status_is_audited(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=3)

        batches.set_status(batch, ProductBatch.Status.RECALLED, user=self.user)

        batch.refresh_from_db()
        self.assertEqual(batch.status, ProductBatch.Status.RECALLED)
        log = audit_trail(batch).get()
        self.assertEqual(log.action, AuditLog.Action.STATUS_CHANGE)
        self.assertEqual(log.actor, self.user)
        self.assertEqual(log.extra["new_status"], ProductBatch.Status.RECALLED)

        with self.assertRaises(InvalidState):
            batches.set_status(batch, "lost")

    def test_update_batch_details(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=3)

        batches.update_batch_details(
            batch,
            user=self.user,
            batch_number="B1-A",
            supplier_batch_number="SUP-9",
            manufacturing_date="2026-01-01",
            expiry_date="2028-01-01",
            mrp="4.250",
        )

        batch.refresh_from_db()
        self.assertEqual(batch.batch_number, "B1-A")
        self.assertEqual(batch.supplier_batch_number, "SUP-9")
        self.assertEqual(batch.expiry_date, date(2028, 1, 1))
        self.assertEqual(batch.mrp, Decimal("4.250"))
        self.assertEqual(batch.updated_by, self.user)
        self.assertBatch(batch, received=3, remaining=3)
        log = audit_trail(batch, action=AuditLog.Action.UPDATE).get()
        self.assertEqual(log.extra["before"]["batch_number"], "B1")

        batches.update_batch_details(batch, expiry_date=None)
        batch.refresh_from_db()
        self.assertIsNone(batch.expiry_date)

    def test_update_batch_details_rejections(self):
        batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=3)
        batches.create_or_merge_batch(product=self.paracetamol, batch_number="B2", quantity=3)
        batches.create_or_merge_batch(product=self.ibuprofen, batch_number="I1", quantity=3)

        with self.assertRaises(DuplicateBatchIdentity):
            batches.update_batch_details(batch, batch_number="B2")
        with self.assertRaises(DuplicateBatchIdentity):
            batches.update_batch_details(batch, batch_number="I1")
        with self.assertRaises(InventoryError):
            batches.update_batch_details(batch, manufacturing_date="2030-01-01", expiry_date="2029-01-01")
        with self.assertRaises(ValueError):
            batches.update_batch_details(batch, quantity_remaining=1)

        batch.refresh_from_db()
        self.assertEqual(batch.batch_number, "B1")
        self.assertIsNone(batch.manufacturing_date)

    def test_lookups(self):
        b1 = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=3)
        b2 = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B2", quantity=3)
        batches.set_status(b1, ProductBatch.Status.EXPIRED)

        self.assertEqual(batches.get_batch_by_number(self.paracetamol, "B2"), b2)
        self.assertIsNone(batches.get_batch_by_number(self.ibuprofen, "B2"))
        self.assertEqual(list(batches.list_active_batches(self.paracetamol)), [b2])
        with self.assertRaises(NotFound):
            batches.get_batch(123456)

    def test_generate_batch_number(self):
        number = batches.generate_batch_number(self.paracetamol)

        self.assertRegex(number, r"^PAR\d{4}001$")
        batches.create_or_merge_batch(product=self.paracetamol, batch_number=number, quantity=1)
        self.assertTrue(batches.generate_batch_number(self.paracetamol).endswith("002"))

    def test_generate_batch_number_skips_taken_numbers(self):
        from core.services.numbering import month_period

        taken = f"IBU{month_period()}001"
        batches.create_or_merge_batch(product=self.ibuprofen, batch_number=taken, quantity=1)

        self.assertEqual(batches.generate_batch_number(self.ibuprofen), f"IBU{month_period()}002")


# ============================================================
# BranchStockStore
# ============================================================
class BranchStockTests(BaseInventoryTestCase):
    def setUp(self):
        super().setUp()
        self.batch = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B1", quantity=50)

    def test_credit_creates_row_and_debit_decrements(self):
        stock = branch_stock.adjust_branch_stock(
            product=self.paracetamol, branch=self.branch_x, batch=self.batch, delta=20
        )
        self.assertEqual(stock.quantity, 20)

        stock = branch_stock.adjust_branch_stock(stock, delta=-5)
        self.assertEqual(stock.quantity, 15)

    def test_debit_beyond_holding_is_rejected(self):
        branch_stock.adjust_branch_stock(product=self.paracetamol, branch=self.branch_x, batch=self.batch, delta=5)

        with self.assertRaises(InsufficientStock):
            branch_stock.adjust_branch_stock(
                product=self.paracetamol, branch=self.branch_x, batch=self.batch, delta=-6
            )
        self.assertEqual(self.held(self.branch_x, self.batch), 5)

    def test_debit_on_missing_row_never_creates_it(self):
        with self.assertRaises(InsufficientStock):
            branch_stock.adjust_branch_stock(
                product=self.paracetamol, branch=self.branch_y, batch=self.batch, delta=-1
            )
        self.assertFalse(ProductBranchBatchStock.objects.filter(branch=self.branch_y).exists())

    def test_rows_are_kept_at_zero(self):
        stock = branch_stock.adjust_branch_stock(
            product=self.paracetamol, branch=self.branch_x, batch=self.batch, delta=5
        )
        branch_stock.adjust_branch_stock(stock, delta=-5)

        stock.refresh_from_db()
        self.assertEqual(stock.quantity, 0)

    def test_batch_of_other_product_is_rejected(self):
        with self.assertRaises(DuplicateBatchIdentity):
            branch_stock.adjust_branch_stock(
                product=self.ibuprofen, branch=self.branch_x, batch=self.batch, delta=5
            )

    def test_listing_for_product_includes_batch_details(self):
        other = batches.create_or_merge_batch(product=self.paracetamol, batch_number="B2", quantity=5)
        branch_stock.adjust_branch_stock(product=self.paracetamol, branch=self.branch_x, batch=self.batch, delta=5)
        branch_stock.adjust_branch_stock(product=self.paracetamol, branch=self.branch_x, batch=other, delta=5)
        branch_stock.adjust_branch_stock(product=self.paracetamol, branch=self.branch_x, batch=other, delta=-5)

        rows = list(branch_stock.list_branch_stock_for_product(self.paracetamol, self.branch_x))
        self.assertEqual({row.batch.batch_number for row in rows}, {"B1", "B2"})

        available = list(
            branch_stock.list_branch_stock_for_product(self.paracetamol, self.branch_x, only_available=True)
        )
        self.assertEqual([row.batch_id for row in available], [self.batch.pk])
        self.assertEqual(branch_stock.list_branch_stock(self.branch_y).count(), 0)


# ============================================================
# Movement log
# ============================================================
class StockMovementTests(BaseInventoryTestCase):
    def test_movements_are_append_only(self):
        batch = self.receive(self.paracetamol, "B1", 10, self.branch_x)
        movement = StockMovement.objects.get(batch=batch)

        movement.quantity = 99
        with self.assertRaises(ValueError):
            movement.save()
        with self.assertRaises(ValueError):
            movement.delete()

    def test_direction_follows_reason(self):
        batch = self.receive(self.paracetamol, "B1", 10, self.branch_x)

        with self.assertRaises(ValueError):
            movements.record_movement(
                product=self.paracetamol,
                batch=batch,
                branch=self.branch_x,
                quantity=1,
                reason=StockMovement.Reason.SALE,
                direction=StockMovement.Direction.IN,
            )

    def test_replay_matches_branch_rows(self):
        batch = self.receive(self.paracetamol, "B1", 100, self.branch_x)
        transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": batch, "quantity": 40}],
        )

        self.assertEqual(
            movements.replay_branch_quantities(batch),
            {self.branch_x.pk: 60, self.branch_y.pk: 40},
        )
        history = list(movements.list_movements_for_branch(self.branch_x))
        self.assertEqual(history[0].reason, StockMovement.Reason.TRANSFER_OUT)
        self.assertEqual(movements.list_movements_for_batch(batch).count(), 3)


# ============================================================
# Transfers
# ============================================================
class TransferTests(BaseInventoryTestCase):
    def setUp(self):
        super().setUp()
        self.batch = self.receive(self.paracetamol, "B1", 100, self.branch_x)

    def test_transfer_moves_branch_stock_only(self):
        transfer = transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"product": self.paracetamol, "batch": self.batch, "quantity": 40}],
            note="restock",
            user=self.user,
        )

        self.assertEqual(transfer.status, BranchTransfer.Status.COMPLETED)
        self.assertIsNotNone(transfer.completed_at)
        self.assertEqual(self.held(self.branch_x, self.batch), 60)
        self.assertEqual(self.held(self.branch_y, self.batch), 40)
        self.assertBatch(self.batch, received=100, remaining=100)
        self.assertEqual(StockMovement.objects.filter(transfer=transfer).count(), 2)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.STOCK).exists())

    def test_insufficient_source_changes_nothing(self):
        with self.assertRaises(InsufficientStock):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=self.branch_y,
                items=[{"batch": self.batch, "quantity": 101}],
            )

        self.assertEqual(self.held(self.branch_x, self.batch), 100)
        self.assertEqual(self.held(self.branch_y, self.batch), 0)
        self.assertFalse(BranchTransfer.objects.exists())

    def test_lines_for_same_batch_are_checked_together(self):
        with self.assertRaises(InsufficientStock):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=self.branch_y,
                items=[
                    {"batch": self.batch, "quantity": 60},
                    {"batch": self.batch, "quantity": 60},
                ],
            )
        self.assertEqual(self.held(self.branch_x, self.batch), 100)

    def test_one_bad_line_rejects_the_whole_transfer(self):
        other = self.receive(self.ibuprofen, "I1", 10, self.branch_x)

        with self.assertRaises(InsufficientStock):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=self.branch_y,
                items=[
                    {"batch": self.batch, "quantity": 10},
                    {"batch": other, "quantity": 11},
                ],
            )
        self.assertEqual(self.held(self.branch_x, self.batch), 100)
        self.assertEqual(self.held(self.branch_y, self.batch), 0)

    def test_invalid_requests(self):
        with self.assertRaises(InvalidState):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=self.branch_x,
                items=[{"batch": self.batch, "quantity": 1}],
            )
        with self.assertRaises(InvalidQuantity):
            transfers.create_transfer(from_branch=self.branch_x, to_branch=self.branch_y, items=[])
        with self.assertRaises(InvalidQuantity):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=self.branch_y,
                items=[{"batch": self.batch, "quantity": 0}],
            )
        with self.assertRaises(DuplicateBatchIdentity):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=self.branch_y,
                items=[{"product": self.ibuprofen, "batch": self.batch, "quantity": 1}],
            )
        with self.assertRaises(NotFound):
            transfers.create_transfer(
                from_branch=self.branch_x,
                to_branch=987654,
                items=[{"batch": self.batch, "quantity": 1}],
            )

    def test_cancel_reverses_transfer(self):
        transfer = transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": self.batch, "quantity": 30}],
        )

        transfers.cancel_transfer(transfer, user=self.user)

        transfer.refresh_from_db()
        self.assertEqual(transfer.status, BranchTransfer.Status.CANCELLED)
        self.assertEqual(self.held(self.branch_x, self.batch), 100)
        self.assertEqual(self.held(self.branch_y, self.batch), 0)

        with self.assertRaises(InvalidState):
            transfers.cancel_transfer(transfer)

    def test_cancel_fails_when_destination_moved_stock_on(self):
        first = transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": self.batch, "quantity": 30}],
        )
        transfers.create_transfer(
            from_branch=self.branch_y,
            to_branch=self.branch_z,
            items=[{"batch": self.batch, "quantity": 20}],
        )

        with self.assertRaises(InsufficientStock):
            transfers.cancel_transfer(first)

        first.refresh_from_db()
        self.assertEqual(first.status, BranchTransfer.Status.COMPLETED)
        self.assertEqual(self.held(self.branch_y, self.batch), 10)

    def test_listing(self):
        transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": self.batch, "quantity": 1}],
        )
        transfer = transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_z,
            items=[{"batch": self.batch, "quantity": 2}],
        )
        transfers.cancel_transfer(transfer)

        self.assertEqual(transfers.list_transfers(branch=self.branch_x).count(), 2)
        self.assertEqual(transfers.list_transfers(branch=self.branch_y).count(), 1)
        self.assertEqual(
            list(transfers.list_transfers(status=BranchTransfer.Status.CANCELLED)),
            [transfer],
        )
        items = list(transfers.get_transfer_items(transfer))
        self.assertEqual([(i.batch_id, i.quantity) for i in items], [(self.batch.pk, 2)])


# ============================================================
# Integrity check
# ============================================================
class IntegrityCheckTests(BaseInventoryTestCase):
    def test_clean_ledger_passes(self):
        batch = self.receive(self.paracetamol, "B1", 10, self.branch_x)
        transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": batch, "quantity": 4}],
        )

        out = StringIO()
        call_command("check_batch_integrity", stdout=out)
        self.assertEqual(find_batch_violations(), [])

    def test_drift_is_reported(self):
        batch = self.receive(self.paracetamol, "B1", 10, self.branch_x)
        # simulate an out-of-band write that bypassed the services
        ProductBranchBatchStock.objects.filter(batch=batch).update(quantity=7)

        kinds = {v.kind for v in find_batch_violations([batch.pk])}
        self.assertEqual(kinds, {"log_mismatch"})

        with self.assertRaises(CommandError):
            call_command("check_batch_integrity", "--batch", str(batch.pk), stdout=StringIO())
