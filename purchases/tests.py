# purchases/tests.py

from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase

from core.exceptions import (
    InconsistentTotals,
    InsufficientStock,
    InvalidQuantity,
    InvalidState,
    NotFound,
)
from core.models import AuditLog
from inventory.models import Branch, Product, ProductBatch, ProductBranchBatchStock, StockMovement
from inventory.services import transfers
from inventory.services.branch_stock import available_quantity
from inventory.services.integrity import find_batch_violations
from sales.services import SalesService

from .models import PurchaseOrder, PurchaseOrderItem
from .services import PurchaseService


class BasePurchaseTestCase(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="buyer", password="x")
        self.product = Product.objects.create(code="AMOX250", name="Amoxicillin 250")
        self.other_product = Product.objects.create(code="CETI10", name="Cetirizine 10")
        self.branch_x = Branch.objects.create(code="X", name="Branch X")
        self.branch_y = Branch.objects.create(code="Y", name="Branch Y")

        self.order = PurchaseService.create_order(
            branch=self.branch_x,
            user=self.user,
            supplier_name="Gulf Pharma",
            supplier_phone="99112233",
        )

    def add(self, order=None, **raw):
        raw.setdefault("product", self.product)
        raw.setdefault("quantity", 10)
        raw.setdefault("unit_price", "1.000")
        return PurchaseService.add_items(order or self.order, [raw], user=self.user)[0]

    def batch(self, number, product=None):
        return ProductBatch.objects.get(product=product or self.product, batch_number=number)

    def held(self, branch, batch):
        return available_quantity(product=batch.product_id, branch=branch, batch=batch)


class PurchaseReceiptTests(BasePurchaseTestCase):
    def test_tracked_item_receives_stock(self):
        item = self.add(
            batch_number="B1",
            quantity=100,
            unit_price="2.000",
            mrp="3.000",
            expiry_date="2027-06-30",
        )

        batch = self.batch("B1")
        self.assertEqual(item.batch, batch)
        self.assertEqual(batch.quantity_received, 100)
        self.assertEqual(batch.quantity_remaining, 100)
        self.assertEqual(batch.cost_price, Decimal("2.000"))
        self.assertEqual(batch.trade_price, Decimal("2.000"))
        self.assertEqual(batch.mrp, Decimal("3.000"))
        self.assertEqual(self.held(self.branch_x, batch), 100)

        movement = StockMovement.objects.get(batch=batch)
        self.assertEqual(movement.reason, StockMovement.Reason.PURCHASE)
        self.assertEqual(movement.direction, StockMovement.Direction.IN)
        self.assertEqual(movement.reference, f"PO-{self.order.pk}/{item.pk}")

    def test_same_batch_on_another_order_merges(self):
        self.add(batch_number="B1", quantity=40)
        other = PurchaseService.create_order(branch=self.branch_y)
        self.add(order=other, batch_number="B1", quantity=60)

        batch = self.batch("B1")
        self.assertEqual(ProductBatch.objects.count(), 1)
        self.assertEqual(batch.quantity_received, 100)
        self.assertEqual(self.held(self.branch_x, batch), 40)
        self.assertEqual(self.held(self.branch_y, batch), 60)

    def test_untracked_item_has_no_stock_effect(self):
        item = self.add(quantity=5)

        self.assertIsNone(item.batch)
        self.assertFalse(ProductBatch.objects.exists())
        self.assertFalse(StockMovement.objects.exists())
        self.order.refresh_from_db()
        self.assertEqual(self.order.subtotal, Decimal("5.000"))

    def test_invalid_line_rejects_whole_request(self):
        with self.assertRaises(InvalidQuantity):
            PurchaseService.add_items(
                self.order,
                [
                    {"product": self.product, "quantity": 5, "unit_price": "1", "batch_number": "B1"},
                    {"product": self.product, "quantity": 0, "unit_price": "1", "batch_number": "B2"},
                ],
            )
        self.assertFalse(PurchaseOrderItem.objects.exists())
        self.assertFalse(ProductBatch.objects.exists())

    def test_unknown_product_is_rejected(self):
        with self.assertRaises(NotFound):
            self.add(product=424242, batch_number="B1")

    def test_request_key_makes_add_idempotent(self):
        first = self.add(batch_number="B1", quantity=10, request_key="line-1")
        again = self.add(batch_number="B1", quantity=10, request_key="line-1")

        self.assertEqual(first.pk, again.pk)
        self.assertEqual(self.order.items.count(), 1)
        self.assertEqual(self.batch("B1").quantity_received, 10)
        self.assertEqual(StockMovement.objects.count(), 1)


class PurchaseEditTests(BasePurchaseTestCase):
    def setUp(self):
        super().setUp()
        self.item = self.add(batch_number="B1", quantity=10, unit_price="2.000")

    def test_increase_quantity(self):
        PurchaseService.update_item(self.item, quantity=15, user=self.user)

        batch = self.batch("B1")
        self.assertEqual(batch.quantity_received, 15)
        self.assertEqual(batch.quantity_remaining, 15)
        self.assertEqual(self.held(self.branch_x, batch), 15)
        self.order.refresh_from_db()
        self.assertEqual(self.order.subtotal, Decimal("30.000"))

    def test_decrease_quantity(self):
        PurchaseService.update_item(self.item, quantity=6)

        batch = self.batch("B1")
        self.assertEqual(batch.quantity_received, 6)
        self.assertEqual(batch.quantity_remaining, 6)
        self.assertEqual(self.held(self.branch_x, batch), 6)
        self.assertTrue(
            StockMovement.objects.filter(reason=StockMovement.Reason.PURCHASE_REVERSAL, quantity=4).exists()
        )
        self.assertEqual(find_batch_violations(), [])

    def test_change_batch_number_moves_receipt(self):
        PurchaseService.update_item(self.item, batch_number="B2")

        self.item.refresh_from_db()
        old, new = self.batch("B1"), self.batch("B2")
        self.assertEqual(self.item.batch, new)
        self.assertEqual(old.quantity_received, 0)
        self.assertEqual(self.held(self.branch_x, old), 0)
        self.assertEqual(new.quantity_received, 10)
        self.assertEqual(self.held(self.branch_x, new), 10)

    def test_clearing_batch_number_unreceives(self):
        PurchaseService.update_item(self.item, batch_number="")

        self.item.refresh_from_db()
        self.assertIsNone(self.item.batch)
        self.assertEqual(self.batch("B1").quantity_received, 0)

    def test_delete_reverses_receipt(self):
        PurchaseService.delete_item(self.item, user=self.user)

        batch = self.batch("B1")
        self.assertEqual(batch.quantity_received, 0)
        self.assertEqual(batch.quantity_remaining, 0)
        self.assertEqual(batch.status, ProductBatch.Status.CONSUMED)
        self.assertEqual(self.held(self.branch_x, batch), 0)
        self.assertFalse(PurchaseOrderItem.objects.exists())
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.DELETE).exists())

    def test_delete_after_transfer_is_rejected(self):
        batch = self.batch("B1")
        transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": batch, "quantity": 5}],
        )

        with self.assertRaises(InsufficientStock):
            PurchaseService.delete_item(self.item)

        batch.refresh_from_db()
        self.assertEqual(batch.quantity_received, 10)
        self.assertEqual(self.held(self.branch_x, batch), 5)
        self.assertTrue(PurchaseOrderItem.objects.filter(pk=self.item.pk).exists())

    def test_cancel_order_reverses_all_items(self):
        self.add(batch_number="B2", quantity=3)

        PurchaseService.cancel_order(self.order, user=self.user)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, PurchaseOrder.Status.CANCELLED)
        self.assertEqual(ProductBranchBatchStock.objects.filter(quantity__gt=0).count(), 0)

        with self.assertRaises(InvalidState):
            self.add(batch_number="B3")
        with self.assertRaises(InvalidState):
            PurchaseService.add_payment(self.order, amount="1.000")

    def test_unknown_update_field(self):
        with self.assertRaises(ValueError):
            PurchaseService.update_item(self.item, product=self.other_product)


class PurchaseTotalsTests(BasePurchaseTestCase):
    def test_totals_and_payments(self):
        self.add(quantity=2, unit_price="10.000", discount_amount="1.000", discount_percent="10")
        self.add(quantity=1, unit_price="3.000")

        PurchaseService.set_adjustments(self.order, discount_total="2.000", tax_total="1.500", shipping_total="0.500")
        PurchaseService.add_payment(self.order, amount="5.000", reference="CHQ-1", user=self.user)

        self.order.refresh_from_db()
        self.assertEqual(self.order.subtotal, Decimal("20.000"))
        self.assertEqual(self.order.grand_total, Decimal("20.000"))
        self.assertEqual(self.order.paid_total, Decimal("5.000"))
        self.assertEqual(self.order.due_total, Decimal("15.000"))

    def test_invalid_payments(self):
        with self.assertRaises(InvalidQuantity):
            PurchaseService.add_payment(self.order, amount="0")
        with self.assertRaises(InvalidQuantity):
            PurchaseService.add_payment(self.order, amount="5", method="barter")

    def test_drifted_item_total_is_detected(self):
        item = self.add(quantity=2, unit_price="10.000")
        PurchaseOrderItem.objects.filter(pk=item.pk).update(total=Decimal("99.000"))

        with self.assertRaises(InconsistentTotals):
            PurchaseService.recompute(self.order)

    def test_listing_and_search(self):
        PurchaseService.create_order(branch=self.branch_y, supplier_name="Muscat Medical")

        self.assertEqual(PurchaseService.list_orders(branch=self.branch_x).count(), 1)
        self.assertEqual(list(PurchaseService.list_orders(query="gulf")), [self.order])
        self.assertEqual(list(PurchaseService.list_orders(query=str(self.order.pk))), [self.order])
        self.assertEqual(str(self.order), f"PO-{self.order.pk:05d}")


class PurchaseReAddTests(BasePurchaseTestCase):
    def test_deleted_line_can_be_added_again_with_same_key(self):
        item = self.add(batch_number="B1", quantity=10, request_key="k1")
        PurchaseService.delete_item(item)

        again = self.add(batch_number="B1", quantity=10, request_key="k1")

        batch = self.batch("B1")
        self.assertNotEqual(again.pk, item.pk)
        self.assertEqual(again.batch, batch)
        self.assertEqual(batch.quantity_received, 10)
        self.assertEqual(batch.quantity_remaining, 10)
        self.assertEqual(self.held(self.branch_x, batch), 10)
        self.assertEqual(StockMovement.objects.filter(reason=StockMovement.Reason.PURCHASE).count(), 2)
        self.assertEqual(find_batch_violations(), [])

    def test_receipt_key_includes_item(self):
        item = self.add(batch_number="B1", request_key="k1")

        movement = StockMovement.objects.get(reason=StockMovement.Reason.PURCHASE)
        self.assertEqual(movement.request_key, f"PO:{self.order.pk}:{item.pk}:k1")


class PurchaseRenumberAfterSaleTests(BasePurchaseTestCase):
    def test_renumber_after_partial_sale_changes_nothing(self):

        item = self.add(batch_number="B1", quantity=10)
        b1 = self.batch("B1")
        sale = SalesService.create_order(branch=self.branch_x)
        SalesService.add_items(sale, [{"product": self.product, "batch": b1, "quantity": 3, "unit_price": "2"}])

        with self.assertRaises(InsufficientStock):
            PurchaseService.update_item(item, batch_number="B2")

        item.refresh_from_db()
        b1.refresh_from_db()
        self.assertEqual(item.batch_number, "B1")
        self.assertEqual(item.batch, b1)
        self.assertFalse(ProductBatch.objects.filter(batch_number="B2").exists())
        self.assertEqual(b1.quantity_received, 10)
        self.assertEqual(b1.quantity_remaining, 7)
        self.assertEqual(self.held(self.branch_x, b1), 7)
        self.assertEqual(find_batch_violations(), [])


class PurchaseDraftTests(BasePurchaseTestCase):
    def setUp(self):
        super().setUp()
        self.draft = PurchaseService.create_order(branch=self.branch_x, status=PurchaseOrder.Status.DRAFT)

    def test_draft_items_have_no_stock_effect(self):
        item = self.add(
            order=self.draft,
            batch_number="B1",
            quantity=12,
            unit_price="1.000",
            mrp="1.800",
            expiry_date="2027-01-31",
            supplier_batch_number="SUP-77",
        )

        self.assertIsNone(item.batch)
        self.assertFalse(ProductBatch.objects.exists())
        self.assertFalse(StockMovement.objects.exists())
        self.draft.refresh_from_db()
        self.assertEqual(self.draft.subtotal, Decimal("12.000"))

    def test_post_receives_with_item_details(self):
        item = self.add(
            order=self.draft,
            batch_number="B1",
            quantity=12,
            mrp="1.800",
            expiry_date="2027-01-31",
            supplier_batch_number="SUP-77",
        )

        PurchaseService.post_order(self.draft, user=self.user)

        self.draft.refresh_from_db()
        item.refresh_from_db()
        batch = self.batch("B1")
        self.assertEqual(self.draft.status, PurchaseOrder.Status.POSTED)
        self.assertEqual(item.batch, batch)
        self.assertEqual(batch.quantity_received, 12)
        self.assertEqual(batch.mrp, Decimal("1.800"))
        self.assertEqual(str(batch.expiry_date), "2027-01-31")
        self.assertEqual(batch.supplier_batch_number, "SUP-77")
        self.assertEqual(self.held(self.branch_x, batch), 12)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.STATUS_CHANGE).exists())

    def test_only_drafts_can_be_posted(self):
        with self.assertRaises(InvalidState):
            PurchaseService.post_order(self.order)

    def test_draft_edits_and_deletes_have_no_stock_effect(self):
        item = self.add(order=self.draft, batch_number="B1", quantity=5)

        PurchaseService.update_item(item, quantity=8, batch_number="B2")
        PurchaseService.delete_item(item)

        self.assertFalse(ProductBatch.objects.exists())
        self.assertFalse(StockMovement.objects.exists())

    def test_cancel_draft(self):
        self.add(order=self.draft, batch_number="B1", quantity=5)

        PurchaseService.cancel_order(self.draft)

        self.draft.refresh_from_db()
        self.assertEqual(self.draft.status, PurchaseOrder.Status.CANCELLED)
        self.assertFalse(StockMovement.objects.exists())
        with self.assertRaises(InvalidState):
            PurchaseService.post_order(self.draft)

    def test_cannot_create_order_as_cancelled(self):
        with self.assertRaises(InvalidState):
            PurchaseService.create_order(branch=self.branch_x, status=PurchaseOrder.Status.CANCELLED)


class PurchaseReturnTests(BasePurchaseTestCase):
    def test_return_sends_stock_back(self):
        self.add(batch_number="B1", quantity=10)

        PurchaseService.return_order(self.order, user=self.user)

        self.order.refresh_from_db()
        batch = self.batch("B1")
        self.assertEqual(self.order.status, PurchaseOrder.Status.RETURNED)
        self.assertEqual(self.order.items.count(), 1)
        self.assertEqual(batch.quantity_received, 0)
        self.assertEqual(self.held(self.branch_x, batch), 0)
        with self.assertRaises(InvalidState):
            self.add(batch_number="B2")
        with self.assertRaises(InvalidState):
            PurchaseService.return_order(self.order)


class PurchaseHeaderTests(BasePurchaseTestCase):
    def test_update_order_header(self):
        self.add(quantity=2, unit_price="10.000")

        PurchaseService.update_order(
            self.order,
            user=self.user,
            supplier_name="Muscat Medical",
            note="second delivery",
            shipping_total="1.250",
        )

        self.order.refresh_from_db()
        self.assertEqual(self.order.supplier_name, "Muscat Medical")
        self.assertEqual(self.order.note, "second delivery")
        self.assertEqual(self.order.grand_total, Decimal("21.250"))
        self.assertEqual(self.order.updated_by, self.user)
        self.assertTrue(AuditLog.objects.filter(action=AuditLog.Action.UPDATE).exists())

    def test_status_is_not_a_header_field(self):
        with self.assertRaises(ValueError):
            PurchaseService.update_order(self.order, status=PurchaseOrder.Status.CANCELLED)
