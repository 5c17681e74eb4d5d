# sales/tests.py

import threading
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase

from core.exceptions import DuplicateBatchIdentity, InsufficientStock, InvalidState, NotFound
from inventory.models import Branch, Product, ProductBatch, StockMovement
from inventory.services import batches, transfers
from inventory.services.branch_stock import available_quantity, branch_totals_for_product, total_stock_for_product
from inventory.services.integrity import find_batch_violations
from purchases.services import PurchaseService

from .models import SalesOrder, SalesOrderItem
from .services import SalesService


class SalesFixtureMixin:
    """
    B1 received 100 at X, 40 of it transferred to Y:
    X holds 60, Y holds 40, remaining 100.
    """

    def setUp(self):
        super().setUp()
        self.user = get_user_model().objects.create_user(username="cashier", password="x")
        self.product = Product.objects.create(code="OMEP20", name="Omeprazole 20")
        self.other_product = Product.objects.create(code="LORA10", name="Loratadine 10")
        self.branch_x = Branch.objects.create(code="X", name="Branch X")
        self.branch_y = Branch.objects.create(code="Y", name="Branch Y")

        purchase = PurchaseService.create_order(branch=self.branch_x, supplier_name="Gulf Pharma")
        PurchaseService.add_items(
            purchase,
            [{"product": self.product, "quantity": 100, "unit_price": "1.500", "batch_number": "B1"}],
        )
        self.batch = ProductBatch.objects.get(product=self.product, batch_number="B1")
        transfers.create_transfer(
            from_branch=self.branch_x,
            to_branch=self.branch_y,
            items=[{"batch": self.batch, "quantity": 40}],
        )

        self.order = SalesService.create_order(branch=self.branch_x, user=self.user, customer_name="Walk-in")

    def sell(self, quantity, order=None, **raw):
        raw.setdefault("product", self.product)
        raw.setdefault("batch", self.batch)
        raw.setdefault("unit_price", "2.000")
        raw["quantity"] = quantity
        return SalesService.add_items(order or self.order, [raw], user=self.user)[0]

    def assertStock(self, *, x, y, remaining):
        self.batch.refresh_from_db()
        self.assertEqual(available_quantity(product=self.product, branch=self.branch_x, batch=self.batch), x)
        self.assertEqual(available_quantity(product=self.product, branch=self.branch_y, batch=self.batch), y)
        self.assertEqual(self.batch.quantity_remaining, remaining)
        self.assertEqual(self.batch.quantity_received, 100)


class BaseSalesTestCase(SalesFixtureMixin, TestCase):
    pass


class SaleFulfillmentTests(BaseSalesTestCase):
    def test_sale_debits_branch_and_batch(self):
        item = self.sell(25)

        self.assertStock(x=35, y=40, remaining=75)
        movement = StockMovement.objects.get(reason=StockMovement.Reason.SALE)
        self.assertEqual(movement.branch, self.branch_x)
        self.assertEqual(movement.quantity, 25)
        self.assertEqual(movement.reference, f"SO-{self.order.pk}/{item.pk}")
        self.order.refresh_from_db()
        self.assertEqual(self.order.subtotal, Decimal("50.000"))

    def test_sale_beyond_branch_holding_changes_nothing(self):
        self.sell(25)

        with self.assertRaises(InsufficientStock):
            self.sell(40)

        self.assertStock(x=35, y=40, remaining=75)
        self.assertEqual(self.order.items.count(), 1)
        self.assertEqual(StockMovement.objects.filter(reason=StockMovement.Reason.SALE).count(), 1)

    def test_stock_of_other_branch_cannot_be_sold(self):
        with self.assertRaises(InsufficientStock):
            self.sell(61)
        self.assertStock(x=60, y=40, remaining=100)

    def test_multi_item_request_is_all_or_nothing(self):
        with self.assertRaises(InsufficientStock):
            SalesService.add_items(
                self.order,
                [
                    {"product": self.product, "batch": self.batch, "quantity": 30, "unit_price": "2"},
                    {"product": self.product, "batch": self.batch, "quantity": 31, "unit_price": "2"},
                ],
            )

        self.assertStock(x=60, y=40, remaining=100)
        self.assertFalse(SalesOrderItem.objects.exists())

    def test_batch_by_number(self):
        item = self.sell(5, batch=None, batch_number="B1")

        self.assertEqual(item.batch, self.batch)
        self.assertStock(x=55, y=40, remaining=95)

        with self.assertRaises(NotFound):
            self.sell(1, batch=None, batch_number="NOPE")

    def test_batch_of_other_product_is_rejected(self):
        with self.assertRaises(DuplicateBatchIdentity):
            self.sell(1, product=self.other_product)
        self.assertStock(x=60, y=40, remaining=100)

    def test_recalled_batch_cannot_be_sold(self):
        batches.set_status(self.batch, ProductBatch.Status.RECALLED)

        with self.assertRaises(InvalidState):
            self.sell(1)

    def test_untracked_item(self):
        item = self.sell(3, batch=None)

        self.assertIsNone(item.batch)
        self.assertStock(x=60, y=40, remaining=100)

    def test_selling_out_marks_batch_consumed(self):
        y_order = SalesService.create_order(branch=self.branch_y)
        self.sell(60)
        self.sell(40, order=y_order)

        self.assertStock(x=0, y=0, remaining=0)
        self.assertEqual(self.batch.status, ProductBatch.Status.CONSUMED)


class SaleEditTests(BaseSalesTestCase):
    def setUp(self):
        super().setUp()
        self.item = self.sell(25)

    def test_delete_restores_stock(self):
        SalesService.delete_item(self.item, user=self.user)

        self.assertStock(x=60, y=40, remaining=100)
        self.assertTrue(StockMovement.objects.filter(reason=StockMovement.Reason.SALE_REVERSAL).exists())
        self.assertEqual(find_batch_violations(), [])

    def test_update_quantity(self):
        SalesService.update_item(self.item, quantity=30)
        self.assertStock(x=30, y=40, remaining=70)

        SalesService.update_item(self.item, quantity=10)
        self.assertStock(x=50, y=40, remaining=90)

        with self.assertRaises(InsufficientStock):
            SalesService.update_item(self.item, quantity=61)
        self.assertStock(x=50, y=40, remaining=90)
        self.item.refresh_from_db()
        self.assertEqual(self.item.quantity, 10)

    def test_change_batch(self):
        PurchaseService.add_items(
            PurchaseService.create_order(branch=self.branch_x),
            [{"product": self.product, "quantity": 10, "unit_price": "1.000", "batch_number": "B2"}],
        )
        b2 = ProductBatch.objects.get(product=self.product, batch_number="B2")

        SalesService.update_item(self.item, batch=b2, quantity=4)

        self.item.refresh_from_db()
        self.assertEqual(self.item.batch, b2)
        self.assertStock(x=60, y=40, remaining=100)
        b2.refresh_from_db()
        self.assertEqual(b2.quantity_remaining, 6)

    def test_cancel_order_restores_stock(self):
        SalesService.cancel_order(self.order)

        self.assertStock(x=60, y=40, remaining=100)
        with self.assertRaises(InvalidState):
            SalesService.update_item(self.item, quantity=1)

    def test_stale_instances_cannot_oversell(self):
        # two callers holding the same stale snapshot of the order
        first = SalesService.get_order(self.order)
        second = SalesService.get_order(self.order)

        self.sell(30, order=first)
        with self.assertRaises(InsufficientStock):
            self.sell(30, order=second)

        self.assertStock(x=5, y=40, remaining=45)
        self.assertEqual(find_batch_violations(), [])


class SaleTotalsTests(BaseSalesTestCase):
    def test_payments_reduce_due(self):
        self.sell(10)
        SalesService.add_payment(self.order, amount="15.000", method="card", user=self.user)
        SalesService.add_payment(self.order, amount="10.000")

        self.order.refresh_from_db()
        self.assertEqual(self.order.grand_total, Decimal("20.000"))
        self.assertEqual(self.order.paid_total, Decimal("25.000"))
        self.assertEqual(self.order.due_total, Decimal("0.000"))
        self.assertEqual(self.order.payments.count(), 2)

    def test_search_by_customer(self):
        self.assertEqual(list(SalesService.list_orders(query="walk")), [self.order])
        self.assertEqual(SalesService.list_orders(branch=self.branch_y).count(), 0)


class UnsellableEditTests(BaseSalesTestCase):
    def setUp(self):
        super().setUp()
        self.item = self.sell(5)
        batches.set_status(self.batch, ProductBatch.Status.RECALLED)

    def test_recalled_batch_cannot_be_sold_by_raising_quantity(self):
        with self.assertRaises(InvalidState):
            SalesService.update_item(self.item, quantity=45)

        self.item.refresh_from_db()
        self.assertEqual(self.item.quantity, 5)
        self.assertStock(x=55, y=40, remaining=95)
        self.assertEqual(StockMovement.objects.filter(reason=StockMovement.Reason.SALE).count(), 1)

    def test_recalled_batch_can_still_take_returns(self):
        SalesService.update_item(self.item, quantity=2)

        self.assertStock(x=58, y=40, remaining=98)


class SaleBatchSwapRollbackTests(BaseSalesTestCase):
    def test_failed_swap_keeps_original_sale(self):
        item = self.sell(25)
        PurchaseService.add_items(
            PurchaseService.create_order(branch=self.branch_x),
            [{"product": self.product, "quantity": 10, "unit_price": "1.000", "batch_number": "B2"}],
        )
        b2 = ProductBatch.objects.get(product=self.product, batch_number="B2")

        with self.assertRaises(InsufficientStock):
            SalesService.update_item(item, batch=b2, quantity=15)

        item.refresh_from_db()
        b2.refresh_from_db()
        self.assertEqual(item.batch, self.batch)
        self.assertEqual(item.quantity, 25)
        self.assertStock(x=35, y=40, remaining=75)
        self.assertEqual(b2.quantity_remaining, 10)
        self.assertEqual(available_quantity(product=self.product, branch=self.branch_x, batch=b2), 10)
        self.assertFalse(StockMovement.objects.filter(reason=StockMovement.Reason.SALE_REVERSAL).exists())


class SaleDraftTests(BaseSalesTestCase):
    def setUp(self):
        super().setUp()
        self.draft = SalesService.create_order(branch=self.branch_x, status=SalesOrder.Status.DRAFT)

    def test_draft_holds_no_stock_until_posted(self):
        self.sell(10, order=self.draft)
        self.assertStock(x=60, y=40, remaining=100)

        SalesService.post_order(self.draft, user=self.user)

        self.draft.refresh_from_db()
        self.assertEqual(self.draft.status, SalesOrder.Status.POSTED)
        self.assertStock(x=50, y=40, remaining=90)

    def test_short_stock_keeps_order_draft(self):
        self.sell(30, order=self.draft)
        self.sell(31, order=self.draft)

        with self.assertRaises(InsufficientStock):
            SalesService.post_order(self.draft)

        self.draft.refresh_from_db()
        self.assertEqual(self.draft.status, SalesOrder.Status.DRAFT)
        self.assertStock(x=60, y=40, remaining=100)
        self.assertFalse(StockMovement.objects.filter(reason=StockMovement.Reason.SALE).exists())

    def test_batch_expired_after_drafting_cannot_be_posted(self):
        self.sell(1, order=self.draft)
        batches.set_status(self.batch, ProductBatch.Status.EXPIRED)

        with self.assertRaises(InvalidState):
            SalesService.post_order(self.draft)

        self.draft.refresh_from_db()
        self.assertEqual(self.draft.status, SalesOrder.Status.DRAFT)
        self.assertStock(x=60, y=40, remaining=100)


class SaleReturnTests(BaseSalesTestCase):
    def test_return_restocks_branch(self):
        self.sell(25)

        SalesService.return_order(self.order, user=self.user)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, SalesOrder.Status.RETURNED)
        self.assertStock(x=60, y=40, remaining=100)
        with self.assertRaises(InvalidState):
            self.sell(1)
        with self.assertRaises(InvalidState):
            SalesService.cancel_order(self.order)


class ProductStockTotalsTests(BaseSalesTestCase):
    def test_network_and_branch_totals(self):
        self.sell(15)

        self.assertEqual(total_stock_for_product(self.product), 85)
        self.assertEqual(total_stock_for_product(self.other_product), 0)
        rows = branch_totals_for_product(self.product)
        self.assertEqual([(row["branch__code"], row["stock"]) for row in rows], [("X", 45), ("Y", 40)])
        self.assertEqual(rows[0]["branch_id"], self.branch_x.pk)


class ConcurrentSaleTests(SalesFixtureMixin, TransactionTestCase):
    """Two cashiers at X (60 on hand) each sell 40 at the same moment."""

    def setUp(self):
        if connection.vendor == "sqlite" and connection.is_in_memory_db():
            self.skipTest("needs a file-backed database shared between threads")
        super().setUp()

    def test_only_one_of_two_racing_sales_succeeds(self):
        orders = [SalesService.create_order(branch=self.branch_x) for _ in range(2)]
        barrier = threading.Barrier(len(orders))
        results = []

        def sell_in_thread(order):
            try:
                barrier.wait()
                self.sell(40, order=order)
                results.append("ok")
            except Exception as exc:  # collected and asserted below
                results.append(type(exc).__name__)
            finally:
                connection.close()

        threads = [threading.Thread(target=sell_in_thread, args=(order,)) for order in orders]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(sorted(results), ["InsufficientStock", "ok"])
        self.assertStock(x=20, y=40, remaining=60)
        self.assertEqual(SalesOrderItem.objects.count(), 1)
        self.assertEqual(find_batch_violations(), [])
