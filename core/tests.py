# core/tests.py

from decimal import Decimal
from unittest import mock

from django.db import OperationalError
from django.test import SimpleTestCase, TestCase, override_settings

from core.exceptions import ConcurrencyConflict, InsufficientStock, InvalidQuantity
from core.models import AuditLog, NumberSequence
from core.services.audit import audit_trail, log_event
from core.services.numbering import month_period, next_sequence_value
from core.services.retry import run_with_conflict_retry
from core.services.totals import compute_line_total, compute_order_totals
from core.utils import normalize_quantity, to_money


class LineTotalTests(SimpleTestCase):
    def test_amount_and_percent_discounts(self):
        # 2 × 10 = 20, minus 1.000, minus 10% of 20
        total = compute_line_total(2, "10.000", "1.000", "10")
        self.assertEqual(total, Decimal("17.000"))

    def test_no_discount(self):
        self.assertEqual(compute_line_total(3, Decimal("2.500")), Decimal("7.500"))

    def test_total_is_clamped_at_zero(self):
        self.assertEqual(compute_line_total(1, "5.000", "50.000"), Decimal("0.000"))

    def test_percent_out_of_range_is_rejected(self):
        with self.assertRaises(InvalidQuantity):
            compute_line_total(1, "5.000", 0, "150")

    def test_negative_price_is_rejected(self):
        with self.assertRaises(InvalidQuantity):
            compute_line_total(1, "-5.000")


class OrderTotalsTests(SimpleTestCase):
    def test_grand_and_due(self):
        totals = compute_order_totals(
            [Decimal("17.000"), Decimal("3.000")],
            discount_total="2.000",
            tax_total="1.500",
            shipping_total="0.500",
            paid_total="5.000",
        )
        self.assertEqual(totals.subtotal, Decimal("20.000"))
        self.assertEqual(totals.grand_total, Decimal("20.000"))
        self.assertEqual(totals.due_total, Decimal("15.000"))

    def test_overpayment_leaves_zero_due(self):
        totals = compute_order_totals([Decimal("10.000")], paid_total="12.000")
        self.assertEqual(totals.due_total, Decimal("0.000"))
        self.assertEqual(totals.paid_total, Decimal("12.000"))

    def test_grand_total_never_negative(self):
        totals = compute_order_totals([Decimal("10.000")], discount_total="25.000")
        self.assertEqual(totals.grand_total, Decimal("0.000"))

    def test_empty_order(self):
        totals = compute_order_totals([])
        self.assertEqual(totals.subtotal, Decimal("0.000"))
        self.assertEqual(totals.due_total, Decimal("0.000"))


class QuantityParsingTests(SimpleTestCase):
    def test_accepts_integral_values(self):
        self.assertEqual(normalize_quantity(5), 5)
        self.assertEqual(normalize_quantity("7"), 7)
        self.assertEqual(normalize_quantity(Decimal("3.000")), 3)

    def test_rejects_bad_values(self):
        for value in (0, -1, "2.5", Decimal("0.5"), True, None, "abc"):
            with self.subTest(value=value):
                with self.assertRaises(InvalidQuantity):
                    normalize_quantity(value)

    def test_money_parsing(self):
        self.assertEqual(to_money("1.2"), Decimal("1.200"))
        self.assertEqual(to_money(None), Decimal("0.000"))
        with self.assertRaises(InvalidQuantity):
            to_money("-1")


@override_settings(INVENTORY_CONFLICT_RETRIES=3)
class ConflictRetryTests(SimpleTestCase):
    def setUp(self):
        patcher = mock.patch("core.services.retry.time.sleep")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_retries_until_success(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("database is locked")
            return "ok"

        self.assertEqual(run_with_conflict_retry(flaky), "ok")
        self.assertEqual(len(calls), 3)

    def test_gives_up_with_concurrency_conflict(self):
        calls = []

        def always_locked():
            calls.append(1)
            raise OperationalError("deadlock detected")

        with self.assertRaises(ConcurrencyConflict):
            run_with_conflict_retry(always_locked)
        self.assertEqual(len(calls), 3)

    def test_domain_errors_are_not_retried(self):
        calls = []

        def short():
            calls.append(1)
            raise InsufficientStock()

        with self.assertRaises(InsufficientStock):
            run_with_conflict_retry(short)
        self.assertEqual(len(calls), 1)


class AuditAndNumberingTests(TestCase):
    def test_log_event_stores_target(self):
        seq = NumberSequence.objects.create(key="demo", period="", last_value=0)
        entry = log_event(action=AuditLog.Action.OTHER, message="hello", target=seq, extra={"a": 1})

        self.assertEqual(entry.target, seq)
        self.assertEqual(entry.extra, {"a": 1})
        self.assertIsNone(entry.actor)

    def test_log_event_rejects_unknown_action(self):
        with self.assertRaises(ValueError):
            log_event(action="explode")

    def test_extra_accepts_decimals(self):
        seq = NumberSequence.objects.create(key="demo", period="", last_value=0)
        log_event(action=AuditLog.Action.UPDATE, target=seq, extra={"total": Decimal("1.500")})

        entry = AuditLog.objects.get()
        self.assertEqual(entry.extra, {"total": "1.500"})

    def test_audit_trail_per_target(self):
        first = NumberSequence.objects.create(key="a", period="", last_value=0)
        second = NumberSequence.objects.create(key="b", period="", last_value=0)
        log_event(action=AuditLog.Action.CREATE, target=first)
        log_event(action=AuditLog.Action.UPDATE, target=first)
        log_event(action=AuditLog.Action.CREATE, target=second)

        self.assertEqual(audit_trail(first).count(), 2)
        self.assertEqual(audit_trail(first, action=AuditLog.Action.UPDATE).count(), 1)
        self.assertEqual(audit_trail(second).count(), 1)

    def test_sequence_increments_per_period(self):
        self.assertEqual(next_sequence_value("k", "2601"), 1)
        self.assertEqual(next_sequence_value("k", "2601"), 2)
        self.assertEqual(next_sequence_value("k", "2602"), 1)

    def test_month_period_format(self):
        self.assertRegex(month_period(), r"^\d{4}$")
