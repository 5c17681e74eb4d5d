# core/models/orders.py
"""
Abstract order / item / payment models shared by purchases and sales.

Concrete subclasses must define:
- Order:   related items under "items", payments under "payments"
- Item:    FK "order" to the concrete order
- Payment: FK "order" to the concrete order
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q, Sum
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.services.totals import OrderTotals, check_item_total, compute_line_total, compute_order_totals

from .base import BaseModel, TimeStampedModel, UserStampedModel

DECIMAL_ZERO = Decimal("0.000")


class AbstractOrder(BaseModel):
    class Status(models.TextChoices):
        DRAFT = "draft", _("مسودة")
        POSTED = "posted", _("مرحّل")
        CANCELLED = "cancelled", _("ملغي")
        RETURNED = "returned", _("مرتجع")

    branch = models.ForeignKey(
        "inventory.Branch",
        on_delete=models.PROTECT,
        related_name="%(app_label)s_orders",
        verbose_name=_("الفرع"),
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.POSTED,
        db_index=True,
        verbose_name=_("الحالة"),
    )

    # ---- derived (never written by callers) ----
    subtotal = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("المجموع الفرعي"))
    grand_total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("الإجمالي"))
    paid_total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("المدفوع"))
    due_total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("المتبقي"))

    # ---- operator adjustments ----
    discount_total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("خصم المستند"))
    tax_total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("الضريبة"))
    shipping_total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("الشحن"))

    note = models.TextField(blank=True, verbose_name=_("ملاحظات"))

    TOTAL_FIELDS = (
        "subtotal",
        "discount_total",
        "tax_total",
        "shipping_total",
        "grand_total",
        "paid_total",
        "due_total",
    )

    class Meta:
        abstract = True
        ordering = ("-created_at", "-id")

    @property
    def is_cancelled(self) -> bool:
        return self.status == self.Status.CANCELLED

    def compute_totals(self) -> OrderTotals:
        """
        Rebuild the money rollup from item rows and the payment ledger.
        Every item total is verified against its own fields first.
        """
        item_totals = []
        for item in self.items.all():
            check_item_total(item)
            item_totals.append(item.total)

        paid = self.payments.aggregate(s=Sum("amount"))["s"] or DECIMAL_ZERO

        return compute_order_totals(
            item_totals,
            discount_total=self.discount_total,
            tax_total=self.tax_total,
            shipping_total=self.shipping_total,
            paid_total=paid,
        )

    def recompute_totals(self, save: bool = True) -> OrderTotals:
        totals = self.compute_totals()
        for name, value in totals.as_dict().items():
            setattr(self, name, value)
        if save:
            self.updated_at = timezone.now()
            self.save(update_fields=[*self.TOTAL_FIELDS, "updated_at"])
        return totals


class AbstractOrderItem(TimeStampedModel, UserStampedModel):
    product = models.ForeignKey(
        "inventory.Product",
        on_delete=models.PROTECT,
        related_name="%(app_label)s_items",
        verbose_name=_("المنتج"),
    )
    quantity = models.PositiveIntegerField(verbose_name=_("الكمية"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("سعر الوحدة"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("خصم مبلغ"))
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"), verbose_name=_("خصم %"))
    total = models.DecimalField(max_digits=14, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("الإجمالي"))

    # retry key supplied by the caller; same key on the same order is applied once
    request_key = models.CharField(max_length=64, null=True, blank=True, verbose_name=_("مفتاح الطلب"))

    class Meta:
        abstract = True
        ordering = ("id",)

    def compute_line_total(self) -> Decimal:
        return compute_line_total(
            self.quantity,
            self.unit_price,
            self.discount_amount,
            self.discount_percent,
        )

    def save(self, *args, **kwargs):
        self.total = self.compute_line_total()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "total" not in update_fields:
            kwargs["update_fields"] = [*update_fields, "total"]
        super().save(*args, **kwargs)


class AbstractOrderPayment(TimeStampedModel):
    """Append-only payment row; paid_total is always derived from these."""

    class Method(models.TextChoices):
        CASH = "cash", _("نقدي")
        CARD = "card", _("بطاقة")
        BANK = "bank", _("تحويل بنكي")
        CHEQUE = "cheque", _("شيك")
        OTHER = "other", _("أخرى")

    amount = models.DecimalField(max_digits=14, decimal_places=3, verbose_name=_("المبلغ"))
    method = models.CharField(max_length=16, choices=Method.choices, default=Method.CASH, verbose_name=_("طريقة الدفع"))
    reference = models.CharField(max_length=100, blank=True, verbose_name=_("المرجع"))
    paid_at = models.DateTimeField(default=timezone.now, verbose_name=_("تاريخ الدفع"))
    received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="%(app_label)s_%(class)s_received",
        verbose_name=_("استلم بواسطة"),
    )

    class Meta:
        abstract = True
        ordering = ("paid_at", "id")
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="%(app_label)s_%(class)s_amount_positive"),
        ]
