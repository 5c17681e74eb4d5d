# sales/models.py

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from core.models import AbstractOrder, AbstractOrderItem, AbstractOrderPayment
from inventory.models import ProductBatch

from .managers import SalesOrderItemManager, SalesOrderManager


class SalesOrder(AbstractOrder):
    customer_name = models.CharField(max_length=200, blank=True, verbose_name=_("اسم العميل"))
    customer_phone = models.CharField(max_length=50, blank=True, verbose_name=_("هاتف العميل"))

    objects = SalesOrderManager()

    class Meta(AbstractOrder.Meta):
        verbose_name = _("أمر بيع")
        verbose_name_plural = _("أوامر البيع")

    def __str__(self) -> str:
        return f"SO-{self.pk:05d}" if self.pk else "SO-new"


class SalesOrderItem(AbstractOrderItem):
    order = models.ForeignKey(SalesOrder, on_delete=models.CASCADE, related_name="items", verbose_name=_("أمر البيع"))

    # null batch = non-tracked item, no stock effect
    batch = models.ForeignKey(
        ProductBatch,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="sales_items",
        verbose_name=_("التشغيلة"),
    )

    objects = SalesOrderItemManager()

    class Meta(AbstractOrderItem.Meta):
        verbose_name = _("بند بيع")
        verbose_name_plural = _("بنود البيع")
        constraints = [
            models.UniqueConstraint(
                fields=["order", "request_key"],
                condition=Q(request_key__isnull=False),
                name="uniq_sales_item_request_key",
            ),
            models.CheckConstraint(condition=Q(quantity__gt=0), name="sales_item_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.order} - {self.product} × {self.quantity}"


class SalesPayment(AbstractOrderPayment):
    order = models.ForeignKey(SalesOrder, on_delete=models.CASCADE, related_name="payments", verbose_name=_("أمر البيع"))

    class Meta(AbstractOrderPayment.Meta):
        verbose_name = _("دفعة بيع")
        verbose_name_plural = _("دفعات البيع")

    def __str__(self) -> str:
        return f"{self.order} - {self.amount}"
