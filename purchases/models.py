# purchases/models.py

from __future__ import annotations

from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from core.models import AbstractOrder, AbstractOrderItem, AbstractOrderPayment
from inventory.models import ProductBatch

from .managers import PurchaseOrderItemManager, PurchaseOrderManager


class PurchaseOrder(AbstractOrder):
    supplier_name = models.CharField(max_length=200, blank=True, verbose_name=_("اسم المورد"))
    supplier_phone = models.CharField(max_length=50, blank=True, verbose_name=_("هاتف المورد"))

    objects = PurchaseOrderManager()

    class Meta(AbstractOrder.Meta):
        verbose_name = _("أمر شراء")
        verbose_name_plural = _("أوامر الشراء")

    def __str__(self) -> str:
        return f"PO-{self.pk:05d}" if self.pk else "PO-new"


class PurchaseOrderItem(AbstractOrderItem):
    order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="items", verbose_name=_("أمر الشراء"))

    # blank batch_number = non-tracked item, no stock effect
    batch_number = models.CharField(max_length=64, blank=True, verbose_name=_("رقم التشغيلة"))
    batch = models.ForeignKey(
        ProductBatch,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="purchase_items",
        verbose_name=_("التشغيلة"),
    )

    # ---- receipt details, copied to the batch when it is created ----
    supplier_batch_number = models.CharField(max_length=64, blank=True, verbose_name=_("رقم تشغيلة المورد"))
    manufacturing_date = models.DateField(null=True, blank=True, verbose_name=_("تاريخ الإنتاج"))
    expiry_date = models.DateField(null=True, blank=True, verbose_name=_("تاريخ الانتهاء"))
    trade_price = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True, verbose_name=_("سعر الجملة"))
    mrp = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True, verbose_name=_("سعر البيع للعموم"))

    objects = PurchaseOrderItemManager()

    class Meta(AbstractOrderItem.Meta):
        verbose_name = _("بند شراء")
        verbose_name_plural = _("بنود الشراء")
        constraints = [
            models.UniqueConstraint(
                fields=["order", "request_key"],
                condition=Q(request_key__isnull=False),
                name="uniq_purchase_item_request_key",
            ),
            models.CheckConstraint(condition=Q(quantity__gt=0), name="purchase_item_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.order} - {self.product} × {self.quantity}"


class PurchasePayment(AbstractOrderPayment):
    order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="payments", verbose_name=_("أمر الشراء"))

    class Meta(AbstractOrderPayment.Meta):
        verbose_name = _("دفعة شراء")
        verbose_name_plural = _("دفعات الشراء")

    def __str__(self) -> str:
        return f"{self.order} - {self.amount}"
