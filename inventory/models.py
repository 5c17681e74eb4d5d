# inventory/models.py

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _
from solo.models import SingletonModel

from core.models import BaseModel, TimeStampedModel

from inventory.managers import (
    BranchManager,
    BranchStockManager,
    BranchTransferItemManager,
    BranchTransferManager,
    ProductBatchManager,
    ProductManager,
    StockMovementManager,
)

# ============================================================
# Constants
# ============================================================
DECIMAL_ZERO = Decimal("0.000")


# ============================================================
# Inventory Settings
# ============================================================
class InventorySettings(SingletonModel):
    mark_consumed_when_empty = models.BooleanField(
        default=True,
        verbose_name=_("تعليم التشغيلة كمستهلكة عند نفادها"),
        help_text=_("عند وصول الكمية المتبقية إلى صفر تتحول حالة التشغيلة إلى مستهلكة."),
    )
    enforce_global_batch_numbers = models.BooleanField(
        default=True,
        verbose_name=_("منع تكرار رقم التشغيلة بين المنتجات"),
    )
    batch_number_fallback_prefix = models.CharField(
        max_length=3,
        default="PRD",
        verbose_name=_("بادئة رقم التشغيلة الافتراضية"),
    )

    class Meta:
        verbose_name = _("إعدادات المخزون")

    def __str__(self) -> str:
        return "Inventory settings"


# ============================================================
# Master data (identity only)
# ============================================================
class Branch(BaseModel):
    code = models.CharField(max_length=32, unique=True, verbose_name=_("الرمز"))
    name = models.CharField(max_length=200, verbose_name=_("الاسم"))
    is_active = models.BooleanField(default=True, verbose_name=_("نشط"))

    objects = BranchManager()

    class Meta:
        verbose_name = _("فرع")
        verbose_name_plural = _("الفروع")
        ordering = ("code",)

    def __str__(self) -> str:
        return f"{self.code} - {self.name}"


class Product(BaseModel):
    code = models.CharField(max_length=64, unique=True, verbose_name=_("رمز المنتج"))
    name = models.CharField(max_length=200, verbose_name=_("اسم المنتج"))
    is_active = models.BooleanField(default=True, verbose_name=_("نشط"))

    objects = ProductManager()

    class Meta:
        verbose_name = _("منتج")
        verbose_name_plural = _("المنتجات")
        ordering = ("code",)

    def __str__(self) -> str:
        return f"{self.code} - {self.name}"


# ============================================================
# Batches
# ============================================================
class ProductBatch(BaseModel):
    class Status(models.TextChoices):
        ACTIVE = "active", _("نشطة")
        EXPIRED = "expired", _("منتهية الصلاحية")
        RECALLED = "recalled", _("مسحوبة")
        CONSUMED = "consumed", _("مستهلكة")

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="batches", verbose_name=_("المنتج"))
    batch_number = models.CharField(max_length=64, verbose_name=_("رقم التشغيلة"))
    supplier_batch_number = models.CharField(max_length=64, blank=True, verbose_name=_("رقم تشغيلة المورد"))

    manufacturing_date = models.DateField(null=True, blank=True, verbose_name=_("تاريخ الإنتاج"))
    expiry_date = models.DateField(null=True, blank=True, verbose_name=_("تاريخ الانتهاء"))

    cost_price = models.DecimalField(max_digits=12, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("سعر التكلفة"))
    purchase_price = models.DecimalField(max_digits=12, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("سعر الشراء"))
    trade_price = models.DecimalField(max_digits=12, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("سعر الجملة"))
    mrp = models.DecimalField(max_digits=12, decimal_places=3, default=DECIMAL_ZERO, verbose_name=_("سعر البيع للمستهلك"))

    quantity_received = models.PositiveIntegerField(default=0, verbose_name=_("الكمية المستلمة"))
    quantity_remaining = models.PositiveIntegerField(default=0, verbose_name=_("الكمية المتبقية"))

    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
        verbose_name=_("الحالة"),
    )

    objects = ProductBatchManager()

    PRICE_FIELDS = ("cost_price", "purchase_price", "trade_price", "mrp")
    DATE_FIELDS = ("manufacturing_date", "expiry_date")

    class Meta:
        verbose_name = _("تشغيلة")
        verbose_name_plural = _("التشغيلات")
        ordering = ("-created_at", "-id")
        constraints = [
            models.UniqueConstraint(fields=["product", "batch_number"], name="uniq_batch_product_number"),
            models.CheckConstraint(
                condition=Q(quantity_remaining__lte=F("quantity_received")),
                name="batch_remaining_lte_received",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.batch_number} ({self.product.code})"


class ProductBranchBatchStock(TimeStampedModel):
    """
    Quantity of one batch held at one branch.
    Rows are kept at zero instead of being deleted.
    """

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="branch_stocks", verbose_name=_("المنتج"))
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="batch_stocks", verbose_name=_("الفرع"))
    batch = models.ForeignKey(ProductBatch, on_delete=models.PROTECT, related_name="branch_stocks", verbose_name=_("التشغيلة"))
    quantity = models.PositiveIntegerField(default=0, verbose_name=_("الكمية"))

    objects = BranchStockManager()

    class Meta:
        verbose_name = _("رصيد تشغيلة في فرع")
        verbose_name_plural = _("أرصدة التشغيلات في الفروع")
        ordering = ("-created_at", "-id")
        constraints = [
            models.UniqueConstraint(fields=["product", "branch", "batch"], name="uniq_branch_batch_stock"),
        ]

    def __str__(self) -> str:
        return f"{self.batch} @ {self.branch.code} = {self.quantity}"


# ============================================================
# Transfers
# ============================================================
class BranchTransfer(BaseModel):
    class Status(models.TextChoices):
        PENDING = "pending", _("قيد الانتظار")
        APPROVED = "approved", _("معتمد")
        COMPLETED = "completed", _("مكتمل")
        CANCELLED = "cancelled", _("ملغي")

    from_branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="outgoing_transfers", verbose_name=_("من فرع"))
    to_branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="incoming_transfers", verbose_name=_("إلى فرع"))
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("الحالة"),
    )
    note = models.TextField(blank=True, verbose_name=_("ملاحظات"))
    completed_at = models.DateTimeField(null=True, blank=True, verbose_name=_("تاريخ الإكمال"))
    cancelled_at = models.DateTimeField(null=True, blank=True, verbose_name=_("تاريخ الإلغاء"))

    objects = BranchTransferManager()

    class Meta:
        verbose_name = _("تحويل بين الفروع")
        verbose_name_plural = _("التحويلات بين الفروع")
        ordering = ("-created_at", "-id")
        constraints = [
            models.CheckConstraint(condition=~Q(from_branch=F("to_branch")), name="transfer_branches_differ"),
        ]

    def __str__(self) -> str:
        return f"TRF-{self.pk}: {self.from_branch.code} → {self.to_branch.code}"


class BranchTransferItem(TimeStampedModel):
    transfer = models.ForeignKey(BranchTransfer, on_delete=models.CASCADE, related_name="items", verbose_name=_("التحويل"))
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="transfer_items", verbose_name=_("المنتج"))
    batch = models.ForeignKey(ProductBatch, on_delete=models.PROTECT, related_name="transfer_items", verbose_name=_("التشغيلة"))
    quantity = models.PositiveIntegerField(verbose_name=_("الكمية"))

    objects = BranchTransferItemManager()

    class Meta:
        verbose_name = _("بند تحويل")
        verbose_name_plural = _("بنود التحويل")
        ordering = ("id",)
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="transfer_item_quantity_positive"),
        ]

    def __str__(self) -> str:
        return f"{self.batch} × {self.quantity}"


# ============================================================
# Movement log (append-only)
# ============================================================
class StockMovement(TimeStampedModel):
    class Direction(models.TextChoices):
        IN = "in", _("وارد")
        OUT = "out", _("صادر")

    class Reason(models.TextChoices):
        PURCHASE = "purchase", _("شراء")
        PURCHASE_REVERSAL = "purchase_reversal", _("عكس شراء")
        SALE = "sale", _("بيع")
        SALE_REVERSAL = "sale_reversal", _("عكس بيع")
        TRANSFER_IN = "transfer_in", _("تحويل وارد")
        TRANSFER_OUT = "transfer_out", _("تحويل صادر")

    REASON_TO_DIRECTION = {
        Reason.PURCHASE: Direction.IN,
        Reason.PURCHASE_REVERSAL: Direction.OUT,
        Reason.SALE: Direction.OUT,
        Reason.SALE_REVERSAL: Direction.IN,
        Reason.TRANSFER_IN: Direction.IN,
        Reason.TRANSFER_OUT: Direction.OUT,
    }

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="movements", verbose_name=_("المنتج"))
    batch = models.ForeignKey(ProductBatch, on_delete=models.PROTECT, related_name="movements", verbose_name=_("التشغيلة"))
    branch = models.ForeignKey(Branch, on_delete=models.PROTECT, related_name="movements", verbose_name=_("الفرع"))
    direction = models.CharField(max_length=8, choices=Direction.choices, verbose_name=_("الاتجاه"))
    quantity = models.PositiveIntegerField(verbose_name=_("الكمية"))
    reason = models.CharField(max_length=32, choices=Reason.choices, db_index=True, verbose_name=_("السبب"))
    transfer = models.ForeignKey(
        BranchTransfer,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="movements",
        verbose_name=_("التحويل"),
    )
    reference = models.CharField(max_length=100, blank=True, verbose_name=_("المرجع"))
    request_key = models.CharField(max_length=100, null=True, blank=True, unique=True, verbose_name=_("مفتاح الطلب"))
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="stock_movements",
        verbose_name=_("أنشئ بواسطة"),
    )

    objects = StockMovementManager()

    class Meta:
        verbose_name = _("حركة مخزون")
        verbose_name_plural = _("حركات المخزون")
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=["branch", "created_at"], name="movement_branch_created_idx"),
            models.Index(fields=["batch", "branch"], name="movement_batch_branch_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="movement_quantity_positive"),
        ]

    def __str__(self) -> str:
        sign = "+" if self.direction == self.Direction.IN else "-"
        return f"{self.batch_id}@{self.branch_id} {sign}{self.quantity} ({self.reason})"

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.direction == self.Direction.IN else -self.quantity

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Stock movements are immutable.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Stock movements cannot be deleted.")
