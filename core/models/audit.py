# core/models/audit.py
from django.conf import settings
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils.translation import gettext_lazy as _

from core.managers import AuditLogManager

from .base import TimeStampedModel


class AuditLog(TimeStampedModel):
    """
    Who did what to which document: transfers, order item edits,
    cancellations, batch status changes.

    Quantity history is inventory.StockMovement, not this table.
    """

    class Action(models.TextChoices):
        CREATE = "create", _("إنشاء")
        UPDATE = "update", _("تعديل")
        DELETE = "delete", _("حذف")
        STATUS_CHANGE = "status_change", _("تغيير حالة")
        STOCK = "stock", _("حركة مخزون")
        OTHER = "other", _("أخرى")

    action = models.CharField(max_length=32, choices=Action.choices, db_index=True, verbose_name=_("العملية"))
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="inventory_audit_logs",
        verbose_name=_("المستخدم"),
    )

    target_content_type = models.ForeignKey(
        ContentType,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
        verbose_name=_("نوع المستند"),
    )
    target_object_id = models.CharField(max_length=64, null=True, blank=True, verbose_name=_("معرّف المستند"))
    target = GenericForeignKey("target_content_type", "target_object_id")

    message = models.TextField(blank=True, verbose_name=_("الوصف"))
    # quantities, batch numbers, before/after snapshots; Decimals are stored as strings
    extra = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder, verbose_name=_("بيانات إضافية"))

    objects = AuditLogManager()

    class Meta:
        verbose_name = _("سجل تدقيق")
        verbose_name_plural = _("سجلات التدقيق")
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=["target_content_type", "target_object_id", "created_at"], name="audit_target_idx"),
        ]

    def __str__(self) -> str:
        return f"[{self.action}] {self.message[:80] or f'#{self.pk}'}"
