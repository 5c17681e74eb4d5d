# core/models/base.py
import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class TimeStampedModel(models.Model):
    """
    created_at / updated_at.

    queryset.update() skips auto_now, so every conditional stock update
    passes updated_at itself.
    """
    created_at = models.DateTimeField(default=timezone.now, editable=False, verbose_name=_("تاريخ الإنشاء"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("آخر تحديث"))

    class Meta:
        abstract = True


class UserStampedModel(models.Model):
    """created_by / updated_by, filled by services when a user is passed in."""
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="%(app_label)s_%(class)s_created",
        verbose_name=_("أنشئ بواسطة"),
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="%(app_label)s_%(class)s_updated",
        verbose_name=_("آخر تعديل بواسطة"),
    )

    class Meta:
        abstract = True


class BaseModel(TimeStampedModel, UserStampedModel):
    """
    Documents and master data (products, branches, batches, transfers,
    orders). Nothing here is soft-deleted: stock rows stay at zero and
    movements are append-only.
    """
    public_id = models.UUIDField(
        default=uuid.uuid4,
        unique=True,
        editable=False,
        db_index=True,
        verbose_name=_("المعرّف العام (UUID)"),
    )

    class Meta:
        abstract = True

    def stamp_update(self, user=None) -> list[str]:
        """
        Set updated_at (and updated_by for a real user) and return the
        field names to add to save(update_fields=...).
        """
        self.updated_at = timezone.now()
        fields = ["updated_at"]
        if user is not None and getattr(user, "is_authenticated", False):
            self.updated_by = user
            fields.append("updated_by")
        return fields
