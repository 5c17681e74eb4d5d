# core/models/sequences.py
from django.db import models
from django.utils.translation import gettext_lazy as _

from core.managers import NumberSequenceManager


class NumberSequence(models.Model):
    """
    Counter per key and period. Batch numbers use one key per product
    and one period per month:

        key="inventory.ProductBatch:17", period="2610", last_value=4
        -> next generated number ends with 005
    """

    key = models.CharField(max_length=100, verbose_name=_("المفتاح"))
    period = models.CharField(max_length=16, blank=True, verbose_name=_("الفترة"))
    last_value = models.PositiveIntegerField(default=0, verbose_name=_("آخر قيمة"))

    objects = NumberSequenceManager()

    class Meta:
        verbose_name = _("تسلسل ترقيم")
        verbose_name_plural = _("تسلسلات الترقيم")
        constraints = [
            models.UniqueConstraint(fields=["key", "period"], name="uniq_number_sequence_key_period"),
        ]

    def __str__(self) -> str:
        return f"{self.key}/{self.period or '-'}: {self.last_value}"
