# core/services/numbering.py
from __future__ import annotations

from django.db import transaction
from django.utils import timezone

from core.models import NumberSequence


def month_period(now=None) -> str:
    """YYMM of the local date, e.g. "2610"."""
    now = timezone.localtime(now or timezone.now())
    return now.strftime("%y%m")


@transaction.atomic
def next_sequence_value(key: str, period: str = "", start: int = 1) -> int:
    return NumberSequence.objects.advance(key, period, start)
