# purchases/managers.py
from django.db import models

from core.managers import OrderItemQuerySet, OrderQuerySet


class PurchaseOrderQuerySet(OrderQuerySet):
    search_fields = ("supplier_name", "supplier_phone", "note")

    def for_supplier(self, supplier_name):
        return self.filter(supplier_name__iexact=supplier_name)


class PurchaseOrderManager(models.Manager.from_queryset(PurchaseOrderQuerySet)):  # type: ignore[misc]
    pass


class PurchaseOrderItemQuerySet(OrderItemQuerySet):
    def for_batch_number(self, batch_number):
        return self.filter(batch_number=batch_number)


class PurchaseOrderItemManager(models.Manager.from_queryset(PurchaseOrderItemQuerySet)):  # type: ignore[misc]
    pass
