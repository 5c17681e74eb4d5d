# sales/managers.py
from django.db import models

from core.managers import OrderItemQuerySet, OrderQuerySet


# ===================================================================
# أوامر البيع
# ===================================================================

class SalesOrderQuerySet(OrderQuerySet):
    search_fields = ("customer_name", "customer_phone", "note")

    def for_customer_phone(self, phone):
        return self.filter(customer_phone=phone)


class SalesOrderManager(models.Manager.from_queryset(SalesOrderQuerySet)):  # type: ignore[misc]
    pass


# ===================================================================
# بنود البيع
# ===================================================================

class SalesOrderItemQuerySet(OrderItemQuerySet):
    pass


class SalesOrderItemManager(models.Manager.from_queryset(SalesOrderItemQuerySet)):  # type: ignore[misc]
    pass
