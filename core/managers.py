# core/managers.py
from django.db import models
from django.db.models import Q


def _pk(obj):
    return obj.pk if hasattr(obj, "pk") else obj


# ===================================================================
# Orders (purchases / sales)
# ===================================================================

class OrderQuerySet(models.QuerySet):
    """
    Subclasses set `search_fields` to the text columns used by search().
    """

    search_fields: tuple[str, ...] = ("note",)

    def for_branch(self, branch):
        return self.filter(branch_id=_pk(branch))

    def with_status(self, status):
        return self.filter(status=status)

    def posted(self):
        return self.filter(status=self.model.Status.POSTED)

    def cancelled(self):
        return self.filter(status=self.model.Status.CANCELLED)

    def with_due(self):
        return self.filter(due_total__gt=0)

    def search(self, query):
        """
        Free-text search over `search_fields`; a numeric query also
        matches the order id.
        """
        if not query:
            return self

        lookup = Q()
        for field in self.search_fields:
            lookup |= Q(**{f"{field}__icontains": query})

        if str(query).isdigit():
            lookup |= Q(pk=query)

        return self.filter(lookup)


class OrderItemQuerySet(models.QuerySet):
    def for_order(self, order):
        return self.filter(order_id=_pk(order))

    def for_product(self, product):
        return self.filter(product_id=_pk(product))

    def for_batch(self, batch):
        return self.filter(batch_id=_pk(batch))

    def tracked(self):
        return self.filter(batch__isnull=False)


# ===================================================================
# Audit trail
# ===================================================================

class AuditLogQuerySet(models.QuerySet):
    def for_target(self, obj):
        from django.contrib.contenttypes.models import ContentType

        ct = ContentType.objects.get_for_model(obj, for_concrete_model=True)
        return self.filter(target_content_type=ct, target_object_id=str(obj.pk))

    def by_actor(self, user):
        return self.filter(actor_id=_pk(user))

    def with_action(self, action):
        return self.filter(action=action)


class AuditLogManager(models.Manager.from_queryset(AuditLogQuerySet)):  # type: ignore[misc]
    pass


# ===================================================================
# Sequences
# ===================================================================

class NumberSequenceManager(models.Manager):
    def advance(self, key: str, period: str = "", start: int = 1) -> int:
        """
        Lock the (key, period) counter, bump it and return the new value.
        Must run inside a transaction.
        """
        seq, _created = self.select_for_update().get_or_create(
            key=key,
            period=period,
            defaults={"last_value": start - 1},
        )
        seq.last_value += 1
        seq.save(update_fields=["last_value"])
        return seq.last_value
