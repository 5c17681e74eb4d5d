# core/services/audit.py

from __future__ import annotations

from typing import Any, Mapping, Optional

from django.contrib.contenttypes.models import ContentType

from core.models import AuditLog


def _clean_action(action) -> str:
    value = action.value if isinstance(action, AuditLog.Action) else str(action)
    if value not in AuditLog.Action.values:
        raise ValueError(f"Invalid audit action '{value}'. Allowed values: {sorted(AuditLog.Action.values)}")
    return value


def log_event(
    *,
    action: str | AuditLog.Action,
    message: str = "",
    actor: Any = None,
    target: Optional[Any] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> AuditLog:
    """
    Write one audit entry.

    actor is kept only for an authenticated user; target is the
    document (order, transfer, batch). extra goes through
    DjangoJSONEncoder, so Decimal and date values are accepted.
    """
    entry = AuditLog(
        action=_clean_action(action),
        message=message or "",
        extra=dict(extra) if extra is not None else {},
    )

    if actor is not None and getattr(actor, "is_authenticated", False):
        entry.actor = actor

    if target is not None and target.pk is not None:
        entry.target_content_type = ContentType.objects.get_for_model(target, for_concrete_model=True)
        entry.target_object_id = str(target.pk)

    entry.save()
    return entry


def audit_trail(target, *, action: Optional[str] = None):
    """Entries for one document, newest first."""
    qs = AuditLog.objects.for_target(target).select_related("actor")
    if action:
        qs = qs.with_action(_clean_action(action))
    return qs
