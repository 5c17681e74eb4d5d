from .base import BaseModel, TimeStampedModel, UserStampedModel
from .audit import AuditLog
from .sequences import NumberSequence
from .orders import AbstractOrder, AbstractOrderItem, AbstractOrderPayment

__all__ = [
    "BaseModel",
    "TimeStampedModel",
    "UserStampedModel",
    "AuditLog",
    # Auto Number
    "NumberSequence",
    # Orders
    "AbstractOrder",
    "AbstractOrderItem",
    "AbstractOrderPayment",
]
