"""
TaxBook UAE - Database Models
"""

from taxbook.models.base import BaseModel, TimestampMixin
from taxbook.models.audit import CalculationAuditLog, CalculationAuditStep

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "CalculationAuditLog",
    "CalculationAuditStep",
]
