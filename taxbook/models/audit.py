"""
TaxBook UAE - Calculation Audit Models

Persisted audit trail for VAT, CIT and taxable income calculations.
Each calculation writes one header row and one row per computation step.

These tables should have no UPDATE or DELETE permissions.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import JSON, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taxbook.models.base import BaseModel


class CalculationAuditLog(BaseModel):
    """Header row for one completed tax calculation."""

    __tablename__ = "calculation_audit_logs"

    calculation_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        comment="VAT, CIT or TAXABLE_INCOME",
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    method: Mapped[str] = mapped_column(String(100), nullable=False)
    regulatory_reference: Mapped[str] = mapped_column(Text, nullable=False)
    final_result: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # Headline figures of the result
    summary: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    steps: Mapped[List["CalculationAuditStep"]] = relationship(
        back_populates="audit_log",
        cascade="all, delete-orphan",
        order_by="CalculationAuditStep.step",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<CalculationAuditLog(type={self.calculation_type}, company={self.company_name})>"


class CalculationAuditStep(BaseModel):
    """One ordered computation step of a calculation."""

    __tablename__ = "calculation_audit_steps"

    audit_log_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("calculation_audit_logs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    formula: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    regulatory_reference: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    audit_log: Mapped["CalculationAuditLog"] = relationship(back_populates="steps")
