"""
TaxBook UAE - Audit Trail Service

Every figure produced by the VAT and CIT engines carries an ordered,
citation-backed audit trail. This module builds those trails, verifies
them against the reported summary figure, and hands completed trails to
an injected sink once the calculation is finished.

Sinks:
- InMemoryAuditSink: keeps records in a list (tests, dry runs)
- SQLAlchemyAuditSink: writes CalculationAuditLog / CalculationAuditStep rows
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxbook.models.audit import CalculationAuditLog, CalculationAuditStep
from taxbook.schemas.tax import AuditTrailEntry, CalculationAuditRecord
from taxbook.utils.error_handling import AuditPersistenceException, AuditTrailMismatchException

logger = logging.getLogger(__name__)


class AuditTrailBuilder:
    """Append-only builder that assigns step ordinals."""

    def __init__(self):
        self._entries: List[AuditTrailEntry] = []

    def add(
        self,
        description: str,
        formula: str,
        result: Decimal,
        regulatory_reference: str,
        transaction_ids: Iterable[str] = (),
    ) -> AuditTrailEntry:
        entry = AuditTrailEntry(
            step=len(self._entries) + 1,
            description=description,
            formula=formula,
            result=result,
            regulatory_reference=regulatory_reference,
            transaction_ids=tuple(transaction_ids),
        )
        self._entries.append(entry)
        return entry

    @property
    def last_result(self) -> Optional[Decimal]:
        return self._entries[-1].result if self._entries else None

    def build(self) -> List[AuditTrailEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def verify_audit_trail(entries: Sequence[AuditTrailEntry], expected_result: Decimal) -> bool:
    """
    Check that steps are strictly increasing and that the final entry's
    result equals the reported summary figure.

    Raises:
        AuditTrailMismatchException: if either condition fails
    """
    if not entries:
        raise AuditTrailMismatchException("Audit trail is empty", details={"expected": str(expected_result)})

    previous = 0
    for entry in entries:
        if entry.step <= previous:
            raise AuditTrailMismatchException(
                f"Audit trail steps are out of order at step {entry.step}",
                details={"previous_step": previous, "step": entry.step},
            )
        previous = entry.step

    last = entries[-1]
    if last.result != expected_result:
        raise AuditTrailMismatchException(
            f"Final audit step result {last.result} does not match reported figure {expected_result}",
            details={"step": last.step, "result": str(last.result), "expected": str(expected_result)},
        )
    return True


# ===========================================
# SINKS
# ===========================================

@runtime_checkable
class AuditTrailSink(Protocol):
    """Destination for completed calculation audit trails."""

    async def record(self, record: CalculationAuditRecord) -> None:
        ...


class InMemoryAuditSink:
    """Keeps records in memory."""

    def __init__(self):
        self.records: List[CalculationAuditRecord] = []

    async def record(self, record: CalculationAuditRecord) -> None:
        self.records.append(record)


class SQLAlchemyAuditSink:
    """Persists audit trails through an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, record: CalculationAuditRecord) -> None:
        log = CalculationAuditLog(
            calculation_type=record.calculation_type.value,
            company_name=record.company_name,
            period_start=record.period_start,
            period_end=record.period_end,
            method=record.method,
            regulatory_reference=record.regulatory_reference,
            final_result=record.final_result,
            summary=record.summary,
            steps=[
                CalculationAuditStep(
                    step=entry.step,
                    description=entry.description,
                    formula=entry.formula,
                    result=entry.result,
                    regulatory_reference=entry.regulatory_reference,
                    transaction_ids=list(entry.transaction_ids),
                )
                for entry in record.entries
            ],
        )
        try:
            self.db.add(log)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise AuditPersistenceException(original_error=e) from e


class AuditTrailRecorder:
    """
    Hands completed audit trails to a sink.

    Called strictly after a calculation has returned. A failing sink is
    logged and never affects the computed result.
    """

    def __init__(self, sink: Optional[AuditTrailSink] = None):
        self.sink = sink

    async def record(self, record: CalculationAuditRecord) -> bool:
        """Persist a record. Returns False when no sink is set or the write failed."""
        if self.sink is None:
            return False
        try:
            await self.sink.record(record)
        except Exception:
            logger.exception(
                f"Failed to persist {record.calculation_type.value} audit trail "
                f"for {record.company_name}"
            )
            return False
        logger.debug(f"Persisted {record.calculation_type.value} audit trail with {len(record.entries)} steps")
        return True
