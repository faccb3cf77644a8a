"""
TaxBook UAE - Audit Trail Tests

Trail construction, verification against reported figures, and
persistence through audit sinks.
"""

import logging
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from taxbook.models.audit import CalculationAuditLog, CalculationAuditStep
from taxbook.schemas.tax import AuditTrailEntry, CalculationType
from taxbook.services.audit_trail_service import (
    AuditTrailBuilder,
    AuditTrailRecorder,
    AuditTrailSink,
    InMemoryAuditSink,
    SQLAlchemyAuditSink,
    verify_audit_trail,
)
from taxbook.services.tax_calculators import CITService, VATCalculator, VATService
from taxbook.utils.error_handling import AuditPersistenceException, AuditTrailMismatchException, ErrorCode

from tests.conftest import FY2024, Q1_2024


class FailingSink:
    """Sink that always fails to write."""

    async def record(self, record):
        raise RuntimeError("audit store unavailable")


class BrokenSession:
    """Stands in for an AsyncSession whose commit fails."""

    def __init__(self):
        self.added = []
        self.rolled_back = False

    def add(self, obj):
        self.added.append(obj)

    async def commit(self):
        raise SQLAlchemyError("disk I/O error")

    async def rollback(self):
        self.rolled_back = True


class TestAuditTrailBuilder:
    """Step numbering and verification."""

    def test_steps_numbered_in_order(self):
        trail = AuditTrailBuilder()
        trail.add("First", "1 + 1 = 2", Decimal("2"), "Ref A", ["T-1"])
        trail.add("Second", "2 x 3 = 6", Decimal("6"), "Ref B")
        entries = trail.build()

        assert [e.step for e in entries] == [1, 2]
        assert entries[0].transaction_ids == ("T-1",)
        assert trail.last_result == Decimal("6")
        assert len(trail) == 2

    def test_empty_builder(self):
        assert AuditTrailBuilder().last_result is None

    def test_verify_matching_trail(self):
        trail = AuditTrailBuilder()
        trail.add("Only", "x = 5", Decimal("5.00"), "Ref")

        assert verify_audit_trail(trail.build(), Decimal("5"))

    def test_verify_mismatch(self):
        trail = AuditTrailBuilder()
        trail.add("Only", "x = 5", Decimal("5.00"), "Ref")

        with pytest.raises(AuditTrailMismatchException) as exc_info:
            verify_audit_trail(trail.build(), Decimal("6"))

        assert exc_info.value.code == ErrorCode.AUDIT_TRAIL_MISMATCH

    def test_verify_empty_trail(self):
        with pytest.raises(AuditTrailMismatchException):
            verify_audit_trail([], Decimal("0"))

    def test_verify_out_of_order(self):
        entries = [
            AuditTrailEntry(step=2, description="b", formula="", result=Decimal("1"), regulatory_reference="r"),
            AuditTrailEntry(step=1, description="a", formula="", result=Decimal("1"), regulatory_reference="r"),
        ]
        with pytest.raises(AuditTrailMismatchException):
            verify_audit_trail(entries, Decimal("1"))


class TestAuditRecorder:
    """Persistence is best effort and never changes a result."""

    def test_sinks_satisfy_protocol(self):
        assert isinstance(InMemoryAuditSink(), AuditTrailSink)
        assert isinstance(FailingSink(), AuditTrailSink)

    @pytest.mark.asyncio
    async def test_no_sink(self, settings, scenario_one_transactions):
        result = VATCalculator(settings).calculate_vat(scenario_one_transactions)
        record = VATCalculator.to_audit_record(result, "Falcon Trading LLC")

        assert await AuditTrailRecorder().record(record) is False

    @pytest.mark.asyncio
    async def test_vat_service_records_trail(self, settings, trading_snapshot):
        sink = InMemoryAuditSink()
        result = await VATService(sink, settings).calculate_and_record(trading_snapshot, FY2024)

        assert len(sink.records) == 1
        record = sink.records[0]
        assert record.calculation_type == CalculationType.VAT
        assert record.company_name == "Falcon Trading LLC"
        assert record.final_result == result.summary.net_position
        assert record.entries == tuple(result.audit_trail)
        assert record.period_start == FY2024.start_date

    @pytest.mark.asyncio
    async def test_cit_service_records_both_trails(self, settings, trading_snapshot):
        sink = InMemoryAuditSink()
        result = await CITService(sink, settings).calculate_and_record(trading_snapshot, FY2024)

        assert [r.calculation_type for r in sink.records] == [CalculationType.TAXABLE_INCOME, CalculationType.CIT]
        assert sink.records[0].final_result == Decimal("184000.00")
        assert sink.records[1].final_result == result.cit_due
        assert sink.records[1].method == "small_business_relief"

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_affect_result(self, settings, trading_snapshot, caplog):
        expected = VATCalculator(settings).calculate_for_period(trading_snapshot, Q1_2024)

        with caplog.at_level(logging.ERROR, logger="taxbook.services.audit_trail_service"):
            result = await VATService(FailingSink(), settings).calculate_and_record(trading_snapshot, Q1_2024)

        assert result == expected
        assert "Failed to persist VAT audit trail" in caplog.text

    @pytest.mark.asyncio
    async def test_sqlalchemy_sink_wraps_database_errors(self, settings, scenario_one_transactions):
        session = BrokenSession()
        result = VATCalculator(settings).calculate_vat(scenario_one_transactions)

        with pytest.raises(AuditPersistenceException) as exc_info:
            await SQLAlchemyAuditSink(session).record(VATCalculator.to_audit_record(result, "Falcon Trading LLC"))

        assert session.rolled_back
        assert exc_info.value.code == ErrorCode.AUDIT_PERSISTENCE_ERROR


class TestSQLAlchemyAuditSink:
    """Audit rows written to the database."""

    @pytest.mark.asyncio
    async def test_vat_trail_persisted(self, db_session, settings, trading_snapshot):
        result = await VATService(SQLAlchemyAuditSink(db_session), settings).calculate_and_record(
            trading_snapshot, FY2024
        )

        logs = (await db_session.execute(select(CalculationAuditLog))).scalars().all()
        assert len(logs) == 1
        log = logs[0]
        assert log.calculation_type == "VAT"
        assert log.method == "VAT_RETURN"
        assert log.final_result == Decimal("10000.00")
        assert log.summary["output_vat"] == "16500.00"
        assert [s.step for s in log.steps] == [1, 2, 3, 4, 5]
        assert log.steps[-1].result == result.summary.net_position

    @pytest.mark.asyncio
    async def test_cit_trails_persisted(self, db_session, settings, trading_snapshot):
        await CITService(SQLAlchemyAuditSink(db_session), settings).calculate_and_record(trading_snapshot, FY2024)

        logs = (await db_session.execute(
            select(CalculationAuditLog).order_by(CalculationAuditLog.calculation_type)
        )).scalars().all()
        assert [log.calculation_type for log in logs] == ["CIT", "TAXABLE_INCOME"]

        steps = (await db_session.execute(select(CalculationAuditStep))).scalars().all()
        assert len(steps) == sum(len(log.steps) for log in logs)
        income_steps = {s.description: s for s in logs[1].steps}
        assert income_steps["Add back non-deductible expenses"].transaction_ids == ["T-12"]
