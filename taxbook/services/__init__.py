"""
TaxBook UAE - Services Package

Ledger aggregation, tax engines, statement generation and audit trails.
"""

from taxbook.services.chart_of_accounts import ChartOfAccounts, default_chart_of_accounts
from taxbook.services.ledger_service import LedgerSnapshot, Posting, resolve_vat_treatment
from taxbook.services.audit_trail_service import (
    AuditTrailBuilder,
    AuditTrailRecorder,
    AuditTrailSink,
    InMemoryAuditSink,
    SQLAlchemyAuditSink,
    verify_audit_trail,
)
from taxbook.services.financial_statements_service import FinancialStatementsGenerator
