"""
TaxBook UAE - Schemas Package

Pydantic schemas for ledger input, tax results and financial statements.
"""

from taxbook.schemas.ledger import (
    AccountingBasis,
    AssetTransaction,
    BalanceDirection,
    ChartOfAccountEntry,
    CompanyTaxProfile,
    EquityTransaction,
    ExpenseTransaction,
    LiabilityTransaction,
    OpeningBalance,
    Period,
    RevenueTransaction,
    StatementLine,
    Transaction,
    TransactionAdapter,
    TransactionKind,
    VATTreatment,
)
from taxbook.schemas.tax import (
    AuditTrailEntry,
    CalculationAuditRecord,
    CalculationType,
    CITResult,
    ComplianceCheck,
    ComplianceWarning,
    ReliefPath,
    TaxableIncomeComputation,
    VATAdjustments,
    VATLineItem,
    VATResult,
    VATSummary,
)
from taxbook.schemas.financial import (
    BalanceSheet,
    CashFlowStatement,
    FinancialStatementNote,
    FinancialStatements,
    IncomeStatement,
)
