"""
TaxBook UAE - Financial Statement Schemas

Pydantic schemas for the Income Statement, Balance Sheet, Cash Flow
Statement and the FinancialStatements aggregate.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from taxbook.schemas.ledger import AccountingBasis, StatementLine
from taxbook.schemas.tax import ReliefPath, ResultModel

_ZERO = Decimal("0")


class StatementItem(ResultModel):
    """Account-level line backing a statement figure."""
    account_code: str
    account_name: str
    statement_line: StatementLine
    amount: Decimal


# =============================================================================
# INCOME STATEMENT
# =============================================================================

class RevenueSection(ResultModel):
    operating_revenue: Decimal = _ZERO
    other_income: Decimal = _ZERO
    total_revenue: Decimal = _ZERO


class ExpenseSection(ResultModel):
    cost_of_sales: Decimal = _ZERO
    operating_expenses: Decimal = _ZERO
    administrative_expenses: Decimal = _ZERO
    finance_expenses: Decimal = _ZERO
    other_expenses: Decimal = _ZERO
    total_expenses: Decimal = _ZERO


class IncomeStatement(ResultModel):
    period_start: date
    period_end: date
    revenue: RevenueSection
    expenses: ExpenseSection
    gross_profit: Decimal
    operating_profit: Decimal
    net_income: Decimal
    items: List[StatementItem] = []


# =============================================================================
# BALANCE SHEET
# =============================================================================

class CurrentAssets(ResultModel):
    cash: Decimal = _ZERO
    accounts_receivable: Decimal = _ZERO
    inventory: Decimal = _ZERO
    prepaid_expenses: Decimal = _ZERO
    other_current_assets: Decimal = _ZERO
    total: Decimal = _ZERO


class NonCurrentAssets(ResultModel):
    property_plant_equipment: Decimal = _ZERO
    intangible_assets: Decimal = _ZERO
    investments: Decimal = _ZERO
    other_non_current_assets: Decimal = _ZERO
    total: Decimal = _ZERO


class AssetsSection(ResultModel):
    current_assets: CurrentAssets
    non_current_assets: NonCurrentAssets
    total_assets: Decimal


class CurrentLiabilities(ResultModel):
    accounts_payable: Decimal = _ZERO
    short_term_loans: Decimal = _ZERO
    accrued_expenses: Decimal = _ZERO
    tax_payable: Decimal = _ZERO
    other_current_liabilities: Decimal = _ZERO
    total: Decimal = _ZERO


class NonCurrentLiabilities(ResultModel):
    long_term_loans: Decimal = _ZERO
    provisions: Decimal = _ZERO
    other_non_current_liabilities: Decimal = _ZERO
    total: Decimal = _ZERO


class LiabilitiesSection(ResultModel):
    current_liabilities: CurrentLiabilities
    non_current_liabilities: NonCurrentLiabilities
    total_liabilities: Decimal


class EquitySection(ResultModel):
    share_capital: Decimal = _ZERO
    retained_earnings: Decimal = _ZERO
    current_year_earnings: Decimal = _ZERO
    other_reserves: Decimal = _ZERO
    total_equity: Decimal = _ZERO


class BalanceSheet(ResultModel):
    as_of_date: date
    earnings_from: date
    assets: AssetsSection
    liabilities: LiabilitiesSection
    equity: EquitySection
    total_liabilities_and_equity: Decimal
    is_balanced: bool
    current_ratio: Optional[Decimal] = Field(None, description="Current assets / current liabilities")
    debt_to_equity_ratio: Optional[Decimal] = Field(None, description="Total liabilities / total equity")


# =============================================================================
# CASH FLOW STATEMENT
# =============================================================================

class OperatingActivities(ResultModel):
    net_income: Decimal
    depreciation: Decimal = _ZERO
    other_non_cash_items: Decimal = _ZERO
    change_in_receivables: Decimal = _ZERO
    change_in_inventory: Decimal = _ZERO
    change_in_payables: Decimal = _ZERO
    other_working_capital_changes: Decimal = _ZERO
    net_cash_from_operating: Decimal


class InvestingActivities(ResultModel):
    purchase_of_assets: Decimal = _ZERO
    sale_of_assets: Decimal = _ZERO
    investments: Decimal = _ZERO
    net_cash_from_investing: Decimal = _ZERO


class FinancingActivities(ResultModel):
    borrowings: Decimal = _ZERO
    loan_repayments: Decimal = _ZERO
    dividends_paid: Decimal = _ZERO
    share_capital: Decimal = _ZERO
    net_cash_from_financing: Decimal = _ZERO


class CashFlowStatement(ResultModel):
    period_start: date
    period_end: date
    operating_activities: OperatingActivities
    investing_activities: InvestingActivities
    financing_activities: FinancingActivities
    net_cash_flow: Decimal
    opening_cash: Decimal
    closing_cash: Decimal


# =============================================================================
# AGGREGATE
# =============================================================================

class CompanyInfo(ResultModel):
    name: str
    trn: Optional[str] = None
    is_free_zone: bool = False
    free_zone_name: Optional[str] = None
    is_qfzp: bool = False
    accounting_basis: AccountingBasis = AccountingBasis.ACCRUAL


class FinancialStatementNote(ResultModel):
    number: int = Field(..., ge=1)
    title: str
    content: str


class FinancialStatements(ResultModel):
    """The three statements generated from one ledger snapshot."""
    company: CompanyInfo
    period_start: date
    period_end: date
    income_statement: IncomeStatement
    balance_sheet: BalanceSheet
    cash_flow: CashFlowStatement
    notes: List[FinancialStatementNote]
    cit_rate: Decimal
    relief_path: ReliefPath
    generation_date: date
    currency: str = "AED"
