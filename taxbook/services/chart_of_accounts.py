"""
TaxBook UAE - Chart of Accounts

Reference data for the UAE SME chart of accounts. The VAT treatment, CIT
deductibility and QFZP flags on each entry are authoritative for every
transaction posted to the account unless the transaction explicitly
overrides them.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional

from taxbook.schemas.ledger import (
    ChartOfAccountEntry,
    StatementLine,
    TransactionKind,
    VATTreatment,
)
from taxbook.utils.error_handling import (
    ErrorCode,
    LedgerValidationException,
    UnknownCategoryException,
)


class ChartOfAccounts:
    """Immutable lookup of chart of accounts entries by code."""

    def __init__(self, entries: Iterable[ChartOfAccountEntry]):
        by_code: Dict[str, ChartOfAccountEntry] = {}
        duplicates: List[str] = []
        for entry in entries:
            if entry.code in by_code:
                duplicates.append(entry.code)
            by_code[entry.code] = entry
        if duplicates:
            raise LedgerValidationException(
                "Duplicate chart of accounts codes",
                [
                    {"field": "code", "message": f"Duplicate code {code}", "type": ErrorCode.DUPLICATE_ACCOUNT.value}
                    for code in duplicates
                ],
                code=ErrorCode.DUPLICATE_ACCOUNT,
            )
        self._entries = MappingProxyType(by_code)

    def __contains__(self, code: str) -> bool:
        return code.strip().upper() in self._entries

    def __iter__(self) -> Iterator[ChartOfAccountEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, code: str, transaction_id: Optional[str] = None) -> ChartOfAccountEntry:
        """Resolve a code, raising UnknownCategoryException when absent."""
        entry = self._entries.get(code.strip().upper())
        if entry is None:
            raise UnknownCategoryException(code, transaction_id)
        return entry

    def with_entries(self, entries: Iterable[ChartOfAccountEntry]) -> "ChartOfAccounts":
        """Return a new chart with entries added or replaced."""
        merged = dict(self._entries)
        for entry in entries:
            merged[entry.code] = entry
        return ChartOfAccounts(merged.values())


def _entry(code, name, kind, line, vat=VATTreatment.NOT_APPLICABLE, deductible=True, qfzp=False):
    return ChartOfAccountEntry(
        code=code,
        name=name,
        kind=kind,
        statement_line=line,
        vat_treatment=vat,
        cit_deductible=deductible,
        qualifies_for_qfzp=qfzp,
    )


_R = TransactionKind.REVENUE
_E = TransactionKind.EXPENSE
_A = TransactionKind.ASSET
_LI = TransactionKind.LIABILITY
_EQ = TransactionKind.EQUITY
_L = StatementLine
_V = VATTreatment

# UAE FTA SME chart of accounts
UAE_DEFAULT_ACCOUNTS = (
    # Revenue
    _entry("OPERATING_REVENUE", "Sales Revenue", _R, _L.OPERATING_REVENUE, _V.STANDARD, qfzp=True),
    _entry("SERVICE_REVENUE", "Service Revenue", _R, _L.OPERATING_REVENUE, _V.STANDARD, qfzp=True),
    _entry("EXPORTS", "Export of Goods and Services", _R, _L.OPERATING_REVENUE, _V.ZERO_RATED, qfzp=True),
    _entry("INTERNATIONAL_TRANSPORT", "International Transport", _R, _L.OPERATING_REVENUE, _V.ZERO_RATED, qfzp=True),
    _entry("RESIDENTIAL_RENT", "Residential Rental Income", _R, _L.OTHER_INCOME, _V.EXEMPT),
    _entry("FINANCIAL_SERVICES", "Margin-based Financial Services", _R, _L.OTHER_INCOME, _V.EXEMPT),
    _entry("OTHER_INCOME", "Other Income", _R, _L.OTHER_INCOME, _V.STANDARD),
    _entry("FINANCE_INCOME", "Finance Income", _R, _L.OTHER_INCOME, _V.NOT_APPLICABLE),

    # Expenses
    _entry("COST_OF_SALES", "Cost of Sales", _E, _L.COST_OF_SALES, _V.STANDARD),
    _entry("SALARIES", "Salaries and Benefits", _E, _L.OPERATING_EXPENSES, _V.NOT_APPLICABLE),
    _entry("RENT", "Rent and Utilities", _E, _L.OPERATING_EXPENSES, _V.STANDARD),
    _entry("MARKETING", "Marketing and Advertising", _E, _L.OPERATING_EXPENSES, _V.STANDARD),
    _entry("TRAVEL", "Business Travel", _E, _L.OPERATING_EXPENSES, _V.STANDARD),
    _entry("ENTERTAINMENT", "Client Entertainment", _E, _L.OPERATING_EXPENSES, _V.STANDARD, deductible=False),
    _entry("PROFESSIONAL_FEES", "Professional Fees", _E, _L.ADMINISTRATIVE_EXPENSES, _V.STANDARD),
    _entry("OFFICE_EXPENSES", "Office and Administrative", _E, _L.ADMINISTRATIVE_EXPENSES, _V.STANDARD),
    _entry("FINANCE_COSTS", "Finance Costs", _E, _L.FINANCE_EXPENSES, _V.EXEMPT),
    _entry("DEPRECIATION", "Depreciation", _E, _L.OTHER_EXPENSES, _V.NOT_APPLICABLE),
    _entry("PERSONAL_EXPENSES", "Personal Expenses", _E, _L.OTHER_EXPENSES, _V.STANDARD, deductible=False),
    _entry("EXEMPT_SUPPLIES_RELATED", "Costs of Exempt Supplies", _E, _L.OTHER_EXPENSES, _V.STANDARD),
    _entry("MOTOR_VEHICLES_PERSONAL", "Motor Vehicles Available for Personal Use", _E, _L.OTHER_EXPENSES, _V.BLOCKED),
    _entry("FINES_AND_PENALTIES", "Fines and Penalties", _E, _L.OTHER_EXPENSES, _V.NOT_APPLICABLE, deductible=False),
    _entry("OTHER_EXPENSES", "Other Expenses", _E, _L.OTHER_EXPENSES, _V.STANDARD),

    # Assets
    _entry("CASH", "Cash on Hand", _A, _L.CASH),
    _entry("BANK", "Bank Accounts", _A, _L.CASH),
    _entry("ACCOUNTS_RECEIVABLE", "Accounts Receivable", _A, _L.ACCOUNTS_RECEIVABLE),
    _entry("INVENTORY", "Inventory", _A, _L.INVENTORY),
    _entry("PREPAID", "Prepaid Expenses", _A, _L.PREPAID_EXPENSES),
    _entry("FIXED_ASSETS", "Property, Plant & Equipment", _A, _L.PROPERTY_PLANT_EQUIPMENT),
    _entry("INTANGIBLE", "Intangible Assets", _A, _L.INTANGIBLE_ASSETS),
    _entry("INVESTMENTS", "Investments", _A, _L.INVESTMENTS),

    # Liabilities
    _entry("ACCOUNTS_PAYABLE", "Accounts Payable", _LI, _L.ACCOUNTS_PAYABLE),
    _entry("LOANS", "Short-term Loans and Borrowings", _LI, _L.SHORT_TERM_LOANS),
    _entry("ACCRUED", "Accrued Expenses", _LI, _L.ACCRUED_EXPENSES),
    _entry("TAX_PAYABLE", "Tax Payable", _LI, _L.TAX_PAYABLE),
    _entry("LONG_TERM_LOANS", "Long-term Loans", _LI, _L.LONG_TERM_LOANS),
    _entry("PROVISIONS", "Provisions", _LI, _L.PROVISIONS),

    # Equity
    _entry("SHARE_CAPITAL", "Share Capital", _EQ, _L.SHARE_CAPITAL),
    _entry("RETAINED_EARNINGS", "Retained Earnings", _EQ, _L.RETAINED_EARNINGS),
    _entry("RESERVES", "Reserves", _EQ, _L.OTHER_RESERVES),
)


def default_chart_of_accounts() -> ChartOfAccounts:
    """Build the default UAE SME chart of accounts."""
    return ChartOfAccounts(UAE_DEFAULT_ACCOUNTS)
