"""
TaxBook UAE - Ledger Schemas

Pydantic schemas for the ledger model: transactions, chart of accounts
entries, opening balances, the company tax profile and reporting periods.

Transactions are a closed union discriminated by ``kind`` and are validated
at the system boundary; every model is frozen so a ledger snapshot cannot be
changed once built. Corrections are recorded as new reversing transactions.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from taxbook.utils.error_handling import InvalidDateRangeException, validate_trn


def _reject_float(value):
    if isinstance(value, float):
        raise ValueError("floating point amounts are not accepted, use a decimal string")
    return value


Money = Annotated[Decimal, BeforeValidator(_reject_float)]


# ===========================================
# ENUMS
# ===========================================

class TransactionKind(str, Enum):
    """Ledger transaction kinds."""
    REVENUE = "revenue"
    EXPENSE = "expense"
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"


PROFIT_AND_LOSS_KINDS = frozenset({TransactionKind.REVENUE, TransactionKind.EXPENSE})
BALANCE_SHEET_KINDS = frozenset({TransactionKind.ASSET, TransactionKind.LIABILITY, TransactionKind.EQUITY})


class VATTreatment(str, Enum):
    """UAE VAT treatment of an account."""
    STANDARD = "standard"  # 5%
    ZERO_RATED = "zero_rated"
    EXEMPT = "exempt"
    BLOCKED = "blocked"  # input tax never recoverable
    NOT_APPLICABLE = "not_applicable"  # out of scope


class BalanceDirection(str, Enum):
    """Whether a balance-sheet transaction grows or reduces its account."""
    INCREASE = "increase"
    DECREASE = "decrease"


class AccountingBasis(str, Enum):
    CASH = "cash"
    ACCRUAL = "accrual"


class StatementLine(str, Enum):
    """Fixed financial statement sub-categories an account rolls up to."""
    # Income statement
    OPERATING_REVENUE = "operating_revenue"
    OTHER_INCOME = "other_income"
    COST_OF_SALES = "cost_of_sales"
    OPERATING_EXPENSES = "operating_expenses"
    ADMINISTRATIVE_EXPENSES = "administrative_expenses"
    FINANCE_EXPENSES = "finance_expenses"
    OTHER_EXPENSES = "other_expenses"

    # Current assets
    CASH = "cash"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    INVENTORY = "inventory"
    PREPAID_EXPENSES = "prepaid_expenses"
    OTHER_CURRENT_ASSETS = "other_current_assets"

    # Non-current assets
    PROPERTY_PLANT_EQUIPMENT = "property_plant_equipment"
    INTANGIBLE_ASSETS = "intangible_assets"
    INVESTMENTS = "investments"
    OTHER_NON_CURRENT_ASSETS = "other_non_current_assets"

    # Current liabilities
    ACCOUNTS_PAYABLE = "accounts_payable"
    SHORT_TERM_LOANS = "short_term_loans"
    ACCRUED_EXPENSES = "accrued_expenses"
    TAX_PAYABLE = "tax_payable"
    OTHER_CURRENT_LIABILITIES = "other_current_liabilities"

    # Non-current liabilities
    LONG_TERM_LOANS = "long_term_loans"
    PROVISIONS = "provisions"
    OTHER_NON_CURRENT_LIABILITIES = "other_non_current_liabilities"

    # Equity
    SHARE_CAPITAL = "share_capital"
    RETAINED_EARNINGS = "retained_earnings"
    OTHER_RESERVES = "other_reserves"


_L = StatementLine
_K = TransactionKind

LINE_KIND: Dict[StatementLine, TransactionKind] = {
    _L.OPERATING_REVENUE: _K.REVENUE,
    _L.OTHER_INCOME: _K.REVENUE,
    _L.COST_OF_SALES: _K.EXPENSE,
    _L.OPERATING_EXPENSES: _K.EXPENSE,
    _L.ADMINISTRATIVE_EXPENSES: _K.EXPENSE,
    _L.FINANCE_EXPENSES: _K.EXPENSE,
    _L.OTHER_EXPENSES: _K.EXPENSE,
    _L.CASH: _K.ASSET,
    _L.ACCOUNTS_RECEIVABLE: _K.ASSET,
    _L.INVENTORY: _K.ASSET,
    _L.PREPAID_EXPENSES: _K.ASSET,
    _L.OTHER_CURRENT_ASSETS: _K.ASSET,
    _L.PROPERTY_PLANT_EQUIPMENT: _K.ASSET,
    _L.INTANGIBLE_ASSETS: _K.ASSET,
    _L.INVESTMENTS: _K.ASSET,
    _L.OTHER_NON_CURRENT_ASSETS: _K.ASSET,
    _L.ACCOUNTS_PAYABLE: _K.LIABILITY,
    _L.SHORT_TERM_LOANS: _K.LIABILITY,
    _L.ACCRUED_EXPENSES: _K.LIABILITY,
    _L.TAX_PAYABLE: _K.LIABILITY,
    _L.OTHER_CURRENT_LIABILITIES: _K.LIABILITY,
    _L.LONG_TERM_LOANS: _K.LIABILITY,
    _L.PROVISIONS: _K.LIABILITY,
    _L.OTHER_NON_CURRENT_LIABILITIES: _K.LIABILITY,
    _L.SHARE_CAPITAL: _K.EQUITY,
    _L.RETAINED_EARNINGS: _K.EQUITY,
    _L.OTHER_RESERVES: _K.EQUITY,
}

# Settlement lines that imply accrual accounting
ACCRUAL_ONLY_LINES = frozenset({
    _L.ACCOUNTS_RECEIVABLE,
    _L.ACCOUNTS_PAYABLE,
    _L.ACCRUED_EXPENSES,
})


class LedgerModel(BaseModel):
    """Frozen base for all ledger schemas."""
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


# ===========================================
# CHART OF ACCOUNTS
# ===========================================

class ChartOfAccountEntry(LedgerModel):
    """Static reference data for one account code."""
    code: str = Field(..., min_length=1, max_length=64)
    name: str
    kind: TransactionKind
    statement_line: StatementLine
    vat_treatment: VATTreatment = VATTreatment.NOT_APPLICABLE
    cit_deductible: bool = True
    qualifies_for_qfzp: bool = False

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_line_matches_kind(self) -> "ChartOfAccountEntry":
        if LINE_KIND[self.statement_line] != self.kind:
            raise ValueError(
                f"Statement line {self.statement_line.value} does not belong to {self.kind.value} accounts"
            )
        if self.vat_treatment == VATTreatment.BLOCKED and self.kind != TransactionKind.EXPENSE:
            raise ValueError("Only expense accounts can carry blocked input VAT")
        return self

    @property
    def is_balance_sheet(self) -> bool:
        return self.kind in BALANCE_SHEET_KINDS


# ===========================================
# TRANSACTIONS
# ===========================================

class TransactionBase(LedgerModel):
    """Fields shared by every ledger transaction."""
    id: str = Field(..., min_length=1, description="Ledger identifier")
    amount: Money = Field(..., ge=0, description="Net amount before VAT")
    category: str = Field(..., min_length=1, description="Chart of accounts code")
    transaction_date: date = Field(
        ...,
        validation_alias=AliasChoices("transaction_date", "date"),
    )
    description: str = ""

    # VAT
    vat_amount: Optional[Money] = Field(None, ge=0, description="Explicit VAT amount, derived when omitted")
    vat_rate: Optional[Money] = Field(None, ge=0, le=1, description="Per-transaction rate override")
    is_vat_exempt: bool = False
    is_zero_rated: bool = False

    # CIT
    is_free_zone_transaction: bool = False
    cit_deductible: Optional[bool] = Field(None, description="Overrides the account's deductibility")

    # Counter account of the double entry
    settlement_account: str = "CASH"

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("category", "settlement_account")
    @classmethod
    def normalize_account(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_vat_flags(self):
        if self.is_vat_exempt and self.is_zero_rated:
            raise ValueError("A transaction cannot be both VAT exempt and zero-rated")
        return self

    @property
    def transaction_kind(self) -> TransactionKind:
        return TransactionKind(self.kind)


class RevenueTransaction(TransactionBase):
    kind: Literal["revenue"] = "revenue"
    is_qualifying_income: Optional[bool] = Field(
        None, description="Overrides the account's QFZP qualifying-income flag"
    )


class ExpenseTransaction(TransactionBase):
    kind: Literal["expense"] = "expense"
    is_reverse_charge: bool = Field(
        False, description="Imported goods or services on which the recipient self-accounts for VAT"
    )


class BalanceSheetTransaction(TransactionBase):
    direction: BalanceDirection = BalanceDirection.INCREASE


class AssetTransaction(BalanceSheetTransaction):
    kind: Literal["asset"] = "asset"


class LiabilityTransaction(BalanceSheetTransaction):
    kind: Literal["liability"] = "liability"


class EquityTransaction(BalanceSheetTransaction):
    kind: Literal["equity"] = "equity"


Transaction = Annotated[
    Union[
        RevenueTransaction,
        ExpenseTransaction,
        AssetTransaction,
        LiabilityTransaction,
        EquityTransaction,
    ],
    Field(discriminator="kind"),
]

TransactionAdapter = TypeAdapter(Transaction)


# ===========================================
# OPENING BALANCES AND PROFILE
# ===========================================

class OpeningBalance(LedgerModel):
    """Starting balance of one balance-sheet account."""
    account: str = Field(..., min_length=1)
    category: Literal["asset", "liability", "equity"]
    amount: Money
    description: Optional[str] = None

    @field_validator("account")
    @classmethod
    def normalize_account(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind(self.category)


class CompanyTaxProfile(LedgerModel):
    """Entity-level classification feeding CIT and the statement notes."""
    name: str = "Company"
    trn: Optional[str] = Field(None, description="15-digit Tax Registration Number")
    annual_revenue: Money = Field(Decimal("0"), ge=0)
    is_free_zone: bool = False
    free_zone_name: Optional[str] = None
    is_qfzp: bool = False
    accounting_basis: AccountingBasis = AccountingBasis.ACCRUAL
    is_vat_registered: bool = True
    fiscal_year_end: Optional[date] = None

    @field_validator("trn")
    @classmethod
    def check_trn(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_trn(v)


class Period(LedgerModel):
    """Inclusive reporting window."""
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_order(self) -> "Period":
        if self.end_date < self.start_date:
            raise InvalidDateRangeException(self.start_date.isoformat(), self.end_date.isoformat())
        return self

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date

    def label(self) -> str:
        return f"{self.start_date.isoformat()}..{self.end_date.isoformat()}"
