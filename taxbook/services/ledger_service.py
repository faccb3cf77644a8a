"""
TaxBook UAE - Ledger Snapshot Service

Builds an immutable, validated snapshot of a company's ledger and provides
the account aggregation shared by the VAT engine, the CIT engine and the
financial statement generator.

Every transaction is expanded into one balanced double entry against its
settlement account:
- Revenue:           Dr settlement   / Cr revenue account
- Expense:           Dr expense      / Cr settlement
- Asset increase:    Dr asset        / Cr settlement   (decrease reverses)
- Liability/Equity:  Dr settlement   / Cr account      (decrease reverses)
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from taxbook.config import TaxSettings, resolve_settings
from taxbook.schemas.ledger import (
    ACCRUAL_ONLY_LINES,
    BALANCE_SHEET_KINDS,
    PROFIT_AND_LOSS_KINDS,
    AccountingBasis,
    BalanceDirection,
    ChartOfAccountEntry,
    CompanyTaxProfile,
    OpeningBalance,
    StatementLine,
    TransactionAdapter,
    TransactionBase,
    TransactionKind,
    VATTreatment,
)
from taxbook.services.chart_of_accounts import ChartOfAccounts, default_chart_of_accounts
from taxbook.utils.error_handling import (
    AppException,
    ErrorCode,
    LedgerValidationException,
    UnknownCategoryException,
)
from taxbook.utils.money import ZERO, sum_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Posting:
    """One side of a transaction's double entry."""
    transaction_id: str
    posting_date: date
    account: str
    debit: Decimal
    credit: Decimal
    source_kind: TransactionKind
    counter_account: str

    @property
    def net_debit(self) -> Decimal:
        return self.debit - self.credit


# ===========================================
# ACCOUNT METADATA RESOLUTION
# ===========================================

def resolve_vat_treatment(transaction: TransactionBase, entry: ChartOfAccountEntry) -> VATTreatment:
    """
    Effective VAT treatment of a transaction.

    A blocked account wins over any transaction flag. Otherwise explicit
    exempt / zero-rated flags override the account, a zero rate override on
    a standard account is zero-rated, and the account treatment applies.
    """
    if entry.vat_treatment == VATTreatment.BLOCKED:
        return VATTreatment.BLOCKED
    if transaction.is_vat_exempt:
        return VATTreatment.EXEMPT
    if transaction.is_zero_rated:
        return VATTreatment.ZERO_RATED
    if entry.vat_treatment == VATTreatment.STANDARD and transaction.vat_rate is not None and transaction.vat_rate == 0:
        return VATTreatment.ZERO_RATED
    return entry.vat_treatment


def is_cit_deductible(transaction: TransactionBase, entry: ChartOfAccountEntry) -> bool:
    if transaction.cit_deductible is not None:
        return transaction.cit_deductible
    return entry.cit_deductible


def is_qualifying_income(transaction: TransactionBase, entry: ChartOfAccountEntry) -> bool:
    """Qualifying income for the QFZP 0% rate."""
    override = getattr(transaction, "is_qualifying_income", None)
    if override is not None:
        return override
    return entry.qualifies_for_qfzp or transaction.is_free_zone_transaction


def _postings_for(transaction: TransactionBase) -> Tuple[Posting, Posting]:
    kind = transaction.transaction_kind
    amount = transaction.amount
    account = transaction.category
    settlement = transaction.settlement_account

    if kind == TransactionKind.REVENUE:
        debit_account, credit_account = settlement, account
    elif kind == TransactionKind.EXPENSE:
        debit_account, credit_account = account, settlement
    else:
        increase = transaction.direction == BalanceDirection.INCREASE
        if kind == TransactionKind.ASSET:
            debit_account, credit_account = (account, settlement) if increase else (settlement, account)
        else:
            debit_account, credit_account = (settlement, account) if increase else (account, settlement)

    return (
        Posting(transaction.id, transaction.transaction_date, debit_account, amount, ZERO, kind, credit_account),
        Posting(transaction.id, transaction.transaction_date, credit_account, ZERO, amount, kind, debit_account),
    )


# ===========================================
# LEDGER SNAPSHOT
# ===========================================

@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Immutable, validated view of a company's ledger.

    Build with ``LedgerSnapshot.build``; the constructor does not validate.
    """
    transactions: Tuple[TransactionBase, ...]
    opening_balances: Tuple[OpeningBalance, ...]
    profile: CompanyTaxProfile
    chart: ChartOfAccounts
    postings: Tuple[Posting, ...]

    @classmethod
    def build(
        cls,
        transactions: Iterable[Any],
        opening_balances: Iterable[Any] = (),
        profile: Optional[Any] = None,
        chart: Optional[ChartOfAccounts] = None,
        settings: Optional[TaxSettings] = None,
    ) -> "LedgerSnapshot":
        """
        Validate raw records and build a snapshot.

        Fails fast with a ValidationException subclass before any figure is
        computed: malformed records, negative amounts, unknown categories,
        kind mismatches, duplicate ids and cash-basis violations are rejected.
        """
        settings = resolve_settings(settings)
        chart = chart or default_chart_of_accounts()
        profile = cls._validate_profile(profile, settings)

        parsed = cls._parse_transactions(transactions)
        errors: List[Dict[str, Any]] = []
        seen = set()
        for tx in parsed:
            if tx.id in seen:
                errors.append({
                    "field": "id",
                    "message": f"Duplicate transaction id {tx.id}",
                    "type": ErrorCode.DUPLICATE_TRANSACTION.value,
                    "transaction_id": tx.id,
                })
            seen.add(tx.id)
            errors.extend(cls._check_accounts(tx, chart, profile))
        if errors:
            raise cls._as_exception(errors)

        openings = cls._parse_opening_balances(opening_balances, chart)

        ordered = tuple(sorted(parsed, key=lambda t: (t.transaction_date, t.id)))
        postings = tuple(p for tx in ordered for p in _postings_for(tx))

        logger.debug(
            f"Built ledger snapshot for {profile.name}: "
            f"{len(ordered)} transactions, {len(openings)} opening balances"
        )
        return cls(
            transactions=ordered,
            opening_balances=openings,
            profile=profile,
            chart=chart,
            postings=postings,
        )

    @staticmethod
    def _validate_profile(profile: Optional[Any], settings: TaxSettings) -> CompanyTaxProfile:
        if profile is None:
            profile = CompanyTaxProfile()
        elif not isinstance(profile, CompanyTaxProfile):
            try:
                profile = CompanyTaxProfile.model_validate(profile)
            except ValidationError as e:
                raise LedgerValidationException.from_pydantic(e) from e

        if (
            profile.accounting_basis == AccountingBasis.CASH
            and profile.annual_revenue > settings.cash_basis_revenue_ceiling
        ):
            raise LedgerValidationException(
                "Cash basis accounting is not permitted above the revenue ceiling",
                [{
                    "field": "accounting_basis",
                    "message": (
                        f"Annual revenue {profile.annual_revenue:,.2f} exceeds the cash basis ceiling "
                        f"of {settings.cash_basis_revenue_ceiling:,.2f}"
                    ),
                    "type": ErrorCode.ACCOUNTING_BASIS_VIOLATION.value,
                }],
                code=ErrorCode.ACCOUNTING_BASIS_VIOLATION,
            )
        return profile

    @staticmethod
    def _parse_transactions(records: Iterable[Any]) -> List[TransactionBase]:
        parsed: List[TransactionBase] = []
        errors: List[Dict[str, Any]] = []
        for index, record in enumerate(records):
            if isinstance(record, TransactionBase):
                parsed.append(record)
                continue
            try:
                parsed.append(TransactionAdapter.validate_python(record))
            except ValidationError as e:
                errors.extend(LedgerValidationException.from_pydantic(e, record_index=index).errors)
        if errors:
            raise LedgerValidationException("Ledger validation failed", errors)
        return parsed

    @staticmethod
    def _check_accounts(
        tx: TransactionBase,
        chart: ChartOfAccounts,
        profile: CompanyTaxProfile,
    ) -> List[Dict[str, Any]]:
        errors: List[Dict[str, Any]] = []
        kind = tx.transaction_kind

        if tx.category not in chart:
            errors.append({
                "field": "category",
                "message": f"Unknown chart of accounts code: {tx.category}",
                "type": ErrorCode.UNKNOWN_CATEGORY.value,
                "transaction_id": tx.id,
            })
        elif chart.get(tx.category).kind != kind:
            errors.append({
                "field": "category",
                "message": (
                    f"Account {tx.category} is a {chart.get(tx.category).kind.value} account, "
                    f"not {kind.value}"
                ),
                "type": ErrorCode.CATEGORY_KIND_MISMATCH.value,
                "transaction_id": tx.id,
            })

        if tx.settlement_account not in chart:
            errors.append({
                "field": "settlement_account",
                "message": f"Unknown settlement account: {tx.settlement_account}",
                "type": ErrorCode.UNKNOWN_CATEGORY.value,
                "transaction_id": tx.id,
            })
            return errors

        settlement = chart.get(tx.settlement_account)
        if not settlement.is_balance_sheet:
            errors.append({
                "field": "settlement_account",
                "message": f"Settlement account {settlement.code} must be a balance sheet account",
                "type": ErrorCode.CATEGORY_KIND_MISMATCH.value,
                "transaction_id": tx.id,
            })
        elif settlement.code == tx.category:
            errors.append({
                "field": "settlement_account",
                "message": f"Settlement account cannot equal the transaction category {tx.category}",
                "type": ErrorCode.INVALID_INPUT.value,
                "transaction_id": tx.id,
            })
        elif (
            profile.accounting_basis == AccountingBasis.CASH
            and kind in PROFIT_AND_LOSS_KINDS
            and settlement.statement_line in ACCRUAL_ONLY_LINES
        ):
            errors.append({
                "field": "settlement_account",
                "message": (
                    f"Cash basis ledger cannot settle {kind.value} against "
                    f"{settlement.statement_line.value}"
                ),
                "type": ErrorCode.ACCOUNTING_BASIS_VIOLATION.value,
                "transaction_id": tx.id,
            })
        return errors

    @staticmethod
    def _parse_opening_balances(records: Iterable[Any], chart: ChartOfAccounts) -> Tuple[OpeningBalance, ...]:
        parsed: List[OpeningBalance] = []
        errors: List[Dict[str, Any]] = []
        for index, record in enumerate(records):
            if not isinstance(record, OpeningBalance):
                try:
                    record = OpeningBalance.model_validate(record)
                except ValidationError as e:
                    errors.extend(LedgerValidationException.from_pydantic(e, record_index=index).errors)
                    continue
            if record.account not in chart:
                errors.append({
                    "field": "account",
                    "message": f"Unknown chart of accounts code: {record.account}",
                    "type": ErrorCode.UNKNOWN_CATEGORY.value,
                    "record": index,
                })
            elif chart.get(record.account).kind != record.kind:
                errors.append({
                    "field": "category",
                    "message": f"Opening balance for {record.account} is not a {record.category} account",
                    "type": ErrorCode.CATEGORY_KIND_MISMATCH.value,
                    "record": index,
                })
            else:
                parsed.append(record)
        if errors:
            raise LedgerSnapshot._as_exception(errors)
        return tuple(parsed)

    @staticmethod
    def _as_exception(errors: List[Dict[str, Any]]) -> AppException:
        if len(errors) == 1 and errors[0]["type"] == ErrorCode.UNKNOWN_CATEGORY.value:
            err = errors[0]
            return UnknownCategoryException(
                err["message"].rsplit(": ", 1)[-1],
                err.get("transaction_id"),
                field=err["field"],
            )
        codes = {err["type"] for err in errors}
        known = {c.value for c in ErrorCode}
        code = ErrorCode.VALIDATION_ERROR
        if len(codes) == 1 and codes <= known:
            code = ErrorCode(codes.pop())
        return LedgerValidationException("Ledger validation failed", errors, code=code)

    # ===========================================
    # SELECTION
    # ===========================================

    def entry_for(self, transaction: TransactionBase) -> ChartOfAccountEntry:
        return self.chart.get(transaction.category, transaction.id)

    def select(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        kinds: Optional[Sequence[TransactionKind]] = None,
    ) -> List[TransactionBase]:
        """Transactions dated within [start, end], optionally of given kinds."""
        wanted = {TransactionKind(k) for k in kinds} if kinds else None
        return [
            t for t in self.transactions
            if (start is None or t.transaction_date >= start)
            and (end is None or t.transaction_date <= end)
            and (wanted is None or t.transaction_kind in wanted)
        ]

    def in_period(self, start: date, end: date, kinds: Optional[Sequence[TransactionKind]] = None) -> List[TransactionBase]:
        return self.select(start, end, kinds)

    def up_to(self, as_of: date, kinds: Optional[Sequence[TransactionKind]] = None) -> List[TransactionBase]:
        return self.select(None, as_of, kinds)

    def postings_between(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Posting]:
        return [
            p for p in self.postings
            if (start is None or p.posting_date >= start)
            and (end is None or p.posting_date <= end)
        ]

    # ===========================================
    # AGGREGATION
    # ===========================================

    def totals_by_category(
        self,
        kind: TransactionKind,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for tx in self.select(start, end, [kind]):
            totals[tx.category] = totals.get(tx.category, ZERO) + tx.amount
        return totals

    def totals_by_line(
        self,
        kind: TransactionKind,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict[StatementLine, Decimal]:
        totals: Dict[StatementLine, Decimal] = {}
        for code, amount in self.totals_by_category(kind, start, end).items():
            line = self.chart.get(code).statement_line
            totals[line] = totals.get(line, ZERO) + amount
        return totals

    def net_income(self, start: Optional[date] = None, end: Optional[date] = None) -> Decimal:
        revenue = sum_money(self.totals_by_category(TransactionKind.REVENUE, start, end).values())
        expenses = sum_money(self.totals_by_category(TransactionKind.EXPENSE, start, end).values())
        return revenue - expenses

    def account_balances(self, as_of: Optional[date] = None) -> Dict[str, Decimal]:
        """
        Natural-sign balances of balance-sheet accounts after opening
        balances and every posting dated on or before ``as_of``.
        Assets are debit-positive, liabilities and equity credit-positive.
        """
        balances: Dict[str, Decimal] = {}
        for ob in self.opening_balances:
            balances[ob.account] = balances.get(ob.account, ZERO) + ob.amount

        for posting in self.postings:
            if as_of is not None and posting.posting_date > as_of:
                continue
            entry = self.chart.get(posting.account)
            if entry.kind not in BALANCE_SHEET_KINDS:
                continue
            movement = posting.net_debit if entry.kind == TransactionKind.ASSET else -posting.net_debit
            balances[posting.account] = balances.get(posting.account, ZERO) + movement
        return balances

    def line_balances(self, as_of: Optional[date] = None) -> Dict[StatementLine, Decimal]:
        totals: Dict[StatementLine, Decimal] = {}
        for code, amount in self.account_balances(as_of).items():
            line = self.chart.get(code).statement_line
            totals[line] = totals.get(line, ZERO) + amount
        return totals

    def rolling_taxable_supplies(self, as_of: date, months: int = 12) -> Decimal:
        """
        Taxable supplies (standard and zero-rated revenue) over the trailing
        window ending on ``as_of``. Computed on demand, never on write.
        """
        start = as_of - relativedelta(months=months) + timedelta(days=1)
        total = ZERO
        for tx in self.select(start, as_of, [TransactionKind.REVENUE]):
            treatment = resolve_vat_treatment(tx, self.entry_for(tx))
            if treatment in (VATTreatment.STANDARD, VATTreatment.ZERO_RATED):
                total += tx.amount
        return total
