"""
TaxBook UAE - Financial Statements Service

Generates the Income Statement, Balance Sheet and Cash Flow Statement
(indirect method) from one immutable ledger snapshot.

Reconciliation is a post-condition, not an assumption:
- Balance Sheet: total assets must equal total liabilities and equity
- Cash Flow: opening cash plus net cash flow must equal Balance Sheet cash
A failure raises a ReconciliationException subclass instead of returning
inconsistent figures.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from dateutil.relativedelta import relativedelta

from taxbook.config import TaxSettings, resolve_settings
from taxbook.schemas.financial import (
    AssetsSection,
    BalanceSheet,
    CashFlowStatement,
    CompanyInfo,
    CurrentAssets,
    CurrentLiabilities,
    EquitySection,
    ExpenseSection,
    FinancialStatementNote,
    FinancialStatements,
    FinancingActivities,
    IncomeStatement,
    InvestingActivities,
    LiabilitiesSection,
    NonCurrentAssets,
    NonCurrentLiabilities,
    OperatingActivities,
    RevenueSection,
    StatementItem,
)
from taxbook.schemas.ledger import (
    PROFIT_AND_LOSS_KINDS,
    AccountingBasis,
    Period,
    StatementLine,
    TransactionKind,
)
from taxbook.schemas.tax import CITResult, ReliefPath
from taxbook.services.ledger_service import LedgerSnapshot
from taxbook.services.tax_calculators.cit_service import CITCalculator
from taxbook.utils.error_handling import (
    BalanceSheetImbalanceException,
    CashFlowMismatchException,
    InvalidDateRangeException,
)
from taxbook.utils.money import ZERO, fmt, percent, ratio

logger = logging.getLogger(__name__)

_L = StatementLine

# Cash flow classification of balance-sheet lines
WORKING_CAPITAL_ASSET_LINES = (_L.ACCOUNTS_RECEIVABLE, _L.INVENTORY, _L.PREPAID_EXPENSES, _L.OTHER_CURRENT_ASSETS)
WORKING_CAPITAL_LIABILITY_LINES = (
    _L.ACCOUNTS_PAYABLE,
    _L.ACCRUED_EXPENSES,
    _L.TAX_PAYABLE,
    _L.OTHER_CURRENT_LIABILITIES,
    _L.PROVISIONS,
    _L.OTHER_NON_CURRENT_LIABILITIES,
)
FIXED_ASSET_LINES = frozenset({_L.PROPERTY_PLANT_EQUIPMENT, _L.INTANGIBLE_ASSETS, _L.OTHER_NON_CURRENT_ASSETS})
INVESTING_LINES = FIXED_ASSET_LINES | {_L.INVESTMENTS}
LOAN_LINES = frozenset({_L.SHORT_TERM_LOANS, _L.LONG_TERM_LOANS})
CAPITAL_LINES = frozenset({_L.SHARE_CAPITAL, _L.OTHER_RESERVES})
FINANCING_LINES = LOAN_LINES | CAPITAL_LINES | {_L.RETAINED_EARNINGS}


class FinancialStatementsGenerator:
    """
    Statement generator over a single ledger snapshot.

    Every method is a pure function of the snapshot, its opening balances,
    the company profile and the settings.
    """

    def __init__(self, snapshot: LedgerSnapshot, settings: Optional[TaxSettings] = None):
        self.snapshot = snapshot
        self.settings = resolve_settings(settings)

    # =========================================================================
    # INCOME STATEMENT
    # =========================================================================

    def generate_income_statement(self, start: date, end: date) -> IncomeStatement:
        """Generate income statement (P&L) for [start, end]."""
        period = Period(start_date=start, end_date=end)
        snap = self.snapshot

        revenue = snap.totals_by_line(TransactionKind.REVENUE, period.start_date, period.end_date)
        expenses = snap.totals_by_line(TransactionKind.EXPENSE, period.start_date, period.end_date)

        revenue_section = RevenueSection(
            operating_revenue=revenue.get(_L.OPERATING_REVENUE, ZERO),
            other_income=revenue.get(_L.OTHER_INCOME, ZERO),
            total_revenue=sum(revenue.values(), ZERO),
        )
        expense_section = ExpenseSection(
            cost_of_sales=expenses.get(_L.COST_OF_SALES, ZERO),
            operating_expenses=expenses.get(_L.OPERATING_EXPENSES, ZERO),
            administrative_expenses=expenses.get(_L.ADMINISTRATIVE_EXPENSES, ZERO),
            finance_expenses=expenses.get(_L.FINANCE_EXPENSES, ZERO),
            other_expenses=expenses.get(_L.OTHER_EXPENSES, ZERO),
            total_expenses=sum(expenses.values(), ZERO),
        )

        gross_profit = revenue_section.operating_revenue - expense_section.cost_of_sales
        operating_profit = (
            gross_profit - expense_section.operating_expenses - expense_section.administrative_expenses
        )
        net_income = revenue_section.total_revenue - expense_section.total_expenses

        items: List[StatementItem] = []
        for kind in (TransactionKind.REVENUE, TransactionKind.EXPENSE):
            for code, amount in sorted(snap.totals_by_category(kind, period.start_date, period.end_date).items()):
                entry = snap.chart.get(code)
                items.append(StatementItem(
                    account_code=code,
                    account_name=entry.name,
                    statement_line=entry.statement_line,
                    amount=amount,
                ))

        logger.debug(f"Income statement {period.label()}: net income {net_income}")
        return IncomeStatement(
            period_start=period.start_date,
            period_end=period.end_date,
            revenue=revenue_section,
            expenses=expense_section,
            gross_profit=gross_profit,
            operating_profit=operating_profit,
            net_income=net_income,
            items=items,
        )

    # =========================================================================
    # BALANCE SHEET
    # =========================================================================

    def fiscal_year_start(self, as_of: date) -> date:
        """Start of the fiscal year containing ``as_of`` (calendar year by default)."""
        fye = self.snapshot.profile.fiscal_year_end
        if fye is None:
            return date(as_of.year, 1, 1)
        year_end = date(as_of.year, fye.month, 1) + relativedelta(day=fye.day)
        if year_end >= as_of:
            year_end = year_end - relativedelta(years=1)
        return year_end + timedelta(days=1)

    def generate_balance_sheet(self, as_of: date, earnings_from: Optional[date] = None) -> BalanceSheet:
        """
        Generate balance sheet as of a date.

        Profit and loss before ``earnings_from`` is reported in retained
        earnings, the rest as current year earnings.

        Raises:
            InvalidDateRangeException: ``earnings_from`` is later than the day after ``as_of``
            BalanceSheetImbalanceException: assets != liabilities + equity
        """
        snap = self.snapshot
        earnings_from = earnings_from or self.fiscal_year_start(as_of)
        if earnings_from > as_of + timedelta(days=1):
            raise InvalidDateRangeException(
                earnings_from.isoformat(),
                as_of.isoformat(),
                message=(
                    f"Current year earnings cannot start on {earnings_from.isoformat()}, "
                    f"after the balance sheet date {as_of.isoformat()}"
                ),
            )
        lines: Dict[StatementLine, Decimal] = snap.line_balances(as_of)

        def line(name: StatementLine) -> Decimal:
            return lines.get(name, ZERO)

        current_assets = CurrentAssets(
            cash=line(_L.CASH),
            accounts_receivable=line(_L.ACCOUNTS_RECEIVABLE),
            inventory=line(_L.INVENTORY),
            prepaid_expenses=line(_L.PREPAID_EXPENSES),
            other_current_assets=line(_L.OTHER_CURRENT_ASSETS),
            total=sum(map(line, (
                _L.CASH, _L.ACCOUNTS_RECEIVABLE, _L.INVENTORY, _L.PREPAID_EXPENSES, _L.OTHER_CURRENT_ASSETS,
            )), ZERO),
        )
        non_current_assets = NonCurrentAssets(
            property_plant_equipment=line(_L.PROPERTY_PLANT_EQUIPMENT),
            intangible_assets=line(_L.INTANGIBLE_ASSETS),
            investments=line(_L.INVESTMENTS),
            other_non_current_assets=line(_L.OTHER_NON_CURRENT_ASSETS),
            total=sum(map(line, (
                _L.PROPERTY_PLANT_EQUIPMENT, _L.INTANGIBLE_ASSETS, _L.INVESTMENTS, _L.OTHER_NON_CURRENT_ASSETS,
            )), ZERO),
        )
        assets = AssetsSection(
            current_assets=current_assets,
            non_current_assets=non_current_assets,
            total_assets=current_assets.total + non_current_assets.total,
        )

        current_liabilities = CurrentLiabilities(
            accounts_payable=line(_L.ACCOUNTS_PAYABLE),
            short_term_loans=line(_L.SHORT_TERM_LOANS),
            accrued_expenses=line(_L.ACCRUED_EXPENSES),
            tax_payable=line(_L.TAX_PAYABLE),
            other_current_liabilities=line(_L.OTHER_CURRENT_LIABILITIES),
            total=sum(map(line, (
                _L.ACCOUNTS_PAYABLE, _L.SHORT_TERM_LOANS, _L.ACCRUED_EXPENSES,
                _L.TAX_PAYABLE, _L.OTHER_CURRENT_LIABILITIES,
            )), ZERO),
        )
        non_current_liabilities = NonCurrentLiabilities(
            long_term_loans=line(_L.LONG_TERM_LOANS),
            provisions=line(_L.PROVISIONS),
            other_non_current_liabilities=line(_L.OTHER_NON_CURRENT_LIABILITIES),
            total=sum(map(line, (_L.LONG_TERM_LOANS, _L.PROVISIONS, _L.OTHER_NON_CURRENT_LIABILITIES)), ZERO),
        )
        liabilities = LiabilitiesSection(
            current_liabilities=current_liabilities,
            non_current_liabilities=non_current_liabilities,
            total_liabilities=current_liabilities.total + non_current_liabilities.total,
        )

        prior_earnings = snap.net_income(None, earnings_from - timedelta(days=1))
        current_year_earnings = snap.net_income(earnings_from, as_of)
        retained = line(_L.RETAINED_EARNINGS) + prior_earnings
        equity = EquitySection(
            share_capital=line(_L.SHARE_CAPITAL),
            retained_earnings=retained,
            current_year_earnings=current_year_earnings,
            other_reserves=line(_L.OTHER_RESERVES),
            total_equity=line(_L.SHARE_CAPITAL) + retained + current_year_earnings + line(_L.OTHER_RESERVES),
        )

        total_liabilities_and_equity = liabilities.total_liabilities + equity.total_equity
        if assets.total_assets != total_liabilities_and_equity:
            logger.error(
                f"Balance sheet as of {as_of} for {snap.profile.name} does not balance: "
                f"{assets.total_assets} vs {total_liabilities_and_equity}"
            )
            raise BalanceSheetImbalanceException(as_of.isoformat(), assets.total_assets, total_liabilities_and_equity)

        current_ratio = ratio(current_assets.total, current_liabilities.total)
        if current_ratio is not None and current_ratio < 1:
            logger.warning(f"Low liquidity for {snap.profile.name} as of {as_of}: current ratio {current_ratio}")

        return BalanceSheet(
            as_of_date=as_of,
            earnings_from=earnings_from,
            assets=assets,
            liabilities=liabilities,
            equity=equity,
            total_liabilities_and_equity=total_liabilities_and_equity,
            is_balanced=True,
            current_ratio=current_ratio,
            debt_to_equity_ratio=ratio(liabilities.total_liabilities, equity.total_equity),
        )

    # =========================================================================
    # CASH FLOW STATEMENT
    # =========================================================================

    def generate_cash_flow(self, start: date, end: date) -> CashFlowStatement:
        """
        Generate cash flow statement (indirect method) for [start, end].

        Operating: net income, non-cash items booked against investing or
        financing accounts (depreciation), and working capital movements
        between the opening (day before ``start``) and closing balance sheets.
        Investing and financing: movements on those accounts from
        balance-sheet transactions in the period.

        Raises:
            CashFlowMismatchException: closing cash differs from balance sheet cash
        """
        period = Period(start_date=start, end_date=end)
        snap = self.snapshot
        chart = snap.chart

        net_income = self.generate_income_statement(period.start_date, period.end_date).net_income
        opening_bs = self.generate_balance_sheet(period.start_date - timedelta(days=1), earnings_from=period.start_date)
        closing_bs = self.generate_balance_sheet(period.end_date, earnings_from=period.start_date)

        # Working capital from the two balance sheets
        oca, cca = opening_bs.assets.current_assets, closing_bs.assets.current_assets
        ocl, ccl = opening_bs.liabilities.current_liabilities, closing_bs.liabilities.current_liabilities
        oncl, cncl = opening_bs.liabilities.non_current_liabilities, closing_bs.liabilities.non_current_liabilities
        change_in_receivables = -(cca.accounts_receivable - oca.accounts_receivable)
        change_in_inventory = -(cca.inventory - oca.inventory)
        change_in_payables = ccl.accounts_payable - ocl.accounts_payable
        other_working_capital = (
            -(cca.prepaid_expenses - oca.prepaid_expenses)
            - (cca.other_current_assets - oca.other_current_assets)
            + (ccl.accrued_expenses - ocl.accrued_expenses)
            + (ccl.tax_payable - ocl.tax_payable)
            + (ccl.other_current_liabilities - ocl.other_current_liabilities)
            + (cncl.provisions - oncl.provisions)
            + (cncl.other_non_current_liabilities - oncl.other_non_current_liabilities)
        )

        depreciation = ZERO
        other_non_cash = ZERO
        purchases = ZERO
        sales = ZERO
        investments = ZERO
        borrowings = ZERO
        repayments = ZERO
        dividends = ZERO
        capital = ZERO

        for posting in snap.postings_between(period.start_date, period.end_date):
            entry = chart.get(posting.account)
            if entry.statement_line not in INVESTING_LINES and entry.statement_line not in FINANCING_LINES:
                continue
            # Natural-sign movement of the account
            if entry.kind == TransactionKind.ASSET:
                movement = posting.net_debit
            else:
                movement = -posting.net_debit

            if posting.source_kind in PROFIT_AND_LOSS_KINDS:
                # Booked through profit and loss without touching cash
                if entry.statement_line in INVESTING_LINES:
                    if posting.source_kind == TransactionKind.EXPENSE:
                        depreciation -= movement
                    else:
                        other_non_cash -= movement
                else:
                    other_non_cash += movement
                continue

            line = entry.statement_line
            if line in FIXED_ASSET_LINES:
                if movement > 0:
                    purchases -= movement
                else:
                    sales -= movement
            elif line == _L.INVESTMENTS:
                investments -= movement
            elif line in LOAN_LINES:
                if movement > 0:
                    borrowings += movement
                else:
                    repayments += movement
            elif line == _L.RETAINED_EARNINGS:
                dividends += movement
            else:
                capital += movement

        operating = OperatingActivities(
            net_income=net_income,
            depreciation=depreciation,
            other_non_cash_items=other_non_cash,
            change_in_receivables=change_in_receivables,
            change_in_inventory=change_in_inventory,
            change_in_payables=change_in_payables,
            other_working_capital_changes=other_working_capital,
            net_cash_from_operating=(
                net_income + depreciation + other_non_cash + change_in_receivables
                + change_in_inventory + change_in_payables + other_working_capital
            ),
        )
        investing = InvestingActivities(
            purchase_of_assets=purchases,
            sale_of_assets=sales,
            investments=investments,
            net_cash_from_investing=purchases + sales + investments,
        )
        financing = FinancingActivities(
            borrowings=borrowings,
            loan_repayments=repayments,
            dividends_paid=dividends,
            share_capital=capital,
            net_cash_from_financing=borrowings + repayments + dividends + capital,
        )

        net_cash_flow = (
            operating.net_cash_from_operating
            + investing.net_cash_from_investing
            + financing.net_cash_from_financing
        )
        opening_cash = opening_bs.assets.current_assets.cash
        closing_cash = opening_cash + net_cash_flow
        balance_sheet_cash = closing_bs.assets.current_assets.cash

        if closing_cash != balance_sheet_cash:
            logger.error(
                f"Cash flow {period.label()} for {snap.profile.name}: closing cash {closing_cash} "
                f"!= balance sheet cash {balance_sheet_cash}"
            )
            raise CashFlowMismatchException(period.end_date.isoformat(), closing_cash, balance_sheet_cash)

        return CashFlowStatement(
            period_start=period.start_date,
            period_end=period.end_date,
            operating_activities=operating,
            investing_activities=investing,
            financing_activities=financing,
            net_cash_flow=net_cash_flow,
            opening_cash=opening_cash,
            closing_cash=closing_cash,
        )

    # =========================================================================
    # NOTES AND AGGREGATE
    # =========================================================================

    def _sme_category(self) -> str:
        if self.snapshot.profile.annual_revenue <= self.settings.cash_basis_revenue_ceiling:
            return "small and medium enterprises"
        return "large enterprises"

    def generate_notes(self, cit_result: CITResult) -> List[FinancialStatementNote]:
        """Boilerplate disclosures parameterised by entity type and the derived CIT rate."""
        profile = self.snapshot.profile
        free_zone = f"{profile.free_zone_name} " if profile.free_zone_name else ""
        basis = "cash" if profile.accounting_basis == AccountingBasis.CASH else "accrual"

        taxation = (
            f"The Company is subject to UAE Corporate Income Tax under Federal Decree-Law No. 47 of 2022. "
            f"The effective rate applied for the period is {percent(cit_result.cit_rate)}"
        )
        if cit_result.relief_path == ReliefPath.QUALIFYING_FREE_ZONE:
            taxation += (
                " as a Qualifying Free Zone Person: qualifying income is taxed at 0% and "
                "non-qualifying income at the standard rate."
            )
        elif cit_result.relief_path == ReliefPath.SMALL_BUSINESS_RELIEF:
            taxation += " as the Company has elected Small Business Relief."
        else:
            taxation += (
                f" on taxable income above AED {fmt(self.settings.cit_small_business_threshold)}; "
                "income up to that amount is taxed at 0%."
            )
        if profile.is_free_zone and cit_result.relief_path != ReliefPath.QUALIFYING_FREE_ZONE:
            taxation += " The Company does not meet the conditions of a Qualifying Free Zone Person for the period."

        vat = (
            f"The Company is registered for VAT (TRN {profile.trn}) and charges VAT at "
            f"{percent(self.settings.vat_standard_rate)} on standard-rated supplies."
            if profile.is_vat_registered and profile.trn
            else f"VAT at {percent(self.settings.vat_standard_rate)} applies to standard-rated supplies "
                 "under Federal Decree-Law No. 8 of 2017."
        )

        contents = [
            (
                "Corporate information",
                f"{profile.name} (the \"Company\") is a {free_zone}{'Free Zone ' if profile.is_free_zone else ''}"
                f"company incorporated in the United Arab Emirates.",
            ),
            (
                "Basis of preparation",
                f"These financial statements are prepared on the {basis} basis of accounting as permitted for "
                f"{self._sme_category()} and are presented in {self.settings.currency}.",
            ),
            (
                "Significant accounting policies",
                "Revenue is recognised when performance obligations are satisfied. Expenses are recognised "
                "when incurred in accordance with the matching principle.",
            ),
            ("Taxation", taxation),
            ("Value added tax", vat),
        ]
        return [
            FinancialStatementNote(number=i, title=title, content=content)
            for i, (title, content) in enumerate(contents, start=1)
        ]

    def generate_financial_statements(
        self,
        period: Period,
        generation_date: Optional[date] = None,
        losses_brought_forward: Decimal = ZERO,
        capital_allowances: Decimal = ZERO,
    ) -> FinancialStatements:
        """
        Generate all three statements for a period from this snapshot.

        ``generation_date`` defaults to the period end so that repeated
        runs over the same snapshot produce identical output.
        """
        income_statement = self.generate_income_statement(period.start_date, period.end_date)
        balance_sheet = self.generate_balance_sheet(period.end_date, earnings_from=period.start_date)
        cash_flow = self.generate_cash_flow(period.start_date, period.end_date)

        cit_result = CITCalculator(self.settings).calculate_for_period(
            self.snapshot, period, losses_brought_forward, capital_allowances
        )
        profile = self.snapshot.profile

        logger.info(
            f"Financial statements generated for {profile.name} {period.label()}: "
            f"net income {income_statement.net_income}, total assets {balance_sheet.assets.total_assets}"
        )
        return FinancialStatements(
            company=CompanyInfo(
                name=profile.name,
                trn=profile.trn,
                is_free_zone=profile.is_free_zone,
                free_zone_name=profile.free_zone_name,
                is_qfzp=profile.is_qfzp,
                accounting_basis=profile.accounting_basis,
            ),
            period_start=period.start_date,
            period_end=period.end_date,
            income_statement=income_statement,
            balance_sheet=balance_sheet,
            cash_flow=cash_flow,
            notes=self.generate_notes(cit_result),
            cit_rate=cit_result.cit_rate,
            relief_path=cit_result.relief_path,
            generation_date=generation_date or period.end_date,
            currency=self.settings.currency,
        )
