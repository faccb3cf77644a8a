"""
TaxBook UAE - CIT Calculator Service

Corporate Income Tax calculation under Federal Decree-Law No. 47 of 2022.

CIT Rates:
- Taxable income up to AED 375,000: 0%
- Taxable income above AED 375,000: 9%

Relief paths, evaluated once in fixed priority order:
1. Qualifying Free Zone Person (QFZP): 0% on qualifying income, 9% on
   non-qualifying income, for Free Zone entities within the revenue ceiling
2. Small Business Relief (SBR): no CIT when taxable income is at or below
   AED 375,000
3. Standard: 9% on taxable income above AED 375,000

The priority order is a best-effort reading of the law and should be
confirmed by a tax adviser for entities eligible for more than one path.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import ValidationError

from taxbook.config import TaxSettings, resolve_settings
from taxbook.schemas.ledger import CompanyTaxProfile, Period, TransactionKind
from taxbook.schemas.tax import (
    CalculationAuditRecord,
    CalculationType,
    CITResult,
    ReliefPath,
    TaxableIncomeComputation,
)
from taxbook.services.audit_trail_service import AuditTrailBuilder, AuditTrailRecorder, AuditTrailSink
from taxbook.services.ledger_service import LedgerSnapshot, is_cit_deductible, is_qualifying_income
from taxbook.utils.error_handling import (
    InvalidAmountException,
    LedgerValidationException,
    PolicyAmbiguityException,
    validate_amount,
)
from taxbook.utils.money import ZERO, fmt, percent, sum_money, to_money

logger = logging.getLogger(__name__)


# Federal Decree-Law No. 47 of 2022 on the Taxation of Corporations and Businesses
CIT_LAW = "Federal Decree-Law No. 47 of 2022"
REF_TAXABLE_INCOME = f"{CIT_LAW}, Art. 20 (determination of taxable income)"
REF_RATES = f"{CIT_LAW}, Art. 3 (0% up to AED 375,000, 9% above)"
REF_QFZP = f"{CIT_LAW}, Art. 18; Cabinet Decision No. 100 of 2023 (Qualifying Free Zone Person)"
REF_SBR = f"{CIT_LAW}, Art. 21; Ministerial Decision No. 73 of 2023 (Small Business Relief)"
REF_NON_DEDUCTIBLE = f"{CIT_LAW}, Art. 28 and Art. 33 (non-deductible expenditure)"
REF_CAPITAL_ALLOWANCES = f"{CIT_LAW}, Art. 20 and Art. 28 (depreciation and capital allowances)"
REF_LOSSES = f"{CIT_LAW}, Art. 37 (tax loss relief, 75% cap)"


def _as_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, (float, bool)):
        raise InvalidAmountException(
            value, field, message=f"Invalid amount for {field}: floats are not accepted, use a decimal string"
        )
    try:
        amount = Decimal(str(value))
    except ArithmeticError as e:
        raise InvalidAmountException(value, field) from e
    if not amount.is_finite():
        raise InvalidAmountException(value, field, message=f"Invalid amount for {field}: {value} is not a finite number")
    return amount


class CITCalculator:
    """
    Corporate Income Tax calculator.

    Implements the UAE relief paths in priority order QFZP -> SBR -> Standard.
    """

    def __init__(self, settings: Optional[TaxSettings] = None):
        self.settings = resolve_settings(settings)

    def standard_tax(self, taxable_income: Decimal) -> Decimal:
        """9% above the 0% band, never negative."""
        base = max(ZERO, taxable_income - self.settings.cit_small_business_threshold)
        return to_money(base * self.settings.cit_standard_rate, self.settings.rounding_places)

    def is_qfzp_eligible(self, profile: CompanyTaxProfile) -> bool:
        return (
            profile.is_free_zone
            and profile.is_qfzp
            and profile.annual_revenue <= self.settings.qfzp_revenue_ceiling
        )

    def calculate_cit(
        self,
        taxable_income: Any,
        profile: Any,
        qualifying_income: Optional[Any] = None,
    ) -> CITResult:
        """
        Calculate CIT for a tax period.

        Args:
            taxable_income: Taxable income after adjustments and loss relief
            profile: CompanyTaxProfile or a raw mapping
            qualifying_income: QFZP qualifying income; all income qualifies when omitted

        Returns:
            CITResult whose last audit step equals cit_due

        Raises:
            PolicyAmbiguityException: QFZP status claimed outside a Free Zone
        """
        s = self.settings
        places = s.rounding_places
        taxable = _as_decimal(taxable_income, "taxable_income")
        if not isinstance(profile, CompanyTaxProfile):
            try:
                profile = CompanyTaxProfile.model_validate(profile)
            except ValidationError as e:
                raise LedgerValidationException.from_pydantic(e) from e

        if profile.is_qfzp and not profile.is_free_zone:
            raise PolicyAmbiguityException(
                "Entity is classified as a Qualifying Free Zone Person but not as a Free Zone entity",
                rule="QFZP_REQUIRES_FREE_ZONE",
                details={"company": profile.name},
            )

        positive_income = max(ZERO, taxable)
        if qualifying_income is None:
            qualifying = positive_income
        else:
            qualifying = validate_amount(qualifying_income, "qualifying_income")
            qualifying = min(qualifying, positive_income)

        qfzp_eligible = self.is_qfzp_eligible(profile)
        sbr_eligible = taxable <= s.cit_small_business_threshold
        policy_notes: List[str] = []

        if profile.is_free_zone and profile.is_qfzp and not qfzp_eligible:
            policy_notes.append(
                f"Annual revenue {fmt(profile.annual_revenue)} exceeds the QFZP ceiling of "
                f"{fmt(s.qfzp_revenue_ceiling)}; QFZP path not available"
            )
        if qfzp_eligible and sbr_eligible:
            policy_notes.append(
                "Eligible for both QFZP and Small Business Relief; QFZP applied under the "
                "priority order QFZP -> SBR -> Standard (flag for adviser review)"
            )

        trail = AuditTrailBuilder()
        trail.add(
            "Taxable income for the period",
            f"Taxable income = {fmt(taxable)}",
            taxable,
            REF_TAXABLE_INCOME,
        )

        if qfzp_eligible:
            path = ReliefPath.QUALIFYING_FREE_ZONE
            non_qualifying = positive_income - qualifying
            cit_due = to_money(non_qualifying * s.cit_standard_rate, places)
            rate = s.cit_standard_rate if non_qualifying > 0 else ZERO
            trail.add(
                "Apply Qualifying Free Zone Person relief",
                (
                    f"Free Zone, QFZP, revenue {fmt(profile.annual_revenue)} <= {fmt(s.qfzp_revenue_ceiling)}; "
                    f"qualifying income {fmt(qualifying)} at 0%, non-qualifying "
                    f"{fmt(positive_income)} - {fmt(qualifying)} = {fmt(non_qualifying)}"
                ),
                non_qualifying,
                REF_QFZP,
            )
            trail.add(
                "Calculate CIT on non-qualifying income",
                f"{fmt(non_qualifying)} x {percent(s.cit_standard_rate)} = {fmt(cit_due)}",
                cit_due,
                REF_QFZP,
            )
        elif sbr_eligible:
            path = ReliefPath.SMALL_BUSINESS_RELIEF
            cit_due = to_money(ZERO, places)
            rate = ZERO
            qualifying = ZERO
            trail.add(
                "Apply Small Business Relief",
                f"Taxable income {fmt(taxable)} <= {fmt(s.cit_small_business_threshold)}; CIT = 0",
                cit_due,
                REF_SBR,
            )
        else:
            path = ReliefPath.STANDARD
            base = taxable - s.cit_small_business_threshold
            cit_due = self.standard_tax(taxable)
            rate = s.cit_standard_rate
            qualifying = ZERO
            trail.add(
                "Apply 0% band",
                f"{fmt(taxable)} - {fmt(s.cit_small_business_threshold)} = {fmt(base)}",
                base,
                REF_RATES,
            )
            trail.add(
                "Calculate CIT at the standard rate",
                f"{fmt(base)} x {percent(rate)} = {fmt(cit_due)}",
                cit_due,
                REF_RATES,
            )

        for note in policy_notes:
            logger.info(f"CIT policy note for {profile.name}: {note}")
        logger.info(f"CIT calculated for {profile.name}: path {path.value}, due {cit_due}")

        return CITResult(
            taxable_income=taxable,
            qualifying_income=qualifying,
            cit_rate=rate,
            cit_due=cit_due,
            small_business_relief_applied=path == ReliefPath.SMALL_BUSINESS_RELIEF,
            free_zone_applied=path == ReliefPath.QUALIFYING_FREE_ZONE,
            relief_path=path,
            policy_notes=policy_notes,
            audit_trail=trail.build(),
            currency=s.currency,
        )

    # ===========================================
    # TAXABLE INCOME
    # ===========================================

    def compute_taxable_income(
        self,
        snapshot: LedgerSnapshot,
        period: Period,
        losses_brought_forward: Any = ZERO,
        capital_allowances: Any = ZERO,
    ) -> TaxableIncomeComputation:
        """
        Derive taxable income from the ledger.

        Accounting profit plus non-deductible expenses, less capital
        allowances, less brought-forward losses capped at 75% of the
        remaining income. Qualifying income is the
        taxable income apportioned by the share of QFZP-qualifying revenue.
        """
        s = self.settings
        places = s.rounding_places
        losses_bf = validate_amount(losses_brought_forward, "losses_brought_forward")
        allowances = validate_amount(capital_allowances, "capital_allowances")

        revenue_txs = snapshot.in_period(period.start_date, period.end_date, [TransactionKind.REVENUE])
        expense_txs = snapshot.in_period(period.start_date, period.end_date, [TransactionKind.EXPENSE])

        total_revenue = sum_money(t.amount for t in revenue_txs)
        total_expenses = sum_money(t.amount for t in expense_txs)
        accounting_profit = total_revenue - total_expenses

        non_deductible_txs = [t for t in expense_txs if not is_cit_deductible(t, snapshot.entry_for(t))]
        non_deductible = sum_money(t.amount for t in non_deductible_txs)
        adjusted = accounting_profit + non_deductible
        after_allowances = adjusted - allowances

        if after_allowances > 0:
            cap = to_money(after_allowances * s.tax_loss_relief_cap, places)
            losses_utilized = min(losses_bf, cap)
        else:
            losses_utilized = ZERO
        taxable = max(ZERO, after_allowances - losses_utilized)
        losses_cf = losses_bf - losses_utilized + max(ZERO, -after_allowances)

        qualifying_txs = [t for t in revenue_txs if is_qualifying_income(t, snapshot.entry_for(t))]
        qualifying_revenue = sum_money(t.amount for t in qualifying_txs)
        if total_revenue > 0 and taxable > 0:
            qualifying = to_money(taxable * qualifying_revenue / total_revenue, places)
        else:
            qualifying = ZERO

        trail = AuditTrailBuilder()
        trail.add(
            "Total revenue for the tax period",
            f"Sum of {len(revenue_txs)} revenue transactions = {fmt(total_revenue)}",
            total_revenue,
            REF_TAXABLE_INCOME,
            [t.id for t in revenue_txs],
        )
        trail.add(
            "Total expenses for the tax period",
            f"Sum of {len(expense_txs)} expense transactions = {fmt(total_expenses)}",
            total_expenses,
            REF_TAXABLE_INCOME,
            [t.id for t in expense_txs],
        )
        trail.add(
            "Accounting profit",
            f"{fmt(total_revenue)} - {fmt(total_expenses)} = {fmt(accounting_profit)}",
            accounting_profit,
            REF_TAXABLE_INCOME,
        )
        trail.add(
            "Add back non-deductible expenses",
            f"{fmt(accounting_profit)} + {fmt(non_deductible)} = {fmt(adjusted)}",
            adjusted,
            REF_NON_DEDUCTIBLE,
            [t.id for t in non_deductible_txs],
        )
        trail.add(
            "Deduct capital allowances",
            f"{fmt(adjusted)} - {fmt(allowances)} = {fmt(after_allowances)}",
            after_allowances,
            REF_CAPITAL_ALLOWANCES,
        )
        trail.add(
            "Apply tax loss relief",
            (
                f"min(losses brought forward {fmt(losses_bf)}, "
                f"{percent(s.tax_loss_relief_cap)} of {fmt(max(ZERO, after_allowances))}) = {fmt(losses_utilized)}; "
                f"carried forward {fmt(losses_cf)}"
            ),
            losses_utilized,
            REF_LOSSES,
        )
        trail.add(
            "Taxable income",
            f"max(0, {fmt(after_allowances)} - {fmt(losses_utilized)}) = {fmt(taxable)}",
            taxable,
            REF_TAXABLE_INCOME,
        )

        logger.debug(f"Taxable income {period.label()}: {taxable} (qualifying {qualifying})")
        return TaxableIncomeComputation(
            period_start=period.start_date,
            period_end=period.end_date,
            total_revenue=total_revenue,
            total_expenses=total_expenses,
            accounting_profit=accounting_profit,
            non_deductible_expenses=non_deductible,
            adjusted_income=adjusted,
            capital_allowances=allowances,
            income_after_allowances=after_allowances,
            losses_brought_forward=losses_bf,
            losses_utilized=losses_utilized,
            losses_carried_forward=losses_cf,
            taxable_income=taxable,
            qualifying_income=qualifying,
            audit_trail=trail.build(),
        )

    def calculate_for_period(
        self,
        snapshot: LedgerSnapshot,
        period: Period,
        losses_brought_forward: Any = ZERO,
        capital_allowances: Any = ZERO,
    ) -> CITResult:
        """Taxable income from the ledger followed by the CIT calculation."""
        computation = self.compute_taxable_income(snapshot, period, losses_brought_forward, capital_allowances)
        return self.calculate_cit(computation.taxable_income, snapshot.profile, computation.qualifying_income)

    @staticmethod
    def to_audit_record(
        result: CITResult,
        company_name: str,
        period_start: Optional[date] = None,
        period_end: Optional[date] = None,
    ) -> CalculationAuditRecord:
        return CalculationAuditRecord(
            calculation_type=CalculationType.CIT,
            company_name=company_name,
            period_start=period_start,
            period_end=period_end,
            method=result.relief_path.value,
            regulatory_reference=CIT_LAW,
            final_result=result.cit_due,
            summary=result.model_dump(mode="json", exclude={"audit_trail"}),
            entries=tuple(result.audit_trail),
        )


class CITService:
    """CIT calculations with audit trail persistence."""

    def __init__(self, sink: Optional[AuditTrailSink] = None, settings: Optional[TaxSettings] = None):
        self.calculator = CITCalculator(settings)
        self.recorder = AuditTrailRecorder(sink)

    async def calculate_and_record(
        self,
        snapshot: LedgerSnapshot,
        period: Period,
        losses_brought_forward: Any = ZERO,
        capital_allowances: Any = ZERO,
    ) -> CITResult:
        """
        Compute taxable income and CIT for a period, then persist both
        audit trails. The result is returned even if persistence fails.
        """
        computation = self.calculator.compute_taxable_income(
            snapshot, period, losses_brought_forward, capital_allowances
        )
        result = self.calculator.calculate_cit(
            computation.taxable_income, snapshot.profile, computation.qualifying_income
        )

        name = snapshot.profile.name
        await self.recorder.record(CalculationAuditRecord(
            calculation_type=CalculationType.TAXABLE_INCOME,
            company_name=name,
            period_start=period.start_date,
            period_end=period.end_date,
            method="ACCOUNTING_PROFIT_ADJUSTED",
            regulatory_reference=CIT_LAW,
            final_result=computation.taxable_income,
            summary=computation.model_dump(mode="json", exclude={"audit_trail"}),
            entries=tuple(computation.audit_trail),
        ))
        await self.recorder.record(
            CITCalculator.to_audit_record(result, name, period.start_date, period.end_date)
        )
        return result
