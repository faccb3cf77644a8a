"""
TaxBook UAE - VAT Calculator Service

VAT return computation under Federal Decree-Law No. 8 of 2017.

UAE VAT Rate: 5% (standard)

Key Features:
- Output VAT on taxable supplies, zero-rated and exempt supplies tracked separately
- Input VAT recovery with a central non-recoverable category list
- Blocked input tax on accounts such as motor vehicles for personal use
- Reverse charge on imported goods and services, self-assessed as output VAT
- Corrections, capital goods adjustments and bad debt relief
- Advisory compliance checks (registration thresholds, ratio anomalies)
- Step-by-step audit trail with statutory references
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from taxbook.config import TaxSettings, resolve_settings
from taxbook.schemas.ledger import (
    CompanyTaxProfile,
    Period,
    TransactionBase,
    TransactionKind,
    VATTreatment,
)
from taxbook.schemas.tax import (
    CalculationAuditRecord,
    CalculationType,
    ComplianceCheck,
    ComplianceWarning,
    VATAdjustments,
    VATLineItem,
    VATResult,
    VATSide,
    VATSummary,
    WarningSeverity,
)
from taxbook.services.audit_trail_service import AuditTrailBuilder, AuditTrailRecorder, AuditTrailSink
from taxbook.services.chart_of_accounts import ChartOfAccounts
from taxbook.services.ledger_service import LedgerSnapshot, resolve_vat_treatment
from taxbook.services.tax_calculators.deadlines import vat_filing_deadline
from taxbook.utils.money import ZERO, fmt, percent, sum_money, to_money

logger = logging.getLogger(__name__)


# Federal Decree-Law No. 8 of 2017 on Value Added Tax
VAT_LAW = "Federal Decree-Law No. 8 of 2017"
REF_OUTPUT_VAT = f"{VAT_LAW}, Art. 2 and Art. 3 (standard rate); Art. 45-46 (exempt and zero-rated supplies)"
REF_REVERSE_CHARGE = f"{VAT_LAW}, Art. 48 (reverse charge on imports)"
REF_INPUT_VAT = f"{VAT_LAW}, Art. 54-55; Executive Regulation Art. 53 (blocked input tax)"
REF_CORRECTIONS = f"{VAT_LAW}, Art. 70; Executive Regulation Art. 57 and 59 (capital assets scheme, corrections)"
REF_BAD_DEBT = f"{VAT_LAW}, Art. 64 (bad debt relief)"
REF_NET_POSITION = f"{VAT_LAW}, Art. 70 (payable tax) and Art. 74 (refunds)"
REF_REGISTRATION = f"{VAT_LAW}, Art. 13 (mandatory) and Art. 17 (voluntary registration)"


class VATCalculator:
    """
    VAT return calculator.

    Pure and synchronous: the same transactions, adjustments and settings
    always produce an equal VATResult.
    """

    def __init__(self, settings: Optional[TaxSettings] = None):
        self.settings = resolve_settings(settings)

    def line_vat(self, transaction: TransactionBase, treatment: VATTreatment) -> Tuple[Decimal, Decimal]:
        """
        Effective rate and VAT amount for one transaction.

        Exempt, zero-rated, blocked and out-of-scope lines carry no VAT.
        An explicit ``vat_amount`` on a standard-rated line is taken as given.
        """
        if treatment != VATTreatment.STANDARD:
            return ZERO, ZERO
        rate = transaction.vat_rate if transaction.vat_rate is not None else self.settings.vat_standard_rate
        if transaction.vat_amount is not None:
            return rate, to_money(transaction.vat_amount, self.settings.rounding_places)
        return rate, to_money(transaction.amount * rate, self.settings.rounding_places)

    def is_input_recoverable(self, category: str, treatment: VATTreatment) -> bool:
        if treatment != VATTreatment.STANDARD:
            return False
        return category not in self.settings.non_recoverable_input_categories

    # ===========================================
    # VAT RETURN
    # ===========================================

    def calculate_vat(
        self,
        transactions: Iterable[Any],
        adjustments: Optional[VATAdjustments] = None,
        period: Optional[Period] = None,
        chart: Optional[ChartOfAccounts] = None,
        profile: Optional[CompanyTaxProfile] = None,
        rolling_taxable_supplies: Optional[Decimal] = None,
    ) -> VATResult:
        """
        Calculate a VAT return from period transactions.

        Args:
            transactions: Transaction models or raw records; validated before any figure is computed
            adjustments: Corrections, capital goods adjustments and bad debt relief
            period: Tax period; transactions outside it are ignored
            chart: Chart of accounts (UAE default when omitted)
            profile: Company profile, used for the registration check
            rolling_taxable_supplies: Trailing 12-month taxable supplies, replaces annualization

        Returns:
            VATResult with summary, per-line breakdown, compliance check and audit trail
        """
        snapshot = LedgerSnapshot.build(transactions, profile=profile, chart=chart, settings=self.settings)
        return self.calculate_from_snapshot(snapshot, adjustments, period, rolling_taxable_supplies)

    def calculate_for_period(
        self,
        snapshot: LedgerSnapshot,
        period: Period,
        adjustments: Optional[VATAdjustments] = None,
    ) -> VATResult:
        """VAT return for a period, with the registration test on trailing 12-month supplies."""
        rolling = snapshot.rolling_taxable_supplies(period.end_date)
        return self.calculate_from_snapshot(snapshot, adjustments, period, rolling)

    def calculate_from_snapshot(
        self,
        snapshot: LedgerSnapshot,
        adjustments: Optional[VATAdjustments] = None,
        period: Optional[Period] = None,
        rolling_taxable_supplies: Optional[Decimal] = None,
    ) -> VATResult:
        adjustments = adjustments or VATAdjustments()
        places = self.settings.rounding_places
        start, end = (period.start_date, period.end_date) if period else (None, None)

        breakdown: List[VATLineItem] = []
        supplies: Dict[VATTreatment, Decimal] = {t: ZERO for t in VATTreatment}
        output_ids: List[str] = []
        standard_rates = set()

        # Output side
        output_vat = ZERO
        for tx in snapshot.select(start, end, [TransactionKind.REVENUE]):
            treatment = resolve_vat_treatment(tx, snapshot.entry_for(tx))
            rate, vat = self.line_vat(tx, treatment)
            supplies[treatment] += tx.amount
            if treatment == VATTreatment.STANDARD:
                output_vat += vat
                output_ids.append(tx.id)
                standard_rates.add(rate)
            breakdown.append(VATLineItem(
                transaction_id=tx.id,
                category=tx.category,
                description=tx.description,
                amount=tx.amount,
                treatment=treatment,
                vat_rate=rate,
                vat_amount=vat,
                side=VATSide.OUTPUT,
            ))

        # Input side; reverse charge purchases are also self-assessed as output VAT
        input_vat = ZERO
        non_recoverable = ZERO
        reverse_charge_vat = ZERO
        input_ids: List[str] = []
        reverse_charge_ids: List[str] = []
        for tx in snapshot.select(start, end, [TransactionKind.EXPENSE]):
            treatment = resolve_vat_treatment(tx, snapshot.entry_for(tx))
            rate, vat = self.line_vat(tx, treatment)
            recoverable = self.is_input_recoverable(tx.category, treatment)
            reverse_charge = tx.is_reverse_charge and treatment == VATTreatment.STANDARD
            if reverse_charge:
                reverse_charge_vat += vat
                reverse_charge_ids.append(tx.id)
                breakdown.append(VATLineItem(
                    transaction_id=tx.id,
                    category=tx.category,
                    description=tx.description,
                    amount=tx.amount,
                    treatment=treatment,
                    vat_rate=rate,
                    vat_amount=vat,
                    side=VATSide.OUTPUT,
                    reverse_charge=True,
                ))
            if recoverable:
                input_vat += vat
                input_ids.append(tx.id)
            else:
                non_recoverable += vat
            breakdown.append(VATLineItem(
                transaction_id=tx.id,
                category=tx.category,
                description=tx.description,
                amount=tx.amount,
                treatment=treatment,
                vat_rate=rate,
                vat_amount=vat,
                side=VATSide.INPUT,
                recoverable=recoverable,
                reverse_charge=reverse_charge,
            ))

        supply_vat = output_vat
        output_vat += reverse_charge_vat
        output_ids.extend(reverse_charge_ids)

        corrections = to_money(adjustments.total_corrections, places)
        bad_debt_relief = to_money(adjustments.bad_debt_relief, places)

        net_position = output_vat - input_vat + corrections - bad_debt_relief
        net_vat_due = max(ZERO, net_position)
        refund_due = max(ZERO, -net_position)

        summary = VATSummary(
            total_taxable_supplies=supplies[VATTreatment.STANDARD],
            total_zero_rated_supplies=supplies[VATTreatment.ZERO_RATED],
            total_exempt_supplies=supplies[VATTreatment.EXEMPT],
            total_out_of_scope_supplies=supplies[VATTreatment.NOT_APPLICABLE],
            output_vat=output_vat,
            reverse_charge_vat=reverse_charge_vat,
            input_vat=input_vat,
            input_vat_non_recoverable=non_recoverable,
            adjustment_corrections=corrections,
            bad_debt_relief=bad_debt_relief,
            net_vat_due=net_vat_due,
            refund_due=refund_due,
        )
        logger.debug(
            f"VAT summary: output {output_vat}, input {input_vat}, "
            f"net due {net_vat_due}, refund {refund_due}"
        )

        # Audit trail
        trail = AuditTrailBuilder()
        if len(standard_rates) == 1:
            rate = next(iter(standard_rates))
            output_formula = (
                f"Standard-rated supplies {fmt(summary.total_taxable_supplies)} x {percent(rate)} "
                f"= {fmt(supply_vat)}"
            )
        else:
            output_formula = (
                f"Sum of (supply amount x rate) over {len(output_ids) - len(reverse_charge_ids)} "
                f"standard-rated supplies = {fmt(supply_vat)}; zero-rated {fmt(summary.total_zero_rated_supplies)} "
                f"and exempt {fmt(summary.total_exempt_supplies)} carry no VAT"
            )
        output_reference = REF_OUTPUT_VAT
        if reverse_charge_vat:
            output_formula += (
                f"; reverse charge self-assessed on {len(reverse_charge_ids)} purchases {fmt(reverse_charge_vat)}; "
                f"output VAT {fmt(supply_vat)} + {fmt(reverse_charge_vat)} = {fmt(output_vat)}"
            )
            output_reference = f"{REF_OUTPUT_VAT}; {REF_REVERSE_CHARGE}"
        trail.add(
            "Calculate output VAT on taxable supplies", output_formula, output_vat, output_reference, output_ids
        )
        trail.add(
            "Calculate recoverable input VAT",
            (
                f"Sum of (expense amount x rate) over {len(input_ids)} recoverable expenses = {fmt(input_vat)}; "
                f"non-recoverable {fmt(non_recoverable)} excluded"
            ),
            input_vat,
            REF_INPUT_VAT,
            input_ids,
        )
        trail.add(
            "Apply corrections and capital goods adjustments",
            (
                f"Corrections {fmt(to_money(adjustments.adjustment_corrections, places))} + "
                f"capital goods {fmt(to_money(adjustments.capital_goods_adjustments, places))} = {fmt(corrections)}"
            ),
            corrections,
            REF_CORRECTIONS,
        )
        trail.add(
            "Apply bad debt relief",
            f"Bad debt relief claimed = {fmt(bad_debt_relief)}",
            bad_debt_relief,
            REF_BAD_DEBT,
        )
        trail.add(
            "Calculate net VAT position",
            (
                f"Output VAT {fmt(output_vat)} - input VAT {fmt(input_vat)} + corrections {fmt(corrections)} "
                f"- bad debt relief {fmt(bad_debt_relief)} = {fmt(net_position)}"
            ),
            summary.net_position,
            REF_NET_POSITION,
        )

        compliance = self.check_compliance(summary, period, profile=snapshot.profile,
                                           rolling_taxable_supplies=rolling_taxable_supplies)

        logger.info(
            f"VAT calculated for {snapshot.profile.name}"
            f"{' ' + period.label() if period else ''}: net position {summary.net_position}"
        )
        return VATResult(
            summary=summary,
            breakdown=breakdown,
            compliance=compliance,
            audit_trail=trail.build(),
            period_start=start,
            period_end=end,
            currency=self.settings.currency,
        )

    # ===========================================
    # COMPLIANCE CHECKS
    # ===========================================

    def annualize(self, taxable_supplies: Decimal, period: Optional[Period]) -> Decimal:
        """Scale period supplies to a 365-day year. Without a period the figure is taken as annual."""
        if period is None:
            return taxable_supplies
        return to_money(taxable_supplies * Decimal(365) / Decimal(period.days), self.settings.rounding_places)

    def check_compliance(
        self,
        summary: VATSummary,
        period: Optional[Period] = None,
        profile: Optional[CompanyTaxProfile] = None,
        rolling_taxable_supplies: Optional[Decimal] = None,
    ) -> ComplianceCheck:
        """
        Advisory compliance findings. Never raises for a finding; warnings
        are data returned to the caller.
        """
        s = self.settings
        warnings: List[ComplianceWarning] = []
        recommendations: List[str] = []

        taxable = summary.total_taxable_supplies + summary.total_zero_rated_supplies
        if rolling_taxable_supplies is not None:
            annualized = rolling_taxable_supplies
        else:
            annualized = self.annualize(taxable, period)

        registration_required = annualized > s.vat_mandatory_registration_threshold
        voluntary_eligible = not registration_required and annualized > s.vat_voluntary_registration_threshold
        is_registered = profile.is_vat_registered if profile is not None else True

        if registration_required and not is_registered:
            warnings.append(ComplianceWarning(
                code="VAT_REGISTRATION_REQUIRED",
                severity=WarningSeverity.WARNING,
                message=(
                    f"Annual taxable supplies {fmt(annualized)} exceed the mandatory registration "
                    f"threshold of {fmt(s.vat_mandatory_registration_threshold)}"
                ),
                regulatory_reference=REF_REGISTRATION,
            ))
            recommendations.append("Apply for VAT registration within 30 days of exceeding the threshold")
        if voluntary_eligible and not is_registered:
            warnings.append(ComplianceWarning(
                code="VAT_VOLUNTARY_REGISTRATION",
                severity=WarningSeverity.INFO,
                message=(
                    f"Annual taxable supplies {fmt(annualized)} exceed the voluntary registration "
                    f"threshold of {fmt(s.vat_voluntary_registration_threshold)}"
                ),
                regulatory_reference=REF_REGISTRATION,
            ))
            recommendations.append("Consider voluntary VAT registration as you are approaching the mandatory threshold")

        if summary.input_vat > summary.output_vat * s.vat_input_to_output_warning_ratio:
            warnings.append(ComplianceWarning(
                code="HIGH_INPUT_VAT_RATIO",
                severity=WarningSeverity.WARNING,
                message=(
                    f"Input VAT {fmt(summary.input_vat)} exceeds {s.vat_input_to_output_warning_ratio}x "
                    f"output VAT {fmt(summary.output_vat)}"
                ),
                regulatory_reference=REF_INPUT_VAT,
            ))
            recommendations.append("Ensure tax invoices support every input VAT claim")

        if summary.total_exempt_supplies > summary.total_taxable_supplies:
            warnings.append(ComplianceWarning(
                code="EXEMPT_EXCEEDS_TAXABLE",
                severity=WarningSeverity.WARNING,
                message=(
                    f"Exempt supplies {fmt(summary.total_exempt_supplies)} exceed taxable supplies "
                    f"{fmt(summary.total_taxable_supplies)}"
                ),
                regulatory_reference=REF_OUTPUT_VAT,
            ))
            recommendations.append("Review exempt supplies classification and input VAT apportionment")

        if summary.input_vat_non_recoverable > 0:
            recommendations.append(
                f"Input VAT of {fmt(summary.input_vat_non_recoverable)} is not recoverable; "
                "keep supporting records"
            )

        for warning in warnings:
            if warning.severity == WarningSeverity.WARNING:
                logger.warning(f"VAT compliance warning {warning.code}: {warning.message}")

        next_filing_due: Optional[date] = vat_filing_deadline(period.end_date, s) if period else None

        return ComplianceCheck(
            annualized_taxable_supplies=annualized,
            registration_required=registration_required,
            voluntary_registration_eligible=voluntary_eligible,
            is_compliant=not any(w.severity == WarningSeverity.WARNING for w in warnings),
            warnings=warnings,
            recommendations=recommendations,
            filing_frequency=s.vat_filing_frequency,
            next_filing_due=next_filing_due,
        )

    @staticmethod
    def to_audit_record(result: VATResult, company_name: str) -> CalculationAuditRecord:
        return CalculationAuditRecord(
            calculation_type=CalculationType.VAT,
            company_name=company_name,
            period_start=result.period_start,
            period_end=result.period_end,
            method="VAT_RETURN",
            regulatory_reference=VAT_LAW,
            final_result=result.summary.net_position,
            summary=result.summary.model_dump(mode="json"),
            entries=tuple(result.audit_trail),
        )


class VATService:
    """VAT calculations with audit trail persistence."""

    def __init__(self, sink: Optional[AuditTrailSink] = None, settings: Optional[TaxSettings] = None):
        self.calculator = VATCalculator(settings)
        self.recorder = AuditTrailRecorder(sink)

    async def calculate_and_record(
        self,
        snapshot: LedgerSnapshot,
        period: Period,
        adjustments: Optional[VATAdjustments] = None,
    ) -> VATResult:
        """
        Calculate the period's VAT return, then persist its audit trail.
        The result is returned even if persistence fails.
        """
        result = self.calculator.calculate_for_period(snapshot, period, adjustments)
        await self.recorder.record(VATCalculator.to_audit_record(result, snapshot.profile.name))
        return result

    def summarize(self, results: Iterable[VATResult]) -> Dict[str, Decimal]:
        """Totals across several VAT returns, e.g. the quarters of a year."""
        results = list(results)
        return {
            "output_vat": sum_money(r.summary.output_vat for r in results),
            "input_vat": sum_money(r.summary.input_vat for r in results),
            "net_vat_due": sum_money(r.summary.net_vat_due for r in results),
            "refund_due": sum_money(r.summary.refund_due for r in results),
        }
