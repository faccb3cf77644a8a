"""
TaxBook UAE - CIT Calculator Tests

Unit tests for UAE Corporate Income Tax (Federal Decree-Law No. 47 of 2022).
"""

from datetime import date
from decimal import Decimal

import pytest

from taxbook.schemas.ledger import CompanyTaxProfile
from taxbook.schemas.tax import ReliefPath
from taxbook.services.audit_trail_service import verify_audit_trail
from taxbook.services.ledger_service import LedgerSnapshot
from taxbook.services.tax_calculators import CITCalculator, calculate_cit
from taxbook.utils.error_handling import (
    InvalidAmountException,
    LedgerValidationException,
    PolicyAmbiguityException,
)

from tests.conftest import FY2024, expense, revenue


MAINLAND = CompanyTaxProfile(name="Mainland Trading LLC", annual_revenue=Decimal("1000000"))
QFZP = CompanyTaxProfile(
    name="Jebel Ali Logistics FZE",
    is_free_zone=True,
    is_qfzp=True,
    free_zone_name="JAFZA",
    annual_revenue=Decimal("2000000"),
)


class TestReliefPaths:
    """QFZP -> Small Business Relief -> Standard."""

    def test_small_business_relief(self, settings):
        result = calculate_cit(Decimal("300000"), MAINLAND, settings=settings)

        assert result.cit_due == Decimal("0")
        assert result.relief_path == ReliefPath.SMALL_BUSINESS_RELIEF
        assert result.small_business_relief_applied
        assert not result.free_zone_applied
        assert result.cit_rate == Decimal("0")

    def test_standard_rate_above_threshold(self, settings):
        """(500,000 - 375,000) x 9% = 11,250"""
        result = calculate_cit(Decimal("500000"), MAINLAND, settings=settings)

        assert result.cit_due == Decimal("11250.00")
        assert result.relief_path == ReliefPath.STANDARD
        assert result.cit_rate == Decimal("0.09")

    def test_qfzp_all_income_qualifying(self, settings):
        result = calculate_cit(Decimal("1500000"), QFZP, settings=settings)

        assert result.cit_due == Decimal("0")
        assert result.relief_path == ReliefPath.QUALIFYING_FREE_ZONE
        assert result.free_zone_applied
        assert result.qualifying_income == Decimal("1500000")
        assert result.cit_rate == Decimal("0")

    def test_qfzp_non_qualifying_income_taxed(self, settings):
        """Non-qualifying income is taxed at 9% without the 375,000 band."""
        result = calculate_cit(Decimal("1000000"), QFZP, Decimal("800000"), settings=settings)

        assert result.cit_due == Decimal("18000.00")
        assert result.cit_rate == Decimal("0.09")

    def test_qualifying_income_capped_at_taxable(self, settings):
        result = calculate_cit(Decimal("100000"), QFZP, Decimal("250000"), settings=settings)

        assert result.qualifying_income == Decimal("100000")
        assert result.cit_due == Decimal("0")

    def test_qfzp_ceiling_exceeded(self, settings):
        large = QFZP.model_copy(update={"annual_revenue": Decimal("5000000")})
        result = calculate_cit(Decimal("1000000"), large, settings=settings)

        assert result.relief_path == ReliefPath.STANDARD
        assert result.cit_due == Decimal("56250.00")
        assert any("QFZP ceiling" in note for note in result.policy_notes)

    def test_qfzp_without_free_zone_is_ambiguous(self, settings):
        profile = CompanyTaxProfile(name="Confused LLC", is_qfzp=True)

        with pytest.raises(PolicyAmbiguityException) as exc_info:
            calculate_cit(Decimal("100000"), profile, settings=settings)

        assert exc_info.value.details["ambiguous_rule"] == "QFZP_REQUIRES_FREE_ZONE"

    def test_overlapping_eligibility_recorded(self, settings):
        result = calculate_cit(Decimal("300000"), QFZP, settings=settings)

        assert result.relief_path == ReliefPath.QUALIFYING_FREE_ZONE
        assert any("Small Business Relief" in note for note in result.policy_notes)

    def test_loss_position(self, settings):
        result = calculate_cit(Decimal("-50000"), MAINLAND, settings=settings)

        assert result.cit_due == Decimal("0")
        assert result.relief_path == ReliefPath.SMALL_BUSINESS_RELIEF


class TestThresholdBoundaries:
    """Behaviour at the AED 375,000 boundary."""

    def test_exactly_at_threshold(self, settings):
        result = calculate_cit(Decimal("375000"), MAINLAND, settings=settings)

        assert result.cit_due == Decimal("0")
        assert result.relief_path == ReliefPath.SMALL_BUSINESS_RELIEF

    def test_one_dirham_above_threshold(self, settings):
        result = calculate_cit(Decimal("375001"), MAINLAND, settings=settings)

        assert result.cit_due == Decimal("0.09")
        assert result.relief_path == ReliefPath.STANDARD

    def test_cit_is_monotonic(self, settings):
        calculator = CITCalculator(settings)
        incomes = [Decimal(v) for v in ("0", "100000", "374999.99", "375000", "375000.01", "400000", "1e6", "5e7")]
        dues = [calculator.calculate_cit(i, MAINLAND).cit_due for i in incomes]

        assert dues == sorted(dues)


class TestCITInputs:
    """Boundary validation of CIT inputs."""

    def test_float_taxable_income_rejected(self, settings):
        with pytest.raises(InvalidAmountException):
            calculate_cit(500000.0, MAINLAND, settings=settings)

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity", "sNaN"])
    def test_non_finite_taxable_income_rejected(self, settings, value):
        with pytest.raises(InvalidAmountException) as exc_info:
            calculate_cit(value, MAINLAND, settings=settings)

        assert exc_info.value.field == "taxable_income"

    def test_malformed_taxable_income_rejected(self, settings):
        with pytest.raises(InvalidAmountException):
            calculate_cit("five hundred", MAINLAND, settings=settings)

    def test_string_taxable_income_accepted(self, settings):
        assert calculate_cit("500000", MAINLAND, settings=settings).cit_due == Decimal("11250.00")

    def test_negative_qualifying_income_rejected(self, settings):
        with pytest.raises(InvalidAmountException):
            calculate_cit(Decimal("100000"), QFZP, Decimal("-1"), settings=settings)

    def test_profile_mapping_validated(self, settings):
        result = calculate_cit(
            Decimal("1000000"),
            {"name": "Mapped FZCO", "is_free_zone": True, "is_qfzp": True, "annual_revenue": "2000000"},
            settings=settings,
        )
        assert result.relief_path == ReliefPath.QUALIFYING_FREE_ZONE

    def test_invalid_profile_mapping(self, settings):
        with pytest.raises(LedgerValidationException):
            calculate_cit(Decimal("1000"), {"name": "", "annual_revenue": "-5"}, settings=settings)


class TestCITAuditTrail:
    """Every CIT result carries a trail ending at cit_due."""

    @pytest.mark.parametrize("taxable,profile", [
        (Decimal("300000"), MAINLAND),
        (Decimal("500000"), MAINLAND),
        (Decimal("1000000"), QFZP),
    ])
    def test_trail_ends_at_cit_due(self, settings, taxable, profile):
        result = calculate_cit(taxable, profile, settings=settings)

        assert verify_audit_trail(result.audit_trail, result.cit_due)
        assert result.audit_trail[0].result == taxable

    def test_trail_cites_statute(self, settings):
        result = calculate_cit(Decimal("500000"), MAINLAND, settings=settings)

        assert all("Federal Decree-Law No. 47 of 2022" in e.regulatory_reference for e in result.audit_trail)
        assert "125,000.00 x 9%" in result.audit_trail[-1].formula

    def test_repeat_calculation_is_identical(self, settings):
        calculator = CITCalculator(settings)
        first = calculator.calculate_cit(Decimal("812345.67"), MAINLAND)
        second = calculator.calculate_cit(Decimal("812345.67"), MAINLAND)

        assert first.model_dump_json() == second.model_dump_json()


class TestTaxableIncome:
    """Taxable income derived from the ledger."""

    def test_non_deductible_expenses_added_back(self, settings, trading_snapshot):
        computation = CITCalculator(settings).compute_taxable_income(trading_snapshot, FY2024)

        assert computation.total_revenue == Decimal("330000.00")
        assert computation.total_expenses == Decimal("151000.00")
        assert computation.accounting_profit == Decimal("179000.00")
        assert computation.non_deductible_expenses == Decimal("5000.00")
        assert computation.taxable_income == Decimal("184000.00")
        assert verify_audit_trail(computation.audit_trail, computation.taxable_income)
        assert computation.audit_trail[3].transaction_ids == ("T-12",)

    def test_loss_relief_capped_at_75_percent(self, settings):
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "1000000"), expense("E-1", "200000")], settings=settings,
        )
        computation = CITCalculator(settings).compute_taxable_income(snapshot, FY2024, Decimal("1000000"))

        assert computation.losses_utilized == Decimal("600000.00")
        assert computation.taxable_income == Decimal("200000.00")
        assert computation.losses_carried_forward == Decimal("400000.00")

    def test_losses_below_cap_fully_used(self, settings):
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "1000000"), expense("E-1", "200000")], settings=settings,
        )
        computation = CITCalculator(settings).compute_taxable_income(snapshot, FY2024, "100000")

        assert computation.losses_utilized == Decimal("100000")
        assert computation.taxable_income == Decimal("700000")
        assert computation.losses_carried_forward == Decimal("0")

    def test_loss_year_carries_forward(self, settings):
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "100000"), expense("E-1", "250000")], settings=settings,
        )
        computation = CITCalculator(settings).compute_taxable_income(snapshot, FY2024, Decimal("50000"))

        assert computation.taxable_income == Decimal("0")
        assert computation.losses_utilized == Decimal("0")
        assert computation.losses_carried_forward == Decimal("200000")

    def test_capital_allowances_before_loss_relief(self, settings):
        """(800,000 - 100,000) x 75% caps loss relief at 525,000."""
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "1000000"), expense("E-1", "200000")], settings=settings,
        )
        computation = CITCalculator(settings).compute_taxable_income(
            snapshot, FY2024, Decimal("1000000"), capital_allowances=Decimal("100000")
        )

        assert computation.capital_allowances == Decimal("100000")
        assert computation.income_after_allowances == Decimal("700000")
        assert computation.losses_utilized == Decimal("525000.00")
        assert computation.taxable_income == Decimal("175000.00")
        assert computation.losses_carried_forward == Decimal("475000.00")

        step = computation.audit_trail[4]
        assert step.description == "Deduct capital allowances"
        assert step.result == Decimal("700000")
        assert verify_audit_trail(computation.audit_trail, computation.taxable_income)

    def test_capital_allowances_exceeding_income_create_loss(self, settings):
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "100000"), expense("E-1", "20000")], settings=settings,
        )
        computation = CITCalculator(settings).compute_taxable_income(
            snapshot, FY2024, capital_allowances="100000"
        )

        assert computation.taxable_income == Decimal("0")
        assert computation.losses_carried_forward == Decimal("20000")

    def test_capital_allowances_reduce_cit(self, settings):
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "1000000"), expense("E-1", "200000")], settings=settings,
        )
        result = CITCalculator(settings).calculate_for_period(
            snapshot, FY2024, capital_allowances=Decimal("300000")
        )

        assert result.taxable_income == Decimal("500000")
        assert result.cit_due == Decimal("11250.00")

    @pytest.mark.parametrize("allowances", [Decimal("-1"), "Infinity", 1000.0])
    def test_invalid_capital_allowances_rejected(self, settings, trading_snapshot, allowances):
        with pytest.raises(InvalidAmountException):
            CITCalculator(settings).compute_taxable_income(trading_snapshot, FY2024, capital_allowances=allowances)

    def test_negative_losses_rejected(self, settings, trading_snapshot):
        with pytest.raises(InvalidAmountException):
            CITCalculator(settings).compute_taxable_income(trading_snapshot, FY2024, Decimal("-1"))

    def test_qualifying_income_apportioned(self, settings):
        snapshot = LedgerSnapshot.build(
            [
                revenue("R-1", "600000"),
                revenue("R-2", "400000", "FINANCE_INCOME"),
                expense("E-1", "500000"),
            ],
            profile=QFZP.model_copy(update={"annual_revenue": Decimal("1000000")}),
            settings=settings,
        )
        calculator = CITCalculator(settings)
        computation = calculator.compute_taxable_income(snapshot, FY2024)
        result = calculator.calculate_for_period(snapshot, FY2024)

        assert computation.qualifying_income == Decimal("300000.00")
        assert result.relief_path == ReliefPath.QUALIFYING_FREE_ZONE
        assert result.cit_due == Decimal("18000.00")

    def test_period_bounds(self, settings):
        snapshot = LedgerSnapshot.build(
            [revenue("R-1", "100", on=date(2023, 12, 31)), revenue("R-2", "200", on=date(2024, 1, 1))],
            settings=settings,
        )
        computation = CITCalculator(settings).compute_taxable_income(snapshot, FY2024)

        assert computation.total_revenue == Decimal("200")

    def test_trading_year_falls_under_small_business_relief(self, settings, trading_snapshot):
        result = CITCalculator(settings).calculate_for_period(trading_snapshot, FY2024)

        assert result.taxable_income == Decimal("184000.00")
        assert result.cit_due == Decimal("0")
        assert result.relief_path == ReliefPath.SMALL_BUSINESS_RELIEF
