"""
TaxBook UAE - Tax Calculators Package

Tax calculation services for UAE VAT and Corporate Income Tax.

Modules:
- vat_service: VAT return calculation (5% standard rate)
- cit_service: CIT calculation with QFZP and Small Business Relief (0%/9%)
- deadlines: VAT and CIT filing deadlines
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from taxbook.config import TaxSettings
from taxbook.schemas.tax import CITResult, VATAdjustments, VATResult
from taxbook.services.tax_calculators.vat_service import VATCalculator, VATService
from taxbook.services.tax_calculators.cit_service import CITCalculator, CITService
from taxbook.services.tax_calculators.deadlines import (
    cit_filing_deadline,
    filing_deadline,
    next_vat_filing_deadline,
    vat_filing_deadline,
    vat_quarter_end,
)


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def calculate_vat(
    transactions: Iterable[Any],
    adjustments: Optional[VATAdjustments] = None,
    settings: Optional[TaxSettings] = None,
) -> VATResult:
    """
    Calculate a VAT return for a set of period transactions.

    Args:
        transactions: Transaction models or raw records
        adjustments: Corrections and bad debt relief

    Returns:
        VATResult (summary, breakdown, compliance, audit trail)
    """
    return VATCalculator(settings).calculate_vat(transactions, adjustments)


def calculate_cit(
    taxable_income: Decimal,
    profile: Any,
    qualifying_income: Optional[Decimal] = None,
    settings: Optional[TaxSettings] = None,
) -> CITResult:
    """
    Calculate Corporate Income Tax.

    Relief paths are applied in priority order:
    - Qualifying Free Zone Person: 0% on qualifying income
    - Small Business Relief: 0% at or below AED 375,000 taxable income
    - Standard: 9% above AED 375,000

    Returns:
        CITResult
    """
    return CITCalculator(settings).calculate_cit(taxable_income, profile, qualifying_income)
