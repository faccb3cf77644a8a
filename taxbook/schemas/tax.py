"""
TaxBook UAE - Tax Schemas

Pydantic schemas for VAT and CIT results and their audit trails.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from taxbook.schemas.ledger import Money, VATTreatment


class ResultModel(BaseModel):
    """Frozen base for computed results."""
    model_config = ConfigDict(frozen=True)


# ===========================================
# AUDIT TRAIL
# ===========================================

class AuditTrailEntry(ResultModel):
    """One computation step supporting a reported figure."""
    step: int = Field(..., ge=1)
    description: str
    formula: str
    result: Decimal
    regulatory_reference: str
    transaction_ids: Tuple[str, ...] = ()


class CalculationType(str, Enum):
    VAT = "VAT"
    CIT = "CIT"
    TAXABLE_INCOME = "TAXABLE_INCOME"


class CalculationAuditRecord(ResultModel):
    """What an audit sink receives after a calculation completes."""
    calculation_type: CalculationType
    company_name: str
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    method: str
    regulatory_reference: str
    final_result: Decimal
    summary: dict
    entries: Tuple[AuditTrailEntry, ...]


# ===========================================
# VAT
# ===========================================

class VATAdjustments(ResultModel):
    """Period adjustments applied after output and input VAT."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    adjustment_corrections: Money = Decimal("0")
    capital_goods_adjustments: Money = Decimal("0")
    bad_debt_relief: Money = Field(Decimal("0"), ge=0)

    @property
    def total_corrections(self) -> Decimal:
        return self.adjustment_corrections + self.capital_goods_adjustments


class VATSide(str, Enum):
    OUTPUT = "OUTPUT"
    INPUT = "INPUT"


class VATLineItem(ResultModel):
    """VAT breakdown for a single transaction."""
    transaction_id: str
    category: str
    description: str
    amount: Decimal
    treatment: VATTreatment
    vat_rate: Decimal
    vat_amount: Decimal
    side: VATSide
    recoverable: bool = True
    reverse_charge: bool = False


class VATSummary(ResultModel):
    total_taxable_supplies: Decimal
    total_zero_rated_supplies: Decimal
    total_exempt_supplies: Decimal
    total_out_of_scope_supplies: Decimal
    output_vat: Decimal
    # Self-assessed on reverse charge purchases, included in output_vat
    reverse_charge_vat: Decimal = Decimal("0")
    input_vat: Decimal
    input_vat_non_recoverable: Decimal
    adjustment_corrections: Decimal
    bad_debt_relief: Decimal
    net_vat_due: Decimal
    refund_due: Decimal

    @property
    def net_position(self) -> Decimal:
        """Signed net figure: positive is payable, negative is refundable."""
        return self.net_vat_due - self.refund_due


class WarningSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"


class ComplianceWarning(ResultModel):
    code: str
    severity: WarningSeverity
    message: str
    regulatory_reference: str


class ComplianceCheck(ResultModel):
    """Advisory compliance findings; never blocks a calculation."""
    annualized_taxable_supplies: Decimal
    registration_required: bool
    voluntary_registration_eligible: bool
    is_compliant: bool
    warnings: List[ComplianceWarning]
    recommendations: List[str]
    filing_frequency: str
    next_filing_due: Optional[date] = None


class VATResult(ResultModel):
    summary: VATSummary
    breakdown: List[VATLineItem]
    compliance: ComplianceCheck
    audit_trail: List[AuditTrailEntry]
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    currency: str = "AED"


# ===========================================
# CIT
# ===========================================

class ReliefPath(str, Enum):
    """Mutually exclusive CIT paths, listed in evaluation order."""
    QUALIFYING_FREE_ZONE = "qualifying_free_zone"
    SMALL_BUSINESS_RELIEF = "small_business_relief"
    STANDARD = "standard"


class CITResult(ResultModel):
    taxable_income: Decimal
    qualifying_income: Decimal
    cit_rate: Decimal
    cit_due: Decimal
    small_business_relief_applied: bool
    free_zone_applied: bool
    relief_path: ReliefPath
    policy_notes: List[str] = []
    audit_trail: List[AuditTrailEntry]
    currency: str = "AED"


class TaxableIncomeComputation(ResultModel):
    """Taxable income derived from the ledger for a tax period."""
    period_start: date
    period_end: date
    total_revenue: Decimal
    total_expenses: Decimal
    accounting_profit: Decimal
    non_deductible_expenses: Decimal
    adjusted_income: Decimal
    capital_allowances: Decimal
    income_after_allowances: Decimal
    losses_brought_forward: Decimal
    losses_utilized: Decimal
    losses_carried_forward: Decimal
    taxable_income: Decimal
    qualifying_income: Decimal
    audit_trail: List[AuditTrailEntry]
