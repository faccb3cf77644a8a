"""
TaxBook UAE - Filing Deadlines

Pure date arithmetic for VAT and CIT filing deadlines. The notification
scheduler and the tax engines read their offsets from the same TaxSettings.

- VAT return and payment: 28 days after the end of the tax period
- CIT return: within 9 months of the end of the tax period
"""

from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from taxbook.config import TaxSettings, resolve_settings
from taxbook.utils.error_handling import ErrorCode, ValidationException


def filing_deadline(period_end: date, offset_days: int) -> date:
    """Due date a fixed number of days after a period end."""
    if offset_days < 0:
        raise ValidationException(
            f"Filing offset cannot be negative: {offset_days} days",
            field="offset_days",
            code=ErrorCode.INVALID_INPUT,
        )
    return period_end + timedelta(days=offset_days)


def vat_filing_deadline(period_end: date, settings: Optional[TaxSettings] = None) -> date:
    settings = resolve_settings(settings)
    return filing_deadline(period_end, settings.vat_filing_deadline_days)


def cit_filing_deadline(fiscal_year_end: date, settings: Optional[TaxSettings] = None) -> date:
    """
    Last day of the Nth month after the fiscal year end
    (31 December 2024 -> 30 September 2025).
    """
    settings = resolve_settings(settings)
    target = fiscal_year_end + relativedelta(months=settings.cit_filing_deadline_months)
    return target + relativedelta(day=31)


def vat_quarter_end(value: date) -> date:
    """Calendar quarter end containing ``value``."""
    quarter_last_month = ((value.month - 1) // 3 + 1) * 3
    return date(value.year, quarter_last_month, 1) + relativedelta(day=31)


def next_vat_filing_deadline(as_of: date, settings: Optional[TaxSettings] = None) -> date:
    """Filing deadline of the calendar quarter containing ``as_of``."""
    return vat_filing_deadline(vat_quarter_end(as_of), settings)
