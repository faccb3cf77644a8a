"""
Centralized Error Handling Module for TaxBook UAE

This module provides the exception hierarchy used by the tax engines:
- Input validation errors (fix your input) raised before any calculation
- Reconciliation errors (your books don't add up) raised by post-condition checks
- Policy ambiguity errors for relief paths that cannot be resolved
- Configuration and audit persistence errors
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError

logger = logging.getLogger("taxbook.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_TRN = "INVALID_TRN"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    CATEGORY_KIND_MISMATCH = "CATEGORY_KIND_MISMATCH"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    DUPLICATE_ACCOUNT = "DUPLICATE_ACCOUNT"
    ACCOUNTING_BASIS_VIOLATION = "ACCOUNTING_BASIS_VIOLATION"

    # Reconciliation Errors
    RECONCILIATION_ERROR = "RECONCILIATION_ERROR"
    BALANCE_SHEET_IMBALANCE = "BALANCE_SHEET_IMBALANCE"
    CASH_FLOW_MISMATCH = "CASH_FLOW_MISMATCH"
    AUDIT_TRAIL_MISMATCH = "AUDIT_TRAIL_MISMATCH"

    # Policy Errors
    POLICY_AMBIGUITY = "POLICY_AMBIGUITY"

    # Internal Errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    AUDIT_PERSISTENCE_ERROR = "AUDIT_PERSISTENCE_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a serializable dictionary"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
            field=field,
        )


class InvalidTRNException(ValidationException):
    """Invalid UAE Tax Registration Number"""

    def __init__(self, trn: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid TRN format: {trn}. Expected 15 digits.",
            field="trn",
            code=ErrorCode.INVALID_TRN,
            details={"provided_trn": trn, "expected_format": "XXXXXXXXXXXXXXX (15 digits)"},
        )


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must not be after end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a non-negative decimal.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class UnknownCategoryException(ValidationException):
    """Category or account code missing from the chart of accounts"""

    def __init__(self, category: str, transaction_id: Optional[str] = None, field: str = "category"):
        details = {"category": category}
        if transaction_id is not None:
            details["transaction_id"] = transaction_id
        super().__init__(
            message=f"Unknown chart of accounts code: {category}",
            field=field,
            code=ErrorCode.UNKNOWN_CATEGORY,
            details=details,
        )


class LedgerValidationException(ValidationException):
    """One or more ledger records failed boundary validation"""

    def __init__(self, message: str, errors: List[Dict[str, Any]], code: ErrorCode = ErrorCode.VALIDATION_ERROR):
        super().__init__(
            message=message,
            code=code,
            details={"errors": errors},
        )
        self.errors = errors

    @classmethod
    def from_pydantic(cls, exc: ValidationError, record_index: Optional[int] = None) -> "LedgerValidationException":
        """Translate a Pydantic validation error into ledger error details."""
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            entry = {
                "field": field,
                "message": error["msg"],
                "type": error["type"],
            }
            if record_index is not None:
                entry["record"] = record_index
            errors.append(entry)

        logger.warning(f"LedgerValidationError: {len(errors)} validation errors", extra={"errors": errors})
        return cls("Ledger validation failed", errors)


# ============================================================================
# Reconciliation Exceptions
# ============================================================================

class ReconciliationException(AppException):
    """The books do not add up: a data-integrity problem, not a usage error"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RECONCILIATION_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
        )


class BalanceSheetImbalanceException(ReconciliationException):
    """Assets do not equal liabilities plus equity"""

    def __init__(self, as_of: str, total_assets: Decimal, total_liabilities_and_equity: Decimal):
        difference = total_assets - total_liabilities_and_equity
        super().__init__(
            message=(
                f"Balance sheet as of {as_of} does not balance: assets {total_assets:,.2f} "
                f"vs liabilities and equity {total_liabilities_and_equity:,.2f}"
            ),
            code=ErrorCode.BALANCE_SHEET_IMBALANCE,
            details={
                "as_of": as_of,
                "total_assets": str(total_assets),
                "total_liabilities_and_equity": str(total_liabilities_and_equity),
                "difference": str(difference),
            },
        )


class CashFlowMismatchException(ReconciliationException):
    """Cash flow closing cash differs from balance sheet cash"""

    def __init__(self, end_date: str, closing_cash: Decimal, balance_sheet_cash: Decimal):
        super().__init__(
            message=(
                f"Cash flow closing cash {closing_cash:,.2f} does not match balance sheet "
                f"cash {balance_sheet_cash:,.2f} as of {end_date}"
            ),
            code=ErrorCode.CASH_FLOW_MISMATCH,
            details={
                "end_date": end_date,
                "closing_cash": str(closing_cash),
                "balance_sheet_cash": str(balance_sheet_cash),
            },
        )


class AuditTrailMismatchException(ReconciliationException):
    """Audit trail is out of order or does not support the reported figure"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code=ErrorCode.AUDIT_TRAIL_MISMATCH,
            details=details,
        )


# ============================================================================
# Policy Exceptions
# ============================================================================

class PolicyAmbiguityException(AppException):
    """Relief eligibility cannot be resolved from the documented priority order"""

    def __init__(self, message: str, rule: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        _details = details or {}
        if rule:
            _details["ambiguous_rule"] = rule
        super().__init__(
            code=ErrorCode.POLICY_AMBIGUITY,
            message=message,
            details=_details,
        )


# ============================================================================
# Internal Exceptions
# ============================================================================

class ConfigurationException(AppException):
    """Invalid tax configuration"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=ErrorCode.CONFIGURATION_ERROR,
            message=message,
            details=details,
            original_error=original_error,
        )


class AuditPersistenceException(AppException):
    """Audit trail could not be written to its sink"""

    def __init__(self, message: str = "Failed to persist audit trail", original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.AUDIT_PERSISTENCE_ERROR,
            message=message,
            original_error=original_error,
        )


# ============================================================================
# Utility Functions
# ============================================================================

def validate_trn(trn: str) -> str:
    """Validate and clean a UAE Tax Registration Number"""
    cleaned = trn.replace("-", "").replace(" ", "")
    if len(cleaned) != 15 or not cleaned.isdigit():
        raise InvalidTRNException(trn)
    return cleaned


def validate_amount(amount: Any, field: str = "amount", allow_zero: bool = True) -> Decimal:
    """Validate a monetary amount, refusing binary floats"""
    if isinstance(amount, (float, bool)):
        raise InvalidAmountException(amount, field, message=f"Invalid amount for {field}: floats are not accepted, use a decimal string")
    try:
        value = Decimal(str(amount))
    except (TypeError, ValueError, InvalidOperation):
        raise InvalidAmountException(amount, field)
    if not value.is_finite() or value < 0 or (not allow_zero and value == 0):
        raise InvalidAmountException(amount, field)
    return value


# Export all exceptions for easy importing
__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "InvalidTRNException",
    "InvalidDateRangeException",
    "InvalidAmountException",
    "UnknownCategoryException",
    "LedgerValidationException",

    # Reconciliation
    "ReconciliationException",
    "BalanceSheetImbalanceException",
    "CashFlowMismatchException",
    "AuditTrailMismatchException",

    # Policy
    "PolicyAmbiguityException",

    # Internal
    "ConfigurationException",
    "AuditPersistenceException",

    # Utilities
    "validate_trn",
    "validate_amount",
]
