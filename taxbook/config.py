"""
TaxBook UAE - Configuration Settings

This module holds the single source of truth for every UAE tax constant
used by the VAT engine, the CIT engine, the statement generator and the
filing-deadline helpers, loaded through Pydantic Settings.

Values can be overridden with TAXBOOK_* environment variables or a .env file.
The settings object is frozen: consumers receive it by injection and never
mutate it.
"""

from decimal import Decimal
from functools import lru_cache
from typing import FrozenSet, Optional

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taxbook.utils.error_handling import ConfigurationException


class TaxSettings(BaseSettings):
    """UAE tax configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TAXBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "TaxBook UAE"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    currency: str = "AED"
    rounding_places: int = 2

    # ===========================================
    # AUDIT TRAIL PERSISTENCE
    # ===========================================
    database_url_async: str = "sqlite+aiosqlite:///./taxbook.db"

    # ===========================================
    # VAT (Federal Decree-Law No. 8 of 2017)
    # ===========================================
    vat_standard_rate: Decimal = Decimal("0.05")
    vat_mandatory_registration_threshold: Decimal = Decimal("375000")
    vat_voluntary_registration_threshold: Decimal = Decimal("187500")
    vat_filing_deadline_days: int = 28
    vat_filing_frequency: str = "QUARTERLY"
    vat_input_to_output_warning_ratio: Decimal = Decimal("2")

    # Input VAT on these expense categories is never recoverable
    non_recoverable_input_categories: FrozenSet[str] = frozenset({
        "ENTERTAINMENT",
        "PERSONAL_EXPENSES",
        "EXEMPT_SUPPLIES_RELATED",
    })

    # ===========================================
    # CORPORATE INCOME TAX (Federal Decree-Law No. 47 of 2022)
    # ===========================================
    cit_standard_rate: Decimal = Decimal("0.09")
    cit_small_business_threshold: Decimal = Decimal("375000")
    qfzp_revenue_ceiling: Decimal = Decimal("3000000")
    cash_basis_revenue_ceiling: Decimal = Decimal("3000000")
    cit_filing_deadline_months: int = 9
    tax_loss_relief_cap: Decimal = Decimal("0.75")

    @model_validator(mode="after")
    def check_thresholds(self) -> "TaxSettings":
        """Rates are fractions and thresholds must be ordered."""
        for name in ("vat_standard_rate", "cit_standard_rate", "tax_loss_relief_cap"):
            value = getattr(self, name)
            if value < 0 or value > 1:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        for name in (
            "vat_mandatory_registration_threshold",
            "vat_voluntary_registration_threshold",
            "cit_small_business_threshold",
            "qfzp_revenue_ceiling",
            "cash_basis_revenue_ceiling",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.vat_voluntary_registration_threshold >= self.vat_mandatory_registration_threshold:
            raise ValueError("Voluntary VAT threshold must be below the mandatory threshold")
        if self.vat_filing_deadline_days < 0 or self.cit_filing_deadline_months < 0:
            raise ValueError("Filing deadline offsets cannot be negative")
        return self

    @property
    def money_quantum(self) -> Decimal:
        """Smallest currency unit used for rounding (fils)."""
        return Decimal(1).scaleb(-self.rounding_places)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"


def load_settings(**overrides) -> TaxSettings:
    """
    Build a settings instance, converting validation problems into a
    ConfigurationException.
    """
    try:
        return TaxSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationException(
            "Invalid tax configuration",
            details={"errors": [err["msg"] for err in e.errors()]},
            original_error=e,
        ) from e


@lru_cache()
def get_settings() -> TaxSettings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return load_settings()


def resolve_settings(settings: Optional[TaxSettings] = None) -> TaxSettings:
    """Return the injected settings or the process-wide default."""
    return settings if settings is not None else get_settings()
