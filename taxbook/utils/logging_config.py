"""
TaxBook UAE - Logging Configuration
"""

import logging
from typing import Optional

from taxbook.config import resolve_settings, TaxSettings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None, settings: Optional[TaxSettings] = None) -> None:
    """Configure root logging for scripts and workers embedding the engines."""
    settings = resolve_settings(settings)
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
