"""Process-wide settlement settings.

Values are read from the environment once, on first access, and are treated
as read-only afterwards. Tests swap them with configure_settings() and
restore defaults with reset_settings().
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    """Fee, escrow and timing parameters shared by every request."""

    service_fee_rate: float = 0.025
    tax_rate: float = 0.0
    fee_precision: int = 0
    default_currency: str = "UGX"
    escrow_release_days: int = 7
    processing_timeout_minutes: int = 30
    verify_min_interval_seconds: int = 15
    lock_timeout_seconds: float = 5.0
    receipt_base_url: str = "https://receipts.example.com"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            service_fee_rate=float(os.environ.get("SERVICE_FEE_RATE", cls.service_fee_rate)),
            tax_rate=float(os.environ.get("TAX_RATE", cls.tax_rate)),
            fee_precision=int(os.environ.get("FEE_PRECISION", cls.fee_precision)),
            default_currency=os.environ.get("DEFAULT_CURRENCY", cls.default_currency),
            escrow_release_days=int(os.environ.get("ESCROW_RELEASE_DAYS", cls.escrow_release_days)),
            processing_timeout_minutes=int(
                os.environ.get("PROCESSING_TIMEOUT_MINUTES", cls.processing_timeout_minutes)
            ),
            verify_min_interval_seconds=int(
                os.environ.get("VERIFY_MIN_INTERVAL_SECONDS", cls.verify_min_interval_seconds)
            ),
            lock_timeout_seconds=float(os.environ.get("LOCK_TIMEOUT_SECONDS", cls.lock_timeout_seconds)),
            receipt_base_url=os.environ.get("RECEIPT_BASE_URL", cls.receipt_base_url),
        )


_current_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the active settings, loading them from the environment on first use."""
    global _current_settings
    if _current_settings is None:
        _current_settings = Settings.from_env()
    return _current_settings


def configure_settings(settings: Settings) -> None:
    """Install explicit settings (process startup or tests)."""
    global _current_settings
    _current_settings = settings


def reset_settings() -> None:
    """Forget the active settings so the next access re-reads the environment."""
    global _current_settings
    _current_settings = None


def is_production() -> bool:
    return os.environ.get("PROTEAN_ENV") == "production"
