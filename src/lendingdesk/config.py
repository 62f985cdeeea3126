"""Configuration management for lendingdesk.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .messages import SUPPORTED_LOCALES

# Load .env file if present
load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path
    database_url: Optional[str]
    busy_timeout: float  # seconds

    # Lending policy
    daily_fine_rate: Decimal
    default_loan_days: int
    max_active_loans: int  # 0 disables the limit

    # Presentation
    locale: str
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "LENDINGDESK_DB_PATH",
            str(Path.home() / ".lendingdesk" / "lending.db"),
        )
        db_path = Path(db_path_str).expanduser()

        try:
            daily_fine_rate = Decimal(os.environ.get("LENDINGDESK_DAILY_FINE_RATE", "0.50"))
        except InvalidOperation:
            raise ValueError("LENDINGDESK_DAILY_FINE_RATE must be a decimal amount")

        return cls(
            db_path=db_path,
            database_url=os.environ.get("LENDINGDESK_DATABASE_URL") or None,
            busy_timeout=float(os.environ.get("LENDINGDESK_BUSY_TIMEOUT", "30.0")),
            daily_fine_rate=daily_fine_rate,
            default_loan_days=int(os.environ.get("LENDINGDESK_DEFAULT_LOAN_DAYS", "14")),
            max_active_loans=int(os.environ.get("LENDINGDESK_MAX_ACTIVE_LOANS", "5")),
            locale=os.environ.get("LENDINGDESK_LOCALE", "en").lower(),
            log_level=os.environ.get("LENDINGDESK_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.daily_fine_rate < 0:
            errors.append("Daily fine rate cannot be negative")
        if self.default_loan_days <= 0:
            errors.append("Default loan period must be a positive number of days")
        if self.max_active_loans < 0:
            errors.append("Maximum active loans cannot be negative")
        if self.busy_timeout < 0:
            errors.append("Busy timeout cannot be negative")
        if self.locale not in SUPPORTED_LOCALES:
            errors.append(
                f"Unsupported locale '{self.locale}' "
                f"(expected one of: {', '.join(SUPPORTED_LOCALES)})"
            )

        # Check database directory is writable
        if not self.database_url and str(self.db_path) != ":memory:":
            if not self.db_path.parent.exists():
                try:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                except PermissionError:
                    errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors

    def has_borrow_limit(self) -> bool:
        """Check if a per-patron borrow limit is configured."""
        return self.max_active_loans > 0


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
