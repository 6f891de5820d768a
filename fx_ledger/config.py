"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import Optional

from .currency import Currency


class LedgerConfig(BaseSettings):
    """FX ledger engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///fx_ledger.db"

    # Currency configuration
    reporting_currency: str = "BDT"
    balance_tolerance: str = "0.01"  # Debits/credits closer than this are balanced
    gain_loss_threshold: str = "0.01"  # Smaller revaluations produce no journal line

    # Revaluation accounts
    fx_gain_account_code: str = "4300"
    fx_gain_account_name: str = "Unrealized FX Gain"
    fx_loss_account_code: str = "5700"
    fx_loss_account_name: str = "Unrealized FX Loss"
    foreign_ar_account_code: str = "1400"
    foreign_ar_account_name: str = "AR - Foreign Customers"
    foreign_bank_account_code: str = "1200"
    foreign_bank_account_name: str = "Bank - Foreign Currency"

    # Manual rate entry
    manual_rate_source: str = "manual"
    manual_rate_policy: str = "append"  # append or supersede

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "FXLEDGER_"
        env_file = ".env"
        case_sensitive = False

    @property
    def reporting(self) -> Currency:
        return Currency.from_code(self.reporting_currency)

    @property
    def tolerance(self) -> Decimal:
        return Decimal(self.balance_tolerance)

    @property
    def threshold(self) -> Decimal:
        return Decimal(self.gain_loss_threshold)


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
