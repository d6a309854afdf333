"""
Payroll Core - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "Payroll Core"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url: str = "sqlite+aiosqlite:///./payroll.db"
    database_echo: bool = False

    # ===========================================
    # PAY CALCULATION
    # ===========================================
    currency: str = "SLE"
    working_days_per_month: int = 22
    hours_per_day: int = 8
    default_overtime_multiplier: Decimal = Decimal("1.5")
    overtime_multipliers_by_role: Dict[str, Decimal] = {}

    # Rest-day and public-holiday hours, Employment Act 2023 s.42
    weekend_overtime_multiplier: Decimal = Decimal("2.0")
    holiday_overtime_multiplier: Decimal = Decimal("2.5")

    # Commission as a fraction of total sales, per commission-eligible role
    commission_rates: Dict[str, Decimal] = {
        "driver": Decimal("0.02"),
        "vehicle_sales": Decimal("0.02"),
    }

    # Fraction of base pay, 0 disables the bonus
    perfect_attendance_bonus_rate: Decimal = Decimal("0")

    # Sandboxed formula components are off unless explicitly enabled
    enable_formula_components: bool = False

    # ===========================================
    # BULK RUNS
    # ===========================================
    bulk_max_concurrency: int = 5

    # ===========================================
    # APPROVAL WORKFLOW
    # ===========================================
    workflow_role_capabilities: Dict[str, List[str]] = {
        "super_admin": ["submit", "review", "approve", "process", "cancel"],
        "org_admin": ["submit", "review", "approve", "process", "cancel"],
        "payroll_admin": ["submit", "process"],
        "hr_admin": ["submit"],
        "accountant": ["review"],
    }

    @property
    def standard_hours_per_month(self) -> int:
        """Standard paid hours in a month."""
        return self.working_days_per_month * self.hours_per_day

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Export settings instance
settings = get_settings()
