"""
Payroll Core - Tax Calculators Package

Statutory calculations for payroll.

Modules:
- statutory_service: progressive PAYE bands, NASSIT contributions and the
  per-organisation StatutoryProfile
"""

from decimal import Decimal

from app.services.payroll_defaults import DEFAULT_PAYE_TIERS, NASSIT_EMPLOYEE_RATE, NASSIT_EMPLOYER_RATE
from app.services.tax_calculators.statutory_service import (
    StatutoryBases,
    StatutoryProfile,
    TaxBand,
    build_bands,
    compute_annual_progressive_tax,
    compute_progressive_tax,
    compute_social_contribution,
    validate_tiers,
)


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def calculate_monthly_paye(monthly_gross: Decimal) -> Decimal:
    """
    Monthly PAYE on a monthly gross using the default bands.

    Args:
        monthly_gross: Gross pay for the month

    Returns:
        Monthly tax in whole currency units
    """
    return compute_progressive_tax(Decimal(monthly_gross) * 12, DEFAULT_PAYE_TIERS)


def calculate_nassit(gross_pay: Decimal) -> dict:
    """NASSIT employee (5%) and employer (10%) contributions on a gross figure."""
    return compute_social_contribution(gross_pay, NASSIT_EMPLOYEE_RATE, NASSIT_EMPLOYER_RATE)


__all__ = [
    "StatutoryBases",
    "StatutoryProfile",
    "TaxBand",
    "build_bands",
    "compute_annual_progressive_tax",
    "compute_progressive_tax",
    "compute_social_contribution",
    "validate_tiers",
    "calculate_monthly_paye",
    "calculate_nassit",
]
