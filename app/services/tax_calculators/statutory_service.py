"""
Payroll Core - Statutory Calculator

PAYE (Pay As You Earn) and NASSIT (social security) calculations driven by the
organisation's configured StatutoryRate records.

Progressive tax:
- Income is annualised, walked through ascending tiers, and each tier's
  portion is taxed at its marginal rate.
- The annual figure is divided by the pay cycle's periods per year and
  rounded to a whole currency unit.

Social contribution:
- Employee and employer sides are independent percentages of the
  contribution base, optionally capped at ``max_base``.

Jurisdiction defaults (payroll_defaults) apply only when no record is
configured for an organisation.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from app.models.payroll import AppliesToBase, CalculationMethod, StatutoryKind
from app.schemas.payroll import StatutoryRate, TaxTier
from app.services.payroll_defaults import PayCycle, default_statutory_rates
from app.utils.error_handling import ConfigurationError
from app.utils.money import ZERO, percent_of, round_currency

logger = logging.getLogger(__name__)


@dataclass
class TaxBand:
    """Tax band with its effective lower bound."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def calculate_tax(self, taxable_income: Decimal) -> Decimal:
        """Calculate tax for this band."""
        if taxable_income <= self.lower:
            return ZERO

        if self.upper is None:
            # Top band (no upper limit)
            taxable_in_band = taxable_income - self.lower
        else:
            taxable_in_band = min(taxable_income, self.upper) - self.lower

        if taxable_in_band <= 0:
            return ZERO

        return percent_of(taxable_in_band, self.rate)


# ===========================================
# TIER VALIDATION
# ===========================================

def validate_tiers(tiers: Sequence[TaxTier]) -> None:
    """
    Check tiers are contiguous, non-overlapping, ascending and end with exactly
    one unbounded tier.

    A tier may start at the previous tier's max or one unit above it, so both
    "0-500,000 / 500,000-..." and "0-500,000 / 500,001-..." are accepted.
    """
    if not tiers:
        raise ConfigurationError("Progressive rate has no tax tiers", field="tiers")

    if tiers[0].min < 0:
        raise ConfigurationError("First tax tier cannot start below zero", field="tiers")

    for index, tier in enumerate(tiers):
        if tier.rate < 0 or tier.rate > 100:
            raise ConfigurationError(
                f"Tax tier {index + 1} has invalid rate {tier.rate}%",
                field="tiers",
                details={"tier": index + 1},
            )
        is_last = index == len(tiers) - 1
        if tier.max is None and not is_last:
            raise ConfigurationError(
                f"Only the final tax tier may be unbounded (tier {index + 1} has no max)",
                field="tiers",
            )
        if is_last and tier.max is not None:
            raise ConfigurationError("Final tax tier must be unbounded", field="tiers")
        if tier.max is not None and tier.max <= tier.min:
            raise ConfigurationError(
                f"Tax tier {index + 1} max {tier.max} must exceed its min {tier.min}",
                field="tiers",
            )
        if index > 0:
            previous_max = tiers[index - 1].max
            if tier.min < previous_max:
                raise ConfigurationError(
                    f"Tax tier {index + 1} overlaps the previous tier",
                    field="tiers",
                    details={"min": str(tier.min), "previous_max": str(previous_max)},
                )
            if tier.min > previous_max + 1:
                raise ConfigurationError(
                    f"Gap between tax tier {index} and tier {index + 1}",
                    field="tiers",
                    details={"min": str(tier.min), "previous_max": str(previous_max)},
                )


def build_bands(tiers: Sequence[TaxTier]) -> List[TaxBand]:
    """Turn validated tiers into bands whose lower bound is the previous max."""
    validate_tiers(tiers)
    bands = []
    lower = tiers[0].min
    for tier in tiers:
        bands.append(TaxBand(lower=lower, upper=tier.max, rate=tier.rate))
        lower = tier.max
    return bands


# ===========================================
# CORE CALCULATIONS
# ===========================================

def compute_annual_progressive_tax(
    annual_taxable_income: Decimal,
    tiers: Sequence[TaxTier],
) -> Tuple[Decimal, List[Dict[str, Any]]]:
    """
    Calculate unrounded annual tax using progressive tax bands.

    Returns:
        Tuple of (annual_tax, band_breakdown)
    """
    income = max(ZERO, Decimal(annual_taxable_income))
    total_tax = ZERO
    band_breakdown = []

    for band in build_bands(tiers):
        if income <= band.lower:
            break
        tax_in_band = band.calculate_tax(income)
        band_breakdown.append({
            "lower": str(band.lower),
            "upper": None if band.upper is None else str(band.upper),
            "rate": str(band.rate),
            "tax_amount": str(tax_in_band),
        })
        total_tax += tax_in_band

    return total_tax, band_breakdown


def compute_progressive_tax(
    annual_taxable_income: Decimal,
    tiers: Sequence[TaxTier],
    periods_per_year: int = 12,
) -> Decimal:
    """Period tax: annual progressive tax / periods per year, whole units."""
    annual_tax, _ = compute_annual_progressive_tax(annual_taxable_income, tiers)
    return round_currency(annual_tax / Decimal(periods_per_year))


def compute_social_contribution(
    gross_pay: Decimal,
    employee_rate: Decimal,
    employer_rate: Decimal,
    max_base: Optional[Decimal] = None,
) -> Dict[str, Decimal]:
    """
    Social contribution for both sides.

    Rates are percentages (5 means 5%). Each side is rounded independently and
    never negative.
    """
    base = max(ZERO, Decimal(gross_pay))
    if max_base is not None:
        base = min(base, Decimal(max_base))
    return {
        "employee": max(ZERO, round_currency(percent_of(base, Decimal(employee_rate)))),
        "employer": max(ZERO, round_currency(percent_of(base, Decimal(employer_rate)))),
    }


# ===========================================
# STATUTORY PROFILE
# ===========================================

@dataclass
class StatutoryBases:
    """Figures a statutory rate can be charged on, for one period."""
    gross_pay: Decimal
    basic_salary: Decimal
    # Gross minus earnings that are not taxable
    taxable_gross: Decimal
    # Gross minus earnings that do not attract social contribution
    contributable_gross: Decimal


class StatutoryProfile:
    """
    The income-tax and social-security rates in force for an organisation.

    Built from configured StatutoryRate records; jurisdiction defaults fill in
    any kind that has no active record.
    """

    def __init__(self, income_tax: Optional[StatutoryRate], social_security: Optional[StatutoryRate]):
        self.income_tax_rate = income_tax
        self.social_security_rate = social_security

    @classmethod
    def from_rates(cls, rates: Iterable[StatutoryRate], organisation_id: UUID) -> "StatutoryProfile":
        active = [r for r in rates if r.is_active]
        defaults = {r.kind: r for r in default_statutory_rates(organisation_id)}

        def pick(kind: StatutoryKind) -> StatutoryRate:
            for rate in active:
                if rate.kind == kind:
                    return rate
            logger.debug(f"No {kind.value} rate configured for {organisation_id}, using default")
            return defaults[kind]

        profile = cls(pick(StatutoryKind.INCOME_TAX), pick(StatutoryKind.SOCIAL_SECURITY))
        if profile.income_tax_rate.calculation_method == CalculationMethod.PROGRESSIVE:
            validate_tiers(profile.income_tax_rate.tiers)
        return profile

    @staticmethod
    def _select_base(applies_to: AppliesToBase, bases: StatutoryBases, taxable_income: Decimal) -> Decimal:
        if applies_to == AppliesToBase.BASIC_SALARY:
            return bases.basic_salary
        if applies_to == AppliesToBase.TAXABLE_INCOME:
            return taxable_income
        return bases.gross_pay

    def social_contribution(self, bases: StatutoryBases) -> Dict[str, Decimal]:
        """Employee and employer social contribution for the period."""
        rate = self.social_security_rate
        if rate.applies_to_base == AppliesToBase.BASIC_SALARY:
            base = bases.basic_salary
        else:
            base = bases.contributable_gross

        if rate.calculation_method == CalculationMethod.FLAT_RATE:
            amount = round_currency(rate.rate) if base > rate.exemption_threshold else ZERO
            return {"employee": amount, "employer": round_currency(rate.employer_rate)}

        if base <= rate.exemption_threshold:
            return {"employee": ZERO, "employer": ZERO}
        return compute_social_contribution(base, rate.rate, rate.employer_rate, rate.max_base)

    def taxable_income(self, bases: StatutoryBases, employee_contribution: Decimal) -> Decimal:
        """Gross less non-taxable earnings and the employee's social contribution."""
        return max(ZERO, bases.taxable_gross - employee_contribution)

    def income_tax(self, bases: StatutoryBases, employee_contribution: Decimal, cycle: PayCycle) -> Dict[str, Any]:
        """
        Income tax for the period.

        Progressive thresholds and tiers are annual; the period base is
        annualised with the cycle's periods per year. Percentage and flat-rate
        thresholds are per period. Progressive and percentage tax apply to the
        base less the exemption threshold; a flat rate is charged in full once
        the base exceeds it.
        """
        rate = self.income_tax_rate
        taxable_income = self.taxable_income(bases, employee_contribution)
        base = self._select_base(rate.applies_to_base, bases, taxable_income)
        result = {"amount": ZERO, "base": base, "annual_base": None, "bands": []}

        if rate.calculation_method == CalculationMethod.PROGRESSIVE:
            annual_base = base * cycle.periods_per_year
            result["annual_base"] = annual_base
            annual_taxed = annual_base - rate.exemption_threshold
            if annual_taxed <= 0:
                return result
            annual_tax, bands = compute_annual_progressive_tax(annual_taxed, rate.tiers)
            result["bands"] = bands
            result["amount"] = round_currency(annual_tax / Decimal(cycle.periods_per_year))
        elif rate.calculation_method == CalculationMethod.PERCENTAGE:
            if base > rate.exemption_threshold:
                result["amount"] = round_currency(percent_of(base - rate.exemption_threshold, rate.rate))
        else:
            if base > rate.exemption_threshold:
                result["amount"] = round_currency(rate.rate)
        return result
