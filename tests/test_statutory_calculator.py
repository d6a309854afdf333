"""
Payroll Core - Statutory Calculator Tests

Unit tests for PAYE bands, NASSIT contributions and statutory profiles.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from app.models.payroll import AppliesToBase, CalculationMethod, PayrollFrequency, StatutoryKind
from app.schemas.payroll import StatutoryRate, TaxTier
from app.services.payroll_defaults import DEFAULT_PAYE_TIERS, get_pay_cycle
from app.services.tax_calculators import (
    StatutoryBases,
    StatutoryProfile,
    calculate_monthly_paye,
    calculate_nassit,
    compute_annual_progressive_tax,
    compute_progressive_tax,
    compute_social_contribution,
    validate_tiers,
)
from app.utils.error_handling import ConfigurationError


def _bases(gross: Decimal) -> StatutoryBases:
    return StatutoryBases(
        gross_pay=gross,
        basic_salary=gross,
        taxable_gross=gross,
        contributable_gross=gross,
    )


class TestPAYECalculation:
    """Test progressive PAYE on the default bands."""

    def test_one_million_monthly(self):
        """Le 1,000,000 a month is Le 12,000,000 a year: 3,300,000 / 12."""
        assert calculate_monthly_paye(Decimal("1000000")) == Decimal("275000")

    def test_zero_band_exemption(self):
        """Le 40,000 a month annualises to 480,000, inside the 0% band."""
        assert calculate_monthly_paye(Decimal("40000")) == Decimal("0")

    def test_first_taxed_band(self):
        # Annual 800,000: (800,000 - 500,000) at 15% = 45,000
        assert compute_progressive_tax(Decimal("800000"), DEFAULT_PAYE_TIERS, 1) == Decimal("45000")

    def test_band_breakdown(self):
        annual_tax, bands = compute_annual_progressive_tax(Decimal("12000000"), DEFAULT_PAYE_TIERS)

        assert annual_tax == Decimal("3300000")
        assert len(bands) == 5
        assert Decimal(bands[-1]["tax_amount"]) == Decimal("3000000")

    def test_negative_income_is_untaxed(self):
        annual_tax, bands = compute_annual_progressive_tax(Decimal("-100"), DEFAULT_PAYE_TIERS)
        assert annual_tax == Decimal("0")
        assert bands == []

    def test_tax_is_monotonic_and_continuous(self):
        previous = None
        for income in range(0, 3000001, 25000):
            annual_tax, _ = compute_annual_progressive_tax(Decimal(income), DEFAULT_PAYE_TIERS)
            if previous is not None:
                assert annual_tax >= previous
                # No jumps: at most the top rate on the increment
                assert annual_tax - previous <= Decimal("25000") * Decimal("0.30")
            previous = annual_tax

    def test_continuous_across_band_edge(self):
        below, _ = compute_annual_progressive_tax(Decimal("1000000"), DEFAULT_PAYE_TIERS)
        above, _ = compute_annual_progressive_tax(Decimal("1000001"), DEFAULT_PAYE_TIERS)
        assert above - below == Decimal("0.2")


class TestSocialContribution:
    """Test NASSIT contributions."""

    def test_default_rates(self):
        result = calculate_nassit(Decimal("1000000"))
        assert result == {"employee": Decimal("50000"), "employer": Decimal("100000")}

    def test_max_base_caps_contribution(self):
        result = compute_social_contribution(
            Decimal("1000000"), Decimal("5"), Decimal("10"), max_base=Decimal("200000"),
        )
        assert result == {"employee": Decimal("10000"), "employer": Decimal("20000")}

    def test_each_side_rounded(self):
        result = compute_social_contribution(Decimal("1001"), Decimal("5"), Decimal("10"))
        # 50.05 -> 50, 100.1 -> 100
        assert result == {"employee": Decimal("50"), "employer": Decimal("100")}


class TestTierValidation:
    """Test tax tier configuration checks."""

    def test_default_tiers_are_valid(self):
        validate_tiers(DEFAULT_PAYE_TIERS)

    def test_contiguous_without_gap_unit(self):
        validate_tiers([
            TaxTier(min=Decimal("0"), max=Decimal("100"), rate=Decimal("0")),
            TaxTier(min=Decimal("100"), max=None, rate=Decimal("10")),
        ])

    def test_empty_tiers_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_tiers([])

    def test_gap_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_tiers([
                TaxTier(min=Decimal("0"), max=Decimal("100"), rate=Decimal("0")),
                TaxTier(min=Decimal("500"), max=None, rate=Decimal("10")),
            ])

    def test_overlap_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_tiers([
                TaxTier(min=Decimal("0"), max=Decimal("100"), rate=Decimal("0")),
                TaxTier(min=Decimal("50"), max=None, rate=Decimal("10")),
            ])

    def test_bounded_last_tier_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_tiers([TaxTier(min=Decimal("0"), max=Decimal("100"), rate=Decimal("5"))])

    def test_unbounded_middle_tier_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_tiers([
                TaxTier(min=Decimal("0"), max=None, rate=Decimal("0")),
                TaxTier(min=Decimal("100"), max=None, rate=Decimal("10")),
            ])

    def test_rate_above_100_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_tiers([TaxTier(min=Decimal("0"), max=None, rate=Decimal("150"))])

    def test_profile_rejects_bad_configured_tiers(self):
        organisation_id = uuid4()
        bad = StatutoryRate(
            organisation_id=organisation_id,
            name="Broken PAYE",
            code="PAYE",
            kind=StatutoryKind.INCOME_TAX,
            calculation_method=CalculationMethod.PROGRESSIVE,
            tiers=[TaxTier(min=Decimal("0"), max=Decimal("100"), rate=Decimal("5"))],
        )
        with pytest.raises(ConfigurationError):
            StatutoryProfile.from_rates([bad], organisation_id)


class TestStatutoryProfile:
    """Test profiles built from configured rates."""

    def test_defaults_used_when_unconfigured(self, default_profile):
        cycle = get_pay_cycle(PayrollFrequency.MONTHLY)
        bases = _bases(Decimal("1000000"))

        contribution = default_profile.social_contribution(bases)
        tax = default_profile.income_tax(bases, contribution["employee"], cycle)

        assert contribution == {"employee": Decimal("50000"), "employer": Decimal("100000")}
        assert tax["amount"] == Decimal("275000")
        assert tax["annual_base"] == Decimal("12000000")

    def test_inactive_rate_falls_back_to_default(self):
        organisation_id = uuid4()
        inactive = StatutoryRate(
            organisation_id=organisation_id,
            name="Old NASSIT",
            code="NASSIT",
            kind=StatutoryKind.SOCIAL_SECURITY,
            calculation_method=CalculationMethod.PERCENTAGE,
            rate=Decimal("8"),
            employer_rate=Decimal("12"),
            is_active=False,
        )
        profile = StatutoryProfile.from_rates([inactive], organisation_id)
        assert profile.social_security_rate.rate == Decimal("5")

    def test_percentage_tax_with_threshold(self):
        organisation_id = uuid4()
        flat_tax = StatutoryRate(
            organisation_id=organisation_id,
            name="Flat Income Tax",
            code="FIT",
            kind=StatutoryKind.INCOME_TAX,
            calculation_method=CalculationMethod.PERCENTAGE,
            rate=Decimal("10"),
            exemption_threshold=Decimal("100000"),
            applies_to_base=AppliesToBase.TAXABLE_INCOME,
        )
        profile = StatutoryProfile.from_rates([flat_tax], organisation_id)
        cycle = get_pay_cycle(PayrollFrequency.MONTHLY)

        # Taxable income = 500,000 - 25,000 contribution; 10% of (475,000 - 100,000)
        tax = profile.income_tax(_bases(Decimal("500000")), Decimal("25000"), cycle)
        assert tax["amount"] == Decimal("37500")

    def test_progressive_tax_exempts_only_income_below_threshold(self):
        organisation_id = uuid4()
        paye = StatutoryRate(
            organisation_id=organisation_id,
            name="PAYE With Allowance",
            code="PAYE",
            kind=StatutoryKind.INCOME_TAX,
            calculation_method=CalculationMethod.PROGRESSIVE,
            tiers=[TaxTier(min=Decimal("0"), max=None, rate=Decimal("10"))],
            exemption_threshold=Decimal("1200000"),
            applies_to_base=AppliesToBase.GROSS_PAY,
        )
        profile = StatutoryProfile.from_rates([paye], organisation_id)
        cycle = get_pay_cycle(PayrollFrequency.MONTHLY)

        at_threshold = profile.income_tax(_bases(Decimal("100000")), Decimal("0"), cycle)
        just_above = profile.income_tax(_bases(Decimal("110000")), Decimal("0"), cycle)
        well_above = profile.income_tax(_bases(Decimal("200000")), Decimal("0"), cycle)

        assert at_threshold["amount"] == Decimal("0")
        # 10% of (1,320,000 - 1,200,000) / 12, not 10% of the whole 1,320,000
        assert just_above["amount"] == Decimal("1000")
        assert well_above["amount"] == Decimal("10000")

    def test_contribution_exemption_threshold(self):
        organisation_id = uuid4()
        rate = StatutoryRate(
            organisation_id=organisation_id,
            name="NASSIT",
            code="NASSIT",
            kind=StatutoryKind.SOCIAL_SECURITY,
            calculation_method=CalculationMethod.PERCENTAGE,
            rate=Decimal("5"),
            employer_rate=Decimal("10"),
            exemption_threshold=Decimal("50000"),
        )
        profile = StatutoryProfile.from_rates([rate], organisation_id)
        assert profile.social_contribution(_bases(Decimal("40000"))) == {
            "employee": Decimal("0"),
            "employer": Decimal("0"),
        }

    def test_weekly_cycle_annualises_with_52_periods(self, default_profile):
        cycle = get_pay_cycle(PayrollFrequency.WEEKLY)
        tax = default_profile.income_tax(_bases(Decimal("100000")), Decimal("0"), cycle)

        assert tax["annual_base"] == Decimal("5200000")
        # Annual 5.2M: 75,000 + 100,000 + 125,000 + 960,000 = 1,260,000 / 52
        assert tax["amount"] == Decimal("24231")
