"""
Payroll Core - Jurisdiction Defaults

Sierra Leone seed data used only when an organisation has not configured its
own records:

PAYE Tax Bands (annual income):
- Le 0 - Le 500,000: 0%
- Le 500,001 - Le 1,000,000: 15%
- Le 1,000,001 - Le 1,500,000: 20%
- Le 1,500,001 - Le 2,000,000: 25%
- Above Le 2,000,000: 30%

NASSIT (social security):
- Employee: 5% of gross pay
- Employer: 10% of gross pay

Role allowances follow the HR role table; percentage entries are fractions of
the monthly contract salary.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from app.models.payroll import (
    AppliesToBase,
    ComponentType,
    CalculationMethod,
    PayrollFrequency,
    StatutoryKind,
)
from app.schemas.payroll import (
    ComponentScope,
    FixedCalculation,
    PayComponent,
    PercentageCalculation,
    StatutoryRate,
    TaxTier,
)


# ===========================================
# PAY CYCLES
# ===========================================

@dataclass(frozen=True)
class PayCycle:
    """Pay cycle figures for one frequency."""
    frequency: PayrollFrequency
    periods_per_year: int
    working_days: int
    # Fraction of a month paid per period
    multiplier: Decimal


PAY_CYCLES: Dict[PayrollFrequency, PayCycle] = {
    PayrollFrequency.WEEKLY: PayCycle(
        PayrollFrequency.WEEKLY, 52, 5, Decimal(12) / Decimal(52),
    ),
    PayrollFrequency.BI_WEEKLY: PayCycle(
        PayrollFrequency.BI_WEEKLY, 26, 10, Decimal(12) / Decimal(26),
    ),
    PayrollFrequency.MONTHLY: PayCycle(
        PayrollFrequency.MONTHLY, 12, 22, Decimal(1),
    ),
}


def get_pay_cycle(frequency: PayrollFrequency) -> PayCycle:
    """Pay cycle for a frequency, monthly when unknown."""
    return PAY_CYCLES.get(PayrollFrequency(frequency), PAY_CYCLES[PayrollFrequency.MONTHLY])


# ===========================================
# STATUTORY DEFAULTS
# ===========================================

DEFAULT_PAYE_TIERS: List[TaxTier] = [
    TaxTier(min=Decimal("0"), max=Decimal("500000"), rate=Decimal("0")),
    TaxTier(min=Decimal("500001"), max=Decimal("1000000"), rate=Decimal("15")),
    TaxTier(min=Decimal("1000001"), max=Decimal("1500000"), rate=Decimal("20")),
    TaxTier(min=Decimal("1500001"), max=Decimal("2000000"), rate=Decimal("25")),
    TaxTier(min=Decimal("2000001"), max=None, rate=Decimal("30")),
]

NASSIT_EMPLOYEE_RATE = Decimal("5")  # 5%
NASSIT_EMPLOYER_RATE = Decimal("10")  # 10%


def default_statutory_rates(organisation_id: UUID) -> List[StatutoryRate]:
    """Seed PAYE and NASSIT records for an organisation."""
    return [
        StatutoryRate(
            organisation_id=organisation_id,
            name="PAYE Income Tax",
            code="PAYE",
            kind=StatutoryKind.INCOME_TAX,
            calculation_method=CalculationMethod.PROGRESSIVE,
            tiers=DEFAULT_PAYE_TIERS,
            applies_to_base=AppliesToBase.GROSS_PAY,
        ),
        StatutoryRate(
            organisation_id=organisation_id,
            name="NASSIT Social Security",
            code="NASSIT",
            kind=StatutoryKind.SOCIAL_SECURITY,
            calculation_method=CalculationMethod.PERCENTAGE,
            rate=NASSIT_EMPLOYEE_RATE,
            employer_rate=NASSIT_EMPLOYER_RATE,
            applies_to_base=AppliesToBase.GROSS_PAY,
        ),
    ]


# ===========================================
# ROLE ALLOWANCES
# ===========================================

@dataclass(frozen=True)
class RoleAllowance:
    """Default allowance for a role: either a fraction of salary or a fixed amount."""
    name: str
    percentage: Optional[Decimal] = None
    fixed: Optional[Decimal] = None

    def amount_for(self, monthly_salary: Decimal) -> Decimal:
        if self.percentage is not None:
            return monthly_salary * self.percentage
        return self.fixed or Decimal("0")


def _pct(name: str, value: str) -> RoleAllowance:
    return RoleAllowance(name, percentage=Decimal(value))


def _fixed(name: str, value: int) -> RoleAllowance:
    return RoleAllowance(name, fixed=Decimal(value))


_MANAGER_ALLOWANCES = [
    _pct("Responsibility Allowance", "0.10"),
    _fixed("Transport Allowance", 250),
    _pct("Housing Allowance", "0.10"),
    _fixed("Communication Allowance", 75),
    _fixed("Medical Allowance", 150),
]

_FLOOR_ALLOWANCES = [
    _fixed("Transport Allowance", 150),
    _fixed("Meal Allowance", 100),
    _fixed("Medical Allowance", 150),
    _fixed("Uniform Allowance", 50),
]

ROLE_ALLOWANCES: Dict[str, List[RoleAllowance]] = {
    "super_admin": [
        _pct("Executive Allowance", "0.20"),
        _fixed("Transport Allowance", 500),
        _pct("Housing Allowance", "0.20"),
        _fixed("Communication Allowance", 200),
        _fixed("Medical Allowance", 300),
    ],
    "org_admin": [
        _pct("Executive Allowance", "0.15"),
        _fixed("Transport Allowance", 500),
        _pct("Housing Allowance", "0.20"),
        _fixed("Communication Allowance", 200),
        _fixed("Medical Allowance", 300),
    ],
    "hr_admin": _MANAGER_ALLOWANCES,
    "payroll_admin": _MANAGER_ALLOWANCES,
    "warehouse_manager": _MANAGER_ALLOWANCES,
    "accountant": [
        _pct("Professional Allowance", "0.08"),
        _fixed("Transport Allowance", 250),
        _pct("Housing Allowance", "0.10"),
        _fixed("Communication Allowance", 75),
        _fixed("Medical Allowance", 150),
    ],
    "driver": [
        _pct("Risk Allowance", "0.15"),
        _fixed("Transport Allowance", 150),
        _fixed("Fuel Allowance", 100),
        _fixed("Meal Allowance", 100),
        _fixed("Medical Allowance", 150),
        _fixed("Uniform Allowance", 50),
    ],
    "vehicle_sales": [
        _pct("Sales Allowance", "0.02"),
        _fixed("Transport Allowance", 150),
        _fixed("Communication Allowance", 75),
        _fixed("Meal Allowance", 100),
        _fixed("Medical Allowance", 150),
    ],
    "retail_cashier": _FLOOR_ALLOWANCES,
    "support_staff": _FLOOR_ALLOWANCES,
    "read_only": [
        _fixed("Transport Allowance", 150),
        _fixed("Meal Allowance", 100),
        _fixed("Medical Allowance", 150),
    ],
}


def get_role_allowances(role: str) -> List[RoleAllowance]:
    """Default allowances for a role; unknown roles get none."""
    return ROLE_ALLOWANCES.get(role, [])


def default_role_components(organisation_id: UUID) -> List[PayComponent]:
    """Role allowance table expressed as role-scoped pay components, for seeding."""
    components = []
    for role, allowances in ROLE_ALLOWANCES.items():
        for allowance in allowances:
            if allowance.percentage is not None:
                calculation = PercentageCalculation(rate=allowance.percentage * 100)
            else:
                calculation = FixedCalculation(amount=allowance.fixed)
            components.append(
                PayComponent(
                    organisation_id=organisation_id,
                    name=allowance.name,
                    type=ComponentType.EARNING,
                    category="role_allowance",
                    calculation=calculation,
                    scope=ComponentScope(roles=[role]),
                )
            )
    return components
