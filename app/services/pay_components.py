"""
Payroll Core - Pay Component Resolver

Decides which configured allowance, bonus and deduction rules apply to an
employee and evaluates each one to a whole-unit amount.

Evaluation order is an explicit dependency graph rather than list order:

    BASE   fixed, hours-based, percentage of base/custom, formulas without gross_pay
    GROSS  percentage of gross pay, formulas reading gross_pay
    NET    percentage of net pay (deductions only)

A pass evaluates every pending component whose stage inputs are available and
defers the rest, so callers run one pass per figure they complete.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Sequence
import logging

from app.config import Settings, get_settings
from app.models.payroll import (
    BonusFrequency,
    ComponentFrequency,
    ComponentType,
    PercentageBase,
)
from app.schemas.payroll import (
    Employee,
    FixedCalculation,
    FormulaCalculation,
    HoursBasedCalculation,
    PayComponent,
    PayLine,
    PercentageCalculation,
    RemunerationPackage,
)
from app.services.formula import evaluate_formula, referenced_variables
from app.services.payroll_defaults import PayCycle, get_role_allowances
from app.utils.error_handling import ConfigurationError
from app.utils.money import ZERO, percent_of, round_currency, total

logger = logging.getLogger(__name__)

# Earning categories reported as bonuses rather than allowances
BONUS_CATEGORIES = frozenset({"bonus", "incentive", "commission"})

# Deduction categories duplicated by the statutory calculator
INCOME_TAX_CATEGORIES = frozenset({"income_tax", "paye"})
SOCIAL_CATEGORIES = frozenset({"social_security", "nassit"})

# Months covered by one occurrence of a component frequency
FREQUENCY_MONTHS = {
    ComponentFrequency.MONTHLY: Decimal(1),
    ComponentFrequency.QUARTERLY: Decimal(3),
    ComponentFrequency.ANNUALLY: Decimal(12),
}


class Stage(IntEnum):
    """Figure a component depends on."""
    BASE = 1
    GROSS = 2
    NET = 3


@dataclass
class ResolutionContext:
    """Period figures available to component evaluation."""
    base_salary: Decimal
    hourly_rate: Decimal
    overtime_hours: Decimal
    hours_worked: Decimal
    sales_total: Decimal
    cycle: PayCycle
    gross_pay: Optional[Decimal] = None
    net_pay: Optional[Decimal] = None


@dataclass
class ResolvedLine:
    component: PayComponent
    stage: Stage
    line: PayLine


@dataclass
class ResolutionPass:
    """Result of one pass: evaluated lines and components still waiting."""
    resolved: List[ResolvedLine] = field(default_factory=list)
    deferred: List[PayComponent] = field(default_factory=list)

    def allowances(self) -> List[PayLine]:
        return [r.line for r in self.resolved
                if r.component.type == ComponentType.EARNING
                and r.component.category not in BONUS_CATEGORIES]

    def bonuses(self) -> List[PayLine]:
        return [r.line for r in self.resolved
                if r.component.type == ComponentType.EARNING
                and r.component.category in BONUS_CATEGORIES]

    def deductions(self) -> List[PayLine]:
        return [r.line for r in self.resolved if r.component.type == ComponentType.DEDUCTION]


@dataclass
class ResolvedComponents:
    """Allowances, bonuses and deductions with their sums."""
    allowances: List[PayLine] = field(default_factory=list)
    bonuses: List[PayLine] = field(default_factory=list)
    deductions: List[PayLine] = field(default_factory=list)

    @property
    def total_allowances(self) -> Decimal:
        return total(line.amount for line in self.allowances)

    @property
    def total_bonuses(self) -> Decimal:
        return total(line.amount for line in self.bonuses)

    @property
    def total_deductions(self) -> Decimal:
        return total(line.amount for line in self.deductions)


def merge_by_name(*groups: Iterable[PayLine]) -> List[PayLine]:
    """
    Combine pay lines, keeping the higher amount when a name repeats.

    First-seen order is kept; zero and negative lines are dropped.
    """
    merged: Dict[str, PayLine] = {}
    for group in groups:
        for line in group:
            if not line.name or line.amount <= 0:
                continue
            existing = merged.get(line.name)
            if existing is None or line.amount > existing.amount:
                merged[line.name] = line
    return list(merged.values())


class PayComponentResolver:
    """
    Evaluates an organisation's pay component catalog for one employee.

    Statutory deductions configured as components are skipped for any
    statutory calculation the composer performs itself.
    """

    def __init__(
        self,
        components: Sequence[PayComponent],
        settings: Optional[Settings] = None,
        apply_income_tax: bool = True,
        apply_social_contribution: bool = True,
    ):
        self.components = list(components)
        self.settings = settings or get_settings()
        self.apply_income_tax = apply_income_tax
        self.apply_social_contribution = apply_social_contribution

    # ===========================================
    # ELIGIBILITY
    # ===========================================

    @staticmethod
    def applies_to(component: PayComponent, employee: Employee) -> bool:
        """Scope check with precedence employee list > role list > everyone."""
        scope = component.scope
        if scope.employee_ids:
            if scope.roles:
                logger.warning(
                    f"Pay component '{component.name}' ({component.id}) is scoped to both "
                    f"employees and roles; using the employee list"
                )
            return employee.id in scope.employee_ids
        if scope.roles:
            return employee.role in scope.roles
        return True

    def _duplicates_statutory(self, component: PayComponent) -> bool:
        if component.type != ComponentType.DEDUCTION:
            return False
        category = component.category.lower()
        if category == "statutory":
            return self.apply_income_tax or self.apply_social_contribution
        if category in INCOME_TAX_CATEGORIES:
            return self.apply_income_tax
        if category in SOCIAL_CATEGORIES:
            return self.apply_social_contribution
        return False

    def eligible(self, employee: Employee) -> List[PayComponent]:
        """Active components applying to the employee, in catalog order."""
        result = []
        for component in self.components:
            if not component.is_active or not self.applies_to(component, employee):
                continue
            if self._duplicates_statutory(component):
                logger.warning(
                    f"Skipping '{component.name}' for {employee.id}: "
                    f"statutory deduction is calculated separately"
                )
                continue
            result.append(component)
        return result

    # ===========================================
    # DEPENDENCIES
    # ===========================================

    def stage_of(self, component: PayComponent) -> Stage:
        calculation = component.calculation
        if isinstance(calculation, PercentageCalculation):
            if calculation.of == PercentageBase.GROSS_PAY:
                return Stage.GROSS
            if calculation.of == PercentageBase.NET_PAY:
                if component.type == ComponentType.EARNING:
                    raise ConfigurationError(
                        f"Earning '{component.name}' cannot be a percentage of net pay: "
                        f"net pay depends on earnings",
                        field="calculation.of",
                    )
                return Stage.NET
        if isinstance(calculation, FormulaCalculation):
            self._require_formulas(component)
            if "gross_pay" in referenced_variables(calculation.expression):
                return Stage.GROSS
        return Stage.BASE

    @staticmethod
    def _inputs_ready(stage: Stage, context: ResolutionContext) -> bool:
        if stage == Stage.GROSS:
            return context.gross_pay is not None
        if stage == Stage.NET:
            return context.net_pay is not None
        return True

    def _require_formulas(self, component: PayComponent) -> None:
        if not self.settings.enable_formula_components:
            raise ConfigurationError(
                f"Pay component '{component.name}' uses a formula but formula components are disabled",
                field="calculation",
            )

    # ===========================================
    # EVALUATION
    # ===========================================

    @staticmethod
    def _validate(component: PayComponent) -> None:
        calculation = component.calculation
        if isinstance(calculation, FixedCalculation) and calculation.amount < 0:
            raise ConfigurationError(
                f"Pay component '{component.name}' has a negative amount",
                field="calculation.amount",
            )
        if isinstance(calculation, HoursBasedCalculation) and calculation.multiplier < 0:
            raise ConfigurationError(
                f"Pay component '{component.name}' has a negative hours multiplier",
                field="calculation.multiplier",
            )
        if (
            component.min_amount is not None
            and component.max_amount is not None
            and component.min_amount > component.max_amount
        ):
            raise ConfigurationError(
                f"Pay component '{component.name}' has min_amount {component.min_amount} "
                f"above max_amount {component.max_amount}",
                field="min_amount",
            )

    def _raw_amount(self, component: PayComponent, context: ResolutionContext) -> Decimal:
        calculation = component.calculation

        if isinstance(calculation, FixedCalculation):
            # Fixed amounts are configured per month
            return calculation.amount * context.cycle.multiplier

        if isinstance(calculation, PercentageCalculation):
            if calculation.of == PercentageBase.GROSS_PAY:
                base = context.gross_pay
            elif calculation.of == PercentageBase.NET_PAY:
                base = context.net_pay
            elif calculation.of == PercentageBase.CUSTOM:
                if calculation.custom_base is None:
                    raise ConfigurationError(
                        f"Pay component '{component.name}' is a percentage of a custom base but has none",
                        field="calculation.custom_base",
                    )
                base = calculation.custom_base
            else:
                base = context.base_salary
            return percent_of(base, calculation.rate)

        if isinstance(calculation, HoursBasedCalculation):
            hours = calculation.hours if calculation.hours is not None else context.overtime_hours
            return context.hourly_rate * hours * calculation.multiplier

        if isinstance(calculation, FormulaCalculation):
            self._require_formulas(component)
            variables = {
                "base_salary": context.base_salary,
                "hours": context.hours_worked,
                "sales": context.sales_total,
            }
            if context.gross_pay is not None:
                variables["gross_pay"] = context.gross_pay
            return evaluate_formula(calculation.expression, variables)

        raise ConfigurationError(f"Unknown calculation for pay component '{component.name}'")

    def evaluate(self, component: PayComponent, context: ResolutionContext) -> Decimal:
        """Amount for one component: calculate, prorate, clamp to caps, round."""
        self._validate(component)
        amount = self._raw_amount(component, context)

        months = FREQUENCY_MONTHS.get(component.frequency)
        if months is not None:
            amount = amount / months

        if component.min_amount is not None:
            amount = max(amount, component.min_amount)
        if component.max_amount is not None:
            amount = min(amount, component.max_amount)
        return round_currency(amount)

    def resolve(
        self,
        employee: Employee,
        context: ResolutionContext,
        pending: Optional[Sequence[PayComponent]] = None,
    ) -> ResolutionPass:
        """
        One evaluation pass.

        ``pending`` defaults to every eligible component. Components whose
        inputs are not yet in ``context`` come back in ``deferred``.
        """
        if pending is None:
            pending = self.eligible(employee)
        result = ResolutionPass()
        for component in pending:
            stage = self.stage_of(component)
            if not self._inputs_ready(stage, context):
                result.deferred.append(component)
                continue
            amount = self.evaluate(component, context)
            if amount <= 0:
                continue
            result.resolved.append(
                ResolvedLine(
                    component=component,
                    stage=stage,
                    line=PayLine(
                        name=component.name,
                        amount=amount,
                        type=component.category,
                        statutory=False,
                        taxable=component.is_taxable,
                        affects_social_contribution=component.affects_social_contribution,
                    ),
                )
            )
        return result

    # ===========================================
    # PACKAGE & ROLE DEFAULTS
    # ===========================================

    @staticmethod
    def package_allowances(
        package: RemunerationPackage,
        monthly_salary: Decimal,
        cycle: PayCycle,
    ) -> List[PayLine]:
        """Package allowances for the period; percentages are of the monthly salary."""
        lines = []
        for allowance in package.allowances:
            if allowance.type == "percentage":
                monthly = percent_of(monthly_salary, allowance.amount)
            else:
                monthly = allowance.amount
            lines.append(PayLine(
                name=allowance.name,
                amount=round_currency(monthly * cycle.multiplier),
                type="package",
            ))
        return lines

    @staticmethod
    def package_bonuses(package: RemunerationPackage, cycle: PayCycle) -> List[PayLine]:
        """Package bonuses: annual /12, quarterly /3, others as-is, times the cycle multiplier."""
        lines = []
        for bonus in package.bonuses:
            if bonus.frequency == BonusFrequency.ANNUAL:
                monthly = bonus.amount / 12
            elif bonus.frequency == BonusFrequency.QUARTERLY:
                monthly = bonus.amount / 3
            else:
                monthly = bonus.amount
            lines.append(PayLine(
                name=bonus.name,
                amount=round_currency(monthly * cycle.multiplier),
                type="package",
            ))
        return lines

    @staticmethod
    def role_allowances(employee: Employee, monthly_salary: Decimal, cycle: PayCycle) -> List[PayLine]:
        """Seed role allowances, prorated to the pay cycle."""
        return [
            PayLine(
                name=allowance.name,
                amount=round_currency(allowance.amount_for(monthly_salary) * cycle.multiplier),
                type="role_based",
            )
            for allowance in get_role_allowances(employee.role)
        ]
