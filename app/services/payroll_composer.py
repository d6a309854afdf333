"""
Payroll Core - Payroll Composer

Builds one employee's Payroll for one period from the employee record, the
remuneration package, attendance, sales, the pay component catalog and the
organisation's statutory profile.

Order of composition:
1. Effective salary (package override) and hourly rate
2. Period base salary, adjusted for attendance
3. Overtime (regular, weekend, holiday), commission, attendance bonus
4. BASE-stage components, package and role allowances
5. GROSS-stage components -> gross pay
6. Social contribution and income tax
7. Other deductions, then NET-stage deductions
8. Totals: net = gross - deductions, employer cost = gross + employer contribution

Composition performs no I/O. The same input always yields the same Payroll.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
import logging

from app.config import Settings, get_settings
from app.models.payroll import AttendanceStatus, PayrollFrequency, SalaryType
from app.schemas.payroll import (
    AttendanceRecord,
    Employee,
    PayComponent,
    PayLine,
    Payroll,
    RemunerationPackage,
)
from app.services.pay_components import (
    PayComponentResolver,
    ResolutionContext,
    ResolutionPass,
    merge_by_name,
)
from app.services.payroll_defaults import PayCycle, get_pay_cycle
from app.services.tax_calculators.statutory_service import StatutoryBases, StatutoryProfile
from app.utils.error_handling import ConfigurationError
from app.utils.money import ZERO, round_currency, to_decimal, total

logger = logging.getLogger(__name__)

# Day credit per attendance status; leave is paid
ATTENDANCE_DAY_CREDIT = {
    AttendanceStatus.PRESENT: Decimal("1"),
    AttendanceStatus.LATE: Decimal("1"),
    AttendanceStatus.HALF_DAY: Decimal("0.5"),
    AttendanceStatus.LEAVE: Decimal("1"),
    AttendanceStatus.ABSENT: Decimal("0"),
}


@dataclass
class AttendanceSummary:
    """Attendance figures for one employee and period."""
    days_worked: Decimal
    regular_hours: Decimal
    overtime_hours: Decimal = ZERO
    has_records: bool = False
    absences: int = 0
    weekend_hours: Decimal = ZERO
    holiday_hours: Decimal = ZERO

    @classmethod
    def full(cls, expected_days: int, hours_per_day: int) -> "AttendanceSummary":
        """Attendance assumed when no records exist."""
        days = Decimal(expected_days)
        return cls(days_worked=days, regular_hours=days * hours_per_day)

    @classmethod
    def from_records(
        cls,
        records: Sequence[AttendanceRecord],
        expected_days: int,
        hours_per_day: int,
    ) -> "AttendanceSummary":
        if not records:
            return cls.full(expected_days, hours_per_day)

        days = total(ATTENDANCE_DAY_CREDIT.get(r.status, ZERO) for r in records)
        hours = total(to_decimal(r.hours_worked) for r in records)
        if hours <= 0:
            hours = days * hours_per_day
        return cls(
            days_worked=days,
            regular_hours=hours,
            overtime_hours=total(to_decimal(r.overtime_hours) for r in records),
            has_records=True,
            absences=sum(1 for r in records if r.status == AttendanceStatus.ABSENT),
            weekend_hours=total(to_decimal(r.weekend_hours) for r in records),
            holiday_hours=total(to_decimal(r.holiday_hours) for r in records),
        )

    def is_perfect(self, expected_days: int) -> bool:
        return self.has_records and self.absences == 0 and self.days_worked >= expected_days


@dataclass
class CompositionInput:
    """Everything needed to compose one payroll."""
    employee: Employee
    period_start: date
    period_end: date
    components: Sequence[PayComponent]
    profile: StatutoryProfile
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY
    package: Optional[RemunerationPackage] = None
    use_package_settings: bool = True
    attendance: Optional[AttendanceSummary] = None
    sales_total: Decimal = ZERO
    apply_income_tax: bool = True
    apply_social_contribution: bool = True
    custom_allowances: List[PayLine] = field(default_factory=list)
    custom_bonuses: List[PayLine] = field(default_factory=list)
    custom_deductions: List[PayLine] = field(default_factory=list)


def _rounded(lines: Sequence[PayLine], line_type: str) -> List[PayLine]:
    """Caller-supplied lines with whole-unit amounts."""
    return [
        line.model_copy(update={
            "amount": round_currency(line.amount),
            "type": line.type or line_type,
        })
        for line in lines
    ]


class PayrollComposer:
    """Pure payroll calculation for a single employee."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # ===========================================
    # SALARY
    # ===========================================

    def effective_salary(self, data: CompositionInput) -> tuple:
        """Contract salary and salary type, the package taking precedence."""
        package = data.package if data.use_package_settings else None
        salary = data.employee.base_salary
        salary_type = data.employee.salary_type
        if package is not None and package.base_salary is not None:
            salary = package.base_salary
            salary_type = package.salary_type

        if salary is None or salary <= 0:
            raise ConfigurationError(
                f"Employee {data.employee.full_name} has no base salary configured",
                field="base_salary",
                details={"employee_id": str(data.employee.id)},
            )
        return to_decimal(salary), SalaryType(salary_type)

    def hourly_rate(self, salary: Decimal, salary_type: SalaryType) -> Decimal:
        if salary_type == SalaryType.HOURLY:
            return round_currency(salary)
        if salary_type == SalaryType.DAILY:
            return round_currency(salary / self.settings.hours_per_day)
        return round_currency(salary / self.settings.standard_hours_per_month)

    def monthly_equivalent(self, salary: Decimal, salary_type: SalaryType) -> Decimal:
        """Salary expressed per month, the base for percentage allowances."""
        if salary_type == SalaryType.DAILY:
            return salary * self.settings.working_days_per_month
        if salary_type == SalaryType.HOURLY:
            return salary * self.settings.standard_hours_per_month
        return salary

    def period_base(
        self,
        salary: Decimal,
        salary_type: SalaryType,
        cycle: PayCycle,
        attendance: AttendanceSummary,
    ) -> Dict[str, Decimal]:
        """Prorated salary, attendance adjustment and resulting base salary."""
        expected = Decimal(cycle.working_days)

        if salary_type == SalaryType.DAILY:
            prorated = round_currency(salary * expected)
            base = round_currency(salary * attendance.days_worked)
        elif salary_type == SalaryType.HOURLY:
            prorated = round_currency(salary * expected * self.settings.hours_per_day)
            base = round_currency(salary * attendance.regular_hours)
        else:
            prorated = round_currency(salary * cycle.multiplier)
            missed = max(ZERO, expected - attendance.days_worked)
            base = prorated - round_currency(prorated / expected * missed)

        base = max(ZERO, base)
        return {"prorated": prorated, "adjustment": base - prorated, "base": base}

    def overtime_multiplier(self, data: CompositionInput) -> Decimal:
        package = data.package if data.use_package_settings else None
        if package is not None and package.overtime_multiplier is not None:
            return to_decimal(package.overtime_multiplier)
        by_role = self.settings.overtime_multipliers_by_role.get(data.employee.role)
        if by_role is not None:
            return to_decimal(by_role)
        return self.settings.default_overtime_multiplier

    # ===========================================
    # COMPOSITION
    # ===========================================

    def compose(self, data: CompositionInput) -> Payroll:
        employee = data.employee
        settings = self.settings
        cycle = get_pay_cycle(data.frequency)
        package = data.package if data.use_package_settings else None

        salary, salary_type = self.effective_salary(data)
        attendance = data.attendance or AttendanceSummary.full(cycle.working_days, settings.hours_per_day)

        hourly_rate = self.hourly_rate(salary, salary_type)
        monthly_salary = self.monthly_equivalent(salary, salary_type)
        salary_figures = self.period_base(salary, salary_type, cycle, attendance)
        base_salary = salary_figures["base"]

        overtime_multiplier = self.overtime_multiplier(data)
        overtime_pay = round_currency(hourly_rate * attendance.overtime_hours * overtime_multiplier)
        weekend_pay = round_currency(hourly_rate * attendance.weekend_hours * settings.weekend_overtime_multiplier)
        holiday_pay = round_currency(hourly_rate * attendance.holiday_hours * settings.holiday_overtime_multiplier)
        premium_pay = overtime_pay + weekend_pay + holiday_pay

        sales_total = to_decimal(data.sales_total)
        commission_rate = settings.commission_rates.get(employee.role, ZERO)
        commission = round_currency(sales_total * commission_rate)

        bonus_lines: List[PayLine] = []
        if settings.perfect_attendance_bonus_rate > 0 and attendance.is_perfect(cycle.working_days):
            bonus_lines.append(PayLine(
                name="Perfect Attendance Bonus",
                amount=round_currency(base_salary * settings.perfect_attendance_bonus_rate),
                type="attendance",
            ))

        resolver = PayComponentResolver(
            data.components,
            settings=settings,
            apply_income_tax=data.apply_income_tax,
            apply_social_contribution=data.apply_social_contribution,
        )
        context = ResolutionContext(
            base_salary=base_salary,
            hourly_rate=hourly_rate,
            overtime_hours=attendance.overtime_hours,
            hours_worked=attendance.regular_hours,
            sales_total=sales_total,
            cycle=cycle,
        )

        # BASE stage
        base_pass = resolver.resolve(employee, context)

        package_allowances: List[PayLine] = []
        package_bonuses: List[PayLine] = []
        if package is not None:
            package_allowances = resolver.package_allowances(package, monthly_salary, cycle)
            package_bonuses = resolver.package_bonuses(package, cycle)

        role_allowances: List[PayLine] = []
        if not package_allowances:
            role_allowances = resolver.role_allowances(employee, monthly_salary, cycle)

        allowances = merge_by_name(
            role_allowances,
            package_allowances,
            base_pass.allowances(),
            _rounded(data.custom_allowances, "custom"),
        )
        bonuses = merge_by_name(
            package_bonuses,
            base_pass.bonuses(),
            _rounded(data.custom_bonuses, "custom"),
            bonus_lines,
        )

        # GROSS stage
        context.gross_pay = (
            base_salary + premium_pay + commission
            + total(line.amount for line in allowances)
            + total(line.amount for line in bonuses)
        )
        gross_pass = resolver.resolve(employee, context, pending=base_pass.deferred)
        allowances = merge_by_name(allowances, gross_pass.allowances())
        bonuses = merge_by_name(bonuses, gross_pass.bonuses())

        total_allowances = total(line.amount for line in allowances)
        total_bonuses = total(line.amount for line in bonuses)
        gross_pay = base_salary + premium_pay + commission + total_allowances + total_bonuses

        # Statutory
        earning_lines = allowances + bonuses
        bases = StatutoryBases(
            gross_pay=gross_pay,
            basic_salary=base_salary,
            taxable_gross=gross_pay - total(l.amount for l in earning_lines if not l.taxable),
            contributable_gross=gross_pay - total(
                l.amount for l in earning_lines if not l.affects_social_contribution
            ),
        )
        profile = data.profile

        contribution = {"employee": ZERO, "employer": ZERO}
        if data.apply_social_contribution:
            contribution = profile.social_contribution(bases)

        taxable_income = profile.taxable_income(bases, contribution["employee"])
        tax = {"amount": ZERO, "base": taxable_income, "annual_base": None, "bands": []}
        if data.apply_income_tax:
            tax = profile.income_tax(bases, contribution["employee"], cycle)

        statutory_lines = []
        if tax["amount"] > 0:
            statutory_lines.append(PayLine(
                name=profile.income_tax_rate.name,
                amount=tax["amount"],
                type="income_tax",
                statutory=True,
            ))
        if contribution["employee"] > 0:
            statutory_lines.append(PayLine(
                name=profile.social_security_rate.name,
                amount=contribution["employee"],
                type="social_security",
                statutory=True,
            ))
        total_statutory = tax["amount"] + contribution["employee"]

        # Other deductions, then NET stage
        other_deductions = [
            line for line in _rounded(data.custom_deductions, "custom") if line.amount > 0
        ]
        other_deductions += base_pass.deductions() + gross_pass.deductions()

        context.net_pay = gross_pay - total_statutory - total(line.amount for line in other_deductions)
        net_pass = resolver.resolve(employee, context, pending=gross_pass.deferred)
        other_deductions += net_pass.deductions()

        deductions = statutory_lines + other_deductions
        total_deductions = total(line.amount for line in deductions)
        net_pay = gross_pay - total_deductions
        if net_pay < 0:
            logger.warning(
                f"Negative net pay {net_pay} for employee {employee.id} "
                f"({data.period_start} - {data.period_end})"
            )

        return Payroll(
            organisation_id=employee.organisation_id,
            employee_id=employee.id,
            employee_name=employee.full_name,
            employee_role=employee.role,
            period_start=data.period_start,
            period_end=data.period_end,
            frequency=cycle.frequency,
            salary_type=salary_type,
            contract_salary=salary,
            prorated_salary=salary_figures["prorated"],
            attendance_adjustment=salary_figures["adjustment"],
            base_salary=base_salary,
            days_worked=attendance.days_worked,
            expected_days=cycle.working_days,
            hours_worked=attendance.regular_hours,
            hourly_rate=hourly_rate,
            overtime_hours=attendance.overtime_hours,
            overtime_multiplier=overtime_multiplier,
            overtime_pay=overtime_pay,
            weekend_hours=attendance.weekend_hours,
            weekend_pay=weekend_pay,
            holiday_hours=attendance.holiday_hours,
            holiday_pay=holiday_pay,
            sales_total=sales_total,
            commission=commission,
            allowances=allowances,
            bonuses=bonuses,
            deductions=deductions,
            total_allowances=total_allowances,
            total_bonuses=total_bonuses,
            total_deductions=total_deductions,
            total_statutory_deductions=total_statutory,
            gross_pay=gross_pay,
            taxable_income=taxable_income,
            net_pay=net_pay,
            employer_cost=gross_pay + contribution["employer"],
            social_contribution_employee=contribution["employee"],
            social_contribution_employer=contribution["employer"],
            income_tax=tax["amount"],
            calculation_details=self._details(
                cycle, attendance, tax, commission_rate, package,
                [base_pass, gross_pass, net_pass],
            ),
        )

    @staticmethod
    def _details(
        cycle: PayCycle,
        attendance: AttendanceSummary,
        tax: Dict[str, Any],
        commission_rate: Decimal,
        package: Optional[RemunerationPackage],
        passes: List[ResolutionPass],
    ) -> Dict[str, Any]:
        """JSON-safe trace of how the payroll was derived."""
        return {
            "pay_cycle": {
                "frequency": cycle.frequency.value,
                "periods_per_year": cycle.periods_per_year,
                "multiplier": str(cycle.multiplier),
            },
            "attendance": {
                "from_records": attendance.has_records,
                "days_worked": str(attendance.days_worked),
                "absences": attendance.absences,
            },
            "income_tax": {
                "base": str(tax["base"]),
                "annual_base": None if tax["annual_base"] is None else str(tax["annual_base"]),
                "bands": tax["bands"],
            },
            "commission_rate": str(commission_rate),
            "package_id": str(package.id) if package is not None and package.id else None,
            "components": [
                {"name": r.component.name, "stage": r.stage.name.lower(), "amount": str(r.line.amount)}
                for p in passes
                for r in p.resolved
            ],
        }
