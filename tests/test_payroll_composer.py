"""
Payroll Core - Payroll Composer Tests

Tests for single-employee payroll composition.
"""

import random
import pytest
from datetime import date, timedelta
from decimal import Decimal

from app.config import Settings
from app.models.payroll import (
    AttendanceStatus,
    BonusFrequency,
    ComponentFrequency,
    ComponentType,
    PayrollFrequency,
    SalaryType,
)
from app.schemas.payroll import (
    AttendanceRecord,
    FixedCalculation,
    HoursBasedCalculation,
    PackageAllowance,
    PackageBonus,
    PayComponent,
    PayLine,
    PercentageCalculation,
    RemunerationPackage,
)
from app.services.payroll_composer import AttendanceSummary, CompositionInput, PayrollComposer
from app.utils.error_handling import ConfigurationError


@pytest.fixture
def composer(test_settings) -> PayrollComposer:
    return PayrollComposer(test_settings)


@pytest.fixture
def compose_input(default_profile, period):
    def _make(employee, **overrides) -> CompositionInput:
        data = {
            "employee": employee,
            "period_start": period[0],
            "period_end": period[1],
            "components": [],
            "profile": default_profile,
        }
        data.update(overrides)
        return CompositionInput(**data)

    return _make


def _attendance(organisation_id, employee_id, statuses, overtime=None, weekend=None, holiday=None):
    overtime = overtime or {}
    weekend = weekend or {}
    holiday = holiday or {}
    return [
        AttendanceRecord(
            organisation_id=organisation_id,
            employee_id=employee_id,
            attendance_date=date(2025, 1, day + 1),
            status=status,
            overtime_hours=overtime.get(day, Decimal("0")),
            weekend_hours=weekend.get(day, Decimal("0")),
            holiday_hours=holiday.get(day, Decimal("0")),
        )
        for day, status in enumerate(statuses)
    ]


class TestWorkedExample:
    """Le 1,000,000 monthly with default PAYE and NASSIT."""

    def test_one_million_monthly(self, composer, compose_input, make_employee):
        payroll = composer.compose(compose_input(make_employee()))

        assert payroll.gross_pay == Decimal("1000000")
        assert payroll.income_tax == Decimal("275000")
        assert payroll.social_contribution_employee == Decimal("50000")
        assert payroll.social_contribution_employer == Decimal("100000")
        assert payroll.total_deductions == Decimal("325000")
        assert payroll.net_pay == Decimal("675000")
        assert payroll.employer_cost == Decimal("1100000")

    def test_statutory_lines(self, composer, compose_input, make_employee):
        payroll = composer.compose(compose_input(make_employee()))

        statutory = [(line.type, line.amount) for line in payroll.deductions if line.statutory]
        assert statutory == [
            ("income_tax", Decimal("275000")),
            ("social_security", Decimal("50000")),
        ]

    def test_statutory_toggles_off(self, composer, compose_input, make_employee):
        payroll = composer.compose(compose_input(
            make_employee(),
            apply_income_tax=False,
            apply_social_contribution=False,
        ))

        assert payroll.deductions == []
        assert payroll.net_pay == payroll.gross_pay
        assert payroll.employer_cost == payroll.gross_pay


class TestBaseSalary:
    """Test effective salary and attendance adjustment."""

    def test_missing_base_salary(self, composer, compose_input, make_employee):
        with pytest.raises(ConfigurationError):
            composer.compose(compose_input(make_employee(base_salary=None)))

    def test_zero_base_salary(self, composer, compose_input, make_employee):
        with pytest.raises(ConfigurationError):
            composer.compose(compose_input(make_employee(base_salary=Decimal("0"))))

    def test_missed_days_deducted(self, composer, compose_input, make_employee, organisation_id):
        employee = make_employee(base_salary=Decimal("220000"))
        records = _attendance(
            organisation_id, employee.id,
            [AttendanceStatus.PRESENT] * 20 + [AttendanceStatus.ABSENT] * 2,
        )
        attendance = AttendanceSummary.from_records(records, 22, 8)

        payroll = composer.compose(compose_input(employee, attendance=attendance))

        assert payroll.days_worked == Decimal("20")
        assert payroll.expected_days == 22
        assert payroll.prorated_salary == Decimal("220000")
        assert payroll.attendance_adjustment == Decimal("-20000")
        assert payroll.base_salary == Decimal("200000")

    def test_no_records_means_full_attendance(self):
        summary = AttendanceSummary.from_records([], 22, 8)
        assert summary.days_worked == Decimal("22")
        assert summary.regular_hours == Decimal("176")
        assert not summary.has_records

    def test_half_days_and_leave(self, organisation_id, make_employee):
        employee = make_employee()
        records = _attendance(organisation_id, employee.id, [
            AttendanceStatus.PRESENT,
            AttendanceStatus.LATE,
            AttendanceStatus.HALF_DAY,
            AttendanceStatus.LEAVE,
            AttendanceStatus.ABSENT,
        ])
        summary = AttendanceSummary.from_records(records, 22, 8)
        assert summary.days_worked == Decimal("3.5")
        assert summary.absences == 1

    def test_package_overrides_salary(self, composer, compose_input, make_employee, organisation_id):
        employee = make_employee(base_salary=Decimal("50000"), role="driver")
        package = RemunerationPackage(
            organisation_id=organisation_id,
            name="Senior Drivers",
            base_salary=Decimal("300000"),
            allowances=[PackageAllowance(name="Housing", amount=Decimal("10"), type="percentage")],
        )

        with_package = composer.compose(compose_input(employee, package=package))
        without = composer.compose(compose_input(employee, package=package, use_package_settings=False))

        assert with_package.contract_salary == Decimal("300000")
        assert [line.name for line in with_package.allowances] == ["Housing"]
        assert with_package.total_allowances == Decimal("30000")
        assert without.contract_salary == Decimal("50000")
        assert "Risk Allowance" in [line.name for line in without.allowances]

    def test_daily_salary(self, composer, compose_input, make_employee, organisation_id):
        employee = make_employee(base_salary=Decimal("10000"), salary_type="daily")
        records = _attendance(organisation_id, employee.id, [AttendanceStatus.PRESENT] * 15)
        attendance = AttendanceSummary.from_records(records, 22, 8)

        payroll = composer.compose(compose_input(employee, attendance=attendance))

        assert payroll.hourly_rate == Decimal("1250")
        assert payroll.base_salary == Decimal("150000")


class TestEarnings:
    """Test overtime, commission, bonuses and components."""

    def test_overtime_pay(self, composer, compose_input, make_employee, organisation_id):
        # 176,000 / (22 x 8) = 1,000 an hour
        employee = make_employee(base_salary=Decimal("176000"))
        records = _attendance(
            organisation_id, employee.id, [AttendanceStatus.PRESENT] * 22, overtime={0: Decimal("10")},
        )
        payroll = composer.compose(compose_input(
            employee, attendance=AttendanceSummary.from_records(records, 22, 8),
        ))

        assert payroll.hourly_rate == Decimal("1000")
        assert payroll.overtime_hours == Decimal("10")
        assert payroll.overtime_pay == Decimal("15000")

    def test_weekend_and_holiday_pay(self, composer, compose_input, make_employee, organisation_id):
        employee = make_employee(base_salary=Decimal("176000"))
        records = _attendance(
            organisation_id, employee.id, [AttendanceStatus.PRESENT] * 22,
            weekend={4: Decimal("4")}, holiday={10: Decimal("2")},
        )
        payroll = composer.compose(compose_input(
            employee, attendance=AttendanceSummary.from_records(records, 22, 8),
        ))

        # 1,000 an hour: 4h at 2.0 and 2h at 2.5
        assert payroll.weekend_hours == Decimal("4")
        assert payroll.weekend_pay == Decimal("8000")
        assert payroll.holiday_hours == Decimal("2")
        assert payroll.holiday_pay == Decimal("5000")
        assert payroll.overtime_pay == Decimal("0")
        assert payroll.gross_pay == Decimal("189000")

    def test_configured_premium_multipliers(self, compose_input, make_employee, organisation_id):
        composer = PayrollComposer(Settings(
            _env_file=None,
            weekend_overtime_multiplier=Decimal("1.75"),
            holiday_overtime_multiplier=Decimal("3"),
        ))
        employee = make_employee(base_salary=Decimal("176000"))
        summary = AttendanceSummary.full(22, 8)
        summary.weekend_hours = Decimal("4")
        summary.holiday_hours = Decimal("1")

        payroll = composer.compose(compose_input(employee, attendance=summary))

        assert payroll.weekend_pay == Decimal("7000")
        assert payroll.holiday_pay == Decimal("3000")

    def test_commission_for_eligible_role(self, composer, compose_input, make_employee):
        driver = make_employee(role="driver")
        payroll = composer.compose(compose_input(driver, sales_total=Decimal("1000000")))
        assert payroll.commission == Decimal("20000")

    def test_no_commission_for_other_roles(self, composer, compose_input, make_employee):
        payroll = composer.compose(compose_input(make_employee(), sales_total=Decimal("1000000")))
        assert payroll.commission == Decimal("0")

    def test_perfect_attendance_bonus(self, compose_input, make_employee, organisation_id):
        composer = PayrollComposer(Settings(_env_file=None, perfect_attendance_bonus_rate=Decimal("0.05")))
        employee = make_employee(base_salary=Decimal("176000"))
        records = _attendance(organisation_id, employee.id, [AttendanceStatus.PRESENT] * 22)

        payroll = composer.compose(compose_input(
            employee, attendance=AttendanceSummary.from_records(records, 22, 8),
        ))

        assert [(line.name, line.amount) for line in payroll.bonuses] == [
            ("Perfect Attendance Bonus", Decimal("8800")),
        ]

    def test_net_stage_deduction(self, composer, compose_input, make_employee, organisation_id):
        loan = PayComponent(
            organisation_id=organisation_id,
            name="Loan Repayment",
            type=ComponentType.DEDUCTION,
            category="loan",
            calculation=FixedCalculation(amount=Decimal("5000")),
        )
        savings = PayComponent(
            organisation_id=organisation_id,
            name="Savings",
            type=ComponentType.DEDUCTION,
            category="savings",
            calculation=PercentageCalculation(rate=Decimal("10"), of="net_pay"),
        )
        payroll = composer.compose(compose_input(
            make_employee(base_salary=Decimal("100000")), components=[savings, loan],
        ))

        # Net before savings: 100,000 - 9,583 PAYE - 5,000 NASSIT - 5,000 loan
        amounts = {line.name: line.amount for line in payroll.deductions}
        assert amounts["Savings"] == Decimal("8042")
        assert payroll.net_pay == Decimal("72375")


class TestInvariants:
    """Accounting identity and determinism."""

    @pytest.fixture
    def rich_input(self, compose_input, make_employee, organisation_id):
        employee = make_employee(role="driver", base_salary=Decimal("450000"))
        package = RemunerationPackage(
            organisation_id=organisation_id,
            name="Drivers",
            allowances=[
                PackageAllowance(name="Transport Allowance", amount=Decimal("400")),
                PackageAllowance(name="Housing", amount=Decimal("12.5"), type="percentage"),
            ],
            bonuses=[PackageBonus(name="Safety Bonus", amount=Decimal("60000"), frequency="annual")],
            overtime_multiplier=Decimal("2"),
        )
        components = [
            PayComponent(
                organisation_id=organisation_id,
                name="Performance Bonus",
                type=ComponentType.EARNING,
                category="bonus",
                calculation=PercentageCalculation(rate=Decimal("3"), of="gross_pay"),
            ),
            PayComponent(
                organisation_id=organisation_id,
                name="Meal Allowance",
                type=ComponentType.EARNING,
                category="meal",
                calculation=FixedCalculation(amount=Decimal("250")),
                is_taxable=False,
                affects_social_contribution=False,
            ),
            PayComponent(
                organisation_id=organisation_id,
                name="Union Dues",
                type=ComponentType.DEDUCTION,
                category="union",
                calculation=PercentageCalculation(rate=Decimal("1")),
                max_amount=Decimal("3000"),
            ),
        ]
        records = _attendance(
            organisation_id, employee.id,
            [AttendanceStatus.PRESENT] * 19 + [AttendanceStatus.HALF_DAY, AttendanceStatus.ABSENT],
            overtime={3: Decimal("6"), 7: Decimal("2.5")},
            weekend={5: Decimal("5")},
            holiday={12: Decimal("3")},
        )
        return compose_input(
            employee,
            package=package,
            components=components,
            attendance=AttendanceSummary.from_records(records, 22, 8),
            sales_total=Decimal("2750000"),
            frequency=PayrollFrequency.MONTHLY,
            custom_allowances=[PayLine(name="Transport Allowance", amount=Decimal("300"))],
            custom_deductions=[PayLine(name="Advance", amount=Decimal("10000.4"))],
        )

    def test_accounting_identity(self, composer, rich_input):
        payroll = composer.compose(rich_input)

        assert payroll.gross_pay == (
            payroll.base_salary
            + payroll.overtime_pay
            + payroll.weekend_pay
            + payroll.holiday_pay
            + payroll.commission
            + payroll.total_allowances
            + payroll.total_bonuses
        )
        assert payroll.total_allowances == sum(line.amount for line in payroll.allowances)
        assert payroll.total_bonuses == sum(line.amount for line in payroll.bonuses)
        assert payroll.total_deductions == sum(line.amount for line in payroll.deductions)
        assert payroll.total_statutory_deductions == (
            payroll.income_tax + payroll.social_contribution_employee
        )
        assert payroll.net_pay == payroll.gross_pay - payroll.total_deductions
        assert payroll.employer_cost == payroll.gross_pay + payroll.social_contribution_employer

    def test_amounts_are_whole_units(self, composer, rich_input):
        payroll = composer.compose(rich_input)
        for line in payroll.allowances + payroll.bonuses + payroll.deductions:
            assert line.amount == line.amount.to_integral_value()

    def test_duplicate_allowance_keeps_higher(self, composer, rich_input):
        payroll = composer.compose(rich_input)
        transport = [line for line in payroll.allowances if line.name == "Transport Allowance"]
        assert [line.amount for line in transport] == [Decimal("400")]

    def test_deterministic(self, composer, rich_input):
        first = composer.compose(rich_input)
        second = composer.compose(rich_input)

        assert first.id is None
        assert first.created_at is None
        assert first.model_dump_json() == second.model_dump_json()


# ===========================================
# RANDOMISED IDENTITY SWEEP
# ===========================================

EARNING_CATEGORIES = ["housing", "meal", "bonus", "commission", "incentive"]
DEDUCTION_CATEGORIES = ["loan", "union", "savings"]
ROLES = ["staff", "driver", "accountant", "vehicle_sales", "org_admin"]


def _amount(rng, low, high, places=0):
    scale = 10 ** places
    return Decimal(rng.randint(low * scale, high * scale)) / scale


def _random_component(rng, organisation_id, index):
    is_deduction = rng.random() < 0.4
    kind = rng.choice(["fixed", "percent_base", "percent_gross", "hours"] + (["percent_net"] if is_deduction else []))
    if kind == "fixed":
        calculation = FixedCalculation(amount=_amount(rng, 0, 50000, 2))
    elif kind == "percent_base":
        calculation = PercentageCalculation(rate=_amount(rng, 0, 25, 1))
    elif kind == "percent_gross":
        calculation = PercentageCalculation(rate=_amount(rng, 0, 10, 1), of="gross_pay")
    elif kind == "percent_net":
        calculation = PercentageCalculation(rate=_amount(rng, 0, 10, 1), of="net_pay")
    else:
        hours = _amount(rng, 0, 20, 1) if rng.random() < 0.5 else None
        calculation = HoursBasedCalculation(multiplier=_amount(rng, 0, 3, 2), hours=hours)

    min_amount = max_amount = None
    if rng.random() < 0.3:
        min_amount = _amount(rng, 0, 2000)
    if rng.random() < 0.3:
        max_amount = (min_amount or Decimal("0")) + _amount(rng, 0, 40000)

    return PayComponent(
        organisation_id=organisation_id,
        name=f"Component {index}",
        type=ComponentType.DEDUCTION if is_deduction else ComponentType.EARNING,
        category=rng.choice(DEDUCTION_CATEGORIES if is_deduction else EARNING_CATEGORIES),
        calculation=calculation,
        min_amount=min_amount,
        max_amount=max_amount,
        is_taxable=rng.random() < 0.8,
        affects_social_contribution=rng.random() < 0.8,
        frequency=rng.choice(list(ComponentFrequency)),
    )


def _random_package(rng, organisation_id):
    return RemunerationPackage(
        organisation_id=organisation_id,
        name="Randomised",
        base_salary=_amount(rng, 100000, 3000000) if rng.random() < 0.3 else None,
        allowances=[
            PackageAllowance(name="Housing", amount=_amount(rng, 0, 20, 1), type="percentage"),
            PackageAllowance(name="Transport Allowance", amount=_amount(rng, 0, 5000)),
        ][:rng.randint(0, 2)],
        bonuses=[
            PackageBonus(name=f"Package Bonus {i}", amount=_amount(rng, 0, 120000), frequency=rng.choice(list(BonusFrequency)))
            for i in range(rng.randint(0, 2))
        ],
        overtime_multiplier=_amount(rng, 1, 3, 2) if rng.random() < 0.5 else None,
    )


def _random_attendance(rng, organisation_id, employee_id, days):
    statuses = list(AttendanceStatus)
    records = [
        AttendanceRecord(
            organisation_id=organisation_id,
            employee_id=employee_id,
            attendance_date=date(2025, 1, 1) + timedelta(days=day),
            status=rng.choice(statuses),
            hours_worked=_amount(rng, 0, 10, 1) if rng.random() < 0.5 else Decimal("0"),
            overtime_hours=_amount(rng, 0, 4, 1),
            weekend_hours=_amount(rng, 0, 3, 1) if rng.random() < 0.2 else Decimal("0"),
            holiday_hours=_amount(rng, 0, 3, 1) if rng.random() < 0.1 else Decimal("0"),
        )
        for day in range(rng.randint(0, days))
    ]
    return AttendanceSummary.from_records(records, days, 8)


def _random_lines(rng, prefix):
    return [
        PayLine(name=f"{prefix} {i}", amount=_amount(rng, 0, 30000, 2))
        for i in range(rng.randint(0, 2))
    ]


class TestRandomisedIdentity:
    """Totals add up for generated inputs across salary types, cycles and component mixes."""

    @pytest.mark.parametrize("seed", range(60))
    def test_identities_hold(self, seed, composer, default_profile, make_employee, organisation_id, period):
        rng = random.Random(seed)
        salary_type = rng.choice(list(SalaryType))
        salary = {
            SalaryType.MONTHLY: _amount(rng, 50000, 5000000),
            SalaryType.DAILY: _amount(rng, 2000, 200000),
            SalaryType.HOURLY: _amount(rng, 300, 30000),
        }[salary_type]
        frequency = rng.choice(list(PayrollFrequency))
        employee = make_employee(role=rng.choice(ROLES), base_salary=salary, salary_type=salary_type)
        working_days = {PayrollFrequency.WEEKLY: 5, PayrollFrequency.BI_WEEKLY: 10, PayrollFrequency.MONTHLY: 22}

        data = CompositionInput(
            employee=employee,
            period_start=period[0],
            period_end=period[1],
            frequency=frequency,
            components=[_random_component(rng, organisation_id, i) for i in range(rng.randint(0, 6))],
            profile=default_profile,
            package=_random_package(rng, organisation_id) if rng.random() < 0.4 else None,
            attendance=(
                _random_attendance(rng, organisation_id, employee.id, working_days[frequency])
                if rng.random() < 0.7 else None
            ),
            sales_total=_amount(rng, 0, 5000000) if rng.random() < 0.5 else Decimal("0"),
            apply_income_tax=rng.random() < 0.85,
            apply_social_contribution=rng.random() < 0.85,
            custom_allowances=_random_lines(rng, "Custom Allowance"),
            custom_bonuses=_random_lines(rng, "Custom Bonus"),
            custom_deductions=_random_lines(rng, "Custom Deduction"),
        )

        payroll = composer.compose(data)

        assert payroll.total_allowances == sum(line.amount for line in payroll.allowances)
        assert payroll.total_bonuses == sum(line.amount for line in payroll.bonuses)
        assert payroll.total_deductions == sum(line.amount for line in payroll.deductions)
        assert payroll.gross_pay == (
            payroll.base_salary
            + payroll.overtime_pay
            + payroll.weekend_pay
            + payroll.holiday_pay
            + payroll.commission
            + payroll.total_allowances
            + payroll.total_bonuses
        )
        assert payroll.total_statutory_deductions == (
            payroll.income_tax + payroll.social_contribution_employee
        )
        assert payroll.net_pay == payroll.gross_pay - payroll.total_deductions
        assert payroll.employer_cost == payroll.gross_pay + payroll.social_contribution_employer
        for line in payroll.allowances + payroll.bonuses + payroll.deductions:
            assert line.amount == line.amount.to_integral_value()
