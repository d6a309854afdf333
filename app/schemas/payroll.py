"""
Payroll Core - Payroll Schemas

Pydantic records exchanged between the payroll services and the entity store.
Records with an ``id`` of ``None`` have not been persisted yet.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.payroll import (
    AppliesToBase,
    AttendanceStatus,
    AuditAction,
    BonusFrequency,
    CalculationMethod,
    ComponentFrequency,
    ComponentType,
    EmployeeStatus,
    PayrollFrequency,
    PayrollStatus,
    PercentageBase,
    SalaryType,
    StatutoryKind,
)


class Record(BaseModel):
    """Common fields of every stored record."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    organisation_id: UUID
    created_at: Optional[datetime] = None


# ===========================================
# EMPLOYEES & PACKAGES
# ===========================================

class Employee(Record):
    full_name: str
    email: Optional[str] = None
    role: str
    department: Optional[str] = None
    base_salary: Optional[Decimal] = None
    salary_type: SalaryType = SalaryType.MONTHLY
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    remuneration_package_id: Optional[UUID] = None


class PackageAllowance(BaseModel):
    name: str
    amount: Decimal = Field(ge=0)
    type: Literal["fixed", "percentage"] = "fixed"


class PackageBonus(BaseModel):
    name: str
    amount: Decimal = Field(ge=0)
    frequency: BonusFrequency = BonusFrequency.MONTHLY


class RemunerationPackage(Record):
    name: str
    applicable_roles: List[str] = Field(default_factory=list)
    base_salary: Optional[Decimal] = None
    salary_type: SalaryType = SalaryType.MONTHLY
    allowances: List[PackageAllowance] = Field(default_factory=list)
    bonuses: List[PackageBonus] = Field(default_factory=list)
    leave_entitlements: Dict[str, int] = Field(default_factory=dict)
    overtime_multiplier: Optional[Decimal] = None
    is_active: bool = True


# ===========================================
# PAY COMPONENTS
# ===========================================

class FixedCalculation(BaseModel):
    """Flat amount per payroll."""
    kind: Literal["fixed"] = "fixed"
    amount: Decimal


class PercentageCalculation(BaseModel):
    """``rate`` percent of the selected base."""
    kind: Literal["percentage"] = "percentage"
    rate: Decimal
    of: PercentageBase = PercentageBase.BASE_SALARY
    custom_base: Optional[Decimal] = None


class HoursBasedCalculation(BaseModel):
    """Hourly rate x hours x multiplier. Hours default to the period's overtime."""
    kind: Literal["hours_based"] = "hours_based"
    multiplier: Decimal
    hours: Optional[Decimal] = None


class FormulaCalculation(BaseModel):
    """Arithmetic expression over base_salary, gross_pay, hours and sales."""
    kind: Literal["formula"] = "formula"
    expression: str


Calculation = Annotated[
    Union[FixedCalculation, PercentageCalculation, HoursBasedCalculation, FormulaCalculation],
    Field(discriminator="kind"),
]


class ComponentScope(BaseModel):
    """Who a component applies to. Both lists empty means everyone."""
    employee_ids: List[UUID] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)


class PayComponent(Record):
    name: str
    code: Optional[str] = None
    type: ComponentType
    category: str = "other"
    calculation: Calculation
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    is_taxable: bool = True
    affects_social_contribution: bool = True
    frequency: ComponentFrequency = ComponentFrequency.EVERY_PAYROLL
    scope: ComponentScope = Field(default_factory=ComponentScope)
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def accept_flat_fields(cls, data: Any) -> Any:
        """Accept the flat calculation_type/amount/percentage_of shape."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "calculation" not in data and "calculation_type" in data:
            kind = data.pop("calculation_type")
            amount = data.pop("amount", 0)
            percentage_of = data.pop("percentage_of", None) or PercentageBase.BASE_SALARY.value
            if kind == "percentage":
                data["calculation"] = {"kind": kind, "rate": amount, "of": percentage_of}
            elif kind == "hours_based":
                data["calculation"] = {"kind": kind, "multiplier": amount}
            elif kind == "formula":
                data["calculation"] = {"kind": kind, "expression": data.pop("formula", "") or ""}
            else:
                data["calculation"] = {"kind": kind, "amount": amount}
        if "scope" not in data and ("employee_ids" in data or "roles" in data):
            data["scope"] = {
                "employee_ids": data.pop("employee_ids", None) or [],
                "roles": data.pop("roles", None) or [],
            }
        return data


# ===========================================
# STATUTORY RATES
# ===========================================

class TaxTier(BaseModel):
    """Progressive band. ``rate`` is a percentage; ``max`` of None is unbounded."""
    min: Decimal = Decimal("0")
    max: Optional[Decimal] = None
    rate: Decimal


class StatutoryRate(Record):
    name: str
    code: str
    kind: StatutoryKind
    calculation_method: CalculationMethod
    rate: Decimal = Decimal("0")
    employer_rate: Decimal = Decimal("0")
    tiers: List[TaxTier] = Field(default_factory=list)
    exemption_threshold: Decimal = Decimal("0")
    max_base: Optional[Decimal] = None
    applies_to_base: AppliesToBase = AppliesToBase.GROSS_PAY
    is_mandatory: bool = True
    is_active: bool = True


# ===========================================
# INPUT FEEDS
# ===========================================

class AttendanceRecord(Record):
    employee_id: UUID
    attendance_date: date
    status: AttendanceStatus
    hours_worked: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")
    weekend_hours: Decimal = Decimal("0")
    holiday_hours: Decimal = Decimal("0")


class Sale(Record):
    employee_id: UUID
    sale_date: date
    total_amount: Decimal
    status: str = "completed"


# ===========================================
# PAYROLL
# ===========================================

class PayLine(BaseModel):
    """One allowance, bonus or deduction line on a payroll."""
    name: str
    amount: Decimal
    type: str = "fixed"
    statutory: bool = False
    taxable: bool = True
    affects_social_contribution: bool = True


class Payroll(Record):
    employee_id: UUID
    employee_name: str
    employee_role: str
    run_id: Optional[UUID] = None

    period_start: date
    period_end: date
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY
    salary_type: SalaryType = SalaryType.MONTHLY

    contract_salary: Decimal = Decimal("0")
    prorated_salary: Decimal = Decimal("0")
    attendance_adjustment: Decimal = Decimal("0")
    base_salary: Decimal = Decimal("0")
    days_worked: Decimal = Decimal("0")
    expected_days: int = 0
    hours_worked: Decimal = Decimal("0")
    hourly_rate: Decimal = Decimal("0")

    overtime_hours: Decimal = Decimal("0")
    overtime_multiplier: Decimal = Decimal("1.5")
    overtime_pay: Decimal = Decimal("0")
    weekend_hours: Decimal = Decimal("0")
    weekend_pay: Decimal = Decimal("0")
    holiday_hours: Decimal = Decimal("0")
    holiday_pay: Decimal = Decimal("0")
    sales_total: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")

    allowances: List[PayLine] = Field(default_factory=list)
    bonuses: List[PayLine] = Field(default_factory=list)
    deductions: List[PayLine] = Field(default_factory=list)

    total_allowances: Decimal = Decimal("0")
    total_bonuses: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    total_statutory_deductions: Decimal = Decimal("0")
    gross_pay: Decimal = Decimal("0")
    taxable_income: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    employer_cost: Decimal = Decimal("0")

    social_contribution_employee: Decimal = Decimal("0")
    social_contribution_employer: Decimal = Decimal("0")
    income_tax: Decimal = Decimal("0")

    status: PayrollStatus = PayrollStatus.DRAFT
    calculation_details: Dict[str, Any] = Field(default_factory=dict)

    created_by_id: Optional[UUID] = None
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by_id: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    payment_date: Optional[date] = None


class PayrollRun(Record):
    run_number: str
    period_start: date
    period_end: date
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY
    employee_count: int = 0
    payroll_ids: List[UUID] = Field(default_factory=list)

    total_gross: Decimal = Decimal("0")
    total_net: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    total_employer_cost: Decimal = Decimal("0")

    status: PayrollStatus = PayrollStatus.DRAFT
    created_by_id: Optional[UUID] = None
    created_by_name: Optional[str] = None
    notes: Optional[str] = None

    submitted_by_id: Optional[UUID] = None
    submitted_by_name: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by_id: Optional[UUID] = None
    reviewed_by_name: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    approved_by_id: Optional[UUID] = None
    approved_by_name: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    rejected_by_id: Optional[UUID] = None
    rejected_by_name: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    paid_by_id: Optional[UUID] = None
    paid_by_name: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_date: Optional[date] = None
    cancelled_by_id: Optional[UUID] = None
    cancelled_by_name: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class PayrollAudit(Record):
    payroll_id: Optional[UUID] = None
    run_id: Optional[UUID] = None
    employee_id: Optional[UUID] = None
    action: AuditAction
    changed_by_id: Optional[UUID] = None
    changed_by_name: Optional[str] = None
    previous_status: Optional[str] = None
    new_values: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None


# ===========================================
# SERVICE REQUESTS & RESULTS
# ===========================================

class Actor(BaseModel):
    """User performing a payroll operation."""
    id: UUID
    name: str
    role: str


class BulkRunRequest(BaseModel):
    organisation_id: UUID
    employee_ids: List[UUID]
    period_start: date
    period_end: date
    frequency: PayrollFrequency = PayrollFrequency.MONTHLY
    use_package_settings: bool = True
    include_attendance_data: bool = True
    apply_income_tax: bool = True
    apply_social_contribution: bool = True
    auto_approve: bool = False
    notes: Optional[str] = None
    custom_allowances: List[PayLine] = Field(default_factory=list)
    custom_bonuses: List[PayLine] = Field(default_factory=list)
    custom_deductions: List[PayLine] = Field(default_factory=list)


class EmployeeOutcome(BaseModel):
    """Per-employee result of a bulk run."""
    employee_id: UUID
    employee_name: Optional[str] = None
    status: Literal["success", "error"]
    payroll_id: Optional[UUID] = None
    net_pay: Optional[Decimal] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class BulkRunSummary(BaseModel):
    run: Optional[PayrollRun] = None
    success_count: int = 0
    error_count: int = 0
    results: List[EmployeeOutcome] = Field(default_factory=list)
    # Composed payrolls, populated by previews only
    payrolls: List[Payroll] = Field(default_factory=list)
