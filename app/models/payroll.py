"""
Payroll Core - Payroll Models

Tables for the payroll engine:
- Employees and their remuneration packages
- Configurable pay components and statutory rates (PAYE, NASSIT)
- Attendance and sales feeding proration and commission
- Payrolls, payroll runs and the append-only payroll audit trail

Money columns hold whole currency units; the services round before persisting.
Nested rule data (calculation strategy, scope, tax tiers, pay lines) is stored
as JSON.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, JSON, Index, func, text
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.base import BaseModel, AuditMixin, OrganisationMixin


# ===========================================
# ENUMS
# ===========================================

class SalaryType(str, Enum):
    """How the contract salary is expressed."""
    MONTHLY = "monthly"
    HOURLY = "hourly"
    DAILY = "daily"


class EmployeeStatus(str, Enum):
    """Employment status."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class ComponentType(str, Enum):
    """Whether a pay component adds to or subtracts from pay."""
    EARNING = "earning"
    DEDUCTION = "deduction"


class PercentageBase(str, Enum):
    """Figure a percentage component is applied to."""
    BASE_SALARY = "base_salary"
    GROSS_PAY = "gross_pay"
    NET_PAY = "net_pay"
    CUSTOM = "custom"


class ComponentFrequency(str, Enum):
    """How often a pay component is paid."""
    EVERY_PAYROLL = "every_payroll"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    ONE_TIME = "one_time"


class BonusFrequency(str, Enum):
    """Package bonus cadence."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    PER_TRIP = "per_trip"


class StatutoryKind(str, Enum):
    """Statutory deduction family."""
    INCOME_TAX = "income_tax"
    SOCIAL_SECURITY = "social_security"


class CalculationMethod(str, Enum):
    """Statutory rate calculation method."""
    FLAT_RATE = "flat_rate"
    PERCENTAGE = "percentage"
    PROGRESSIVE = "progressive"


class AppliesToBase(str, Enum):
    """Pay figure a statutory rate is charged on."""
    GROSS_PAY = "gross_pay"
    BASIC_SALARY = "basic_salary"
    TAXABLE_INCOME = "taxable_income"


class AttendanceStatus(str, Enum):
    """Daily attendance status."""
    PRESENT = "present"
    LATE = "late"
    HALF_DAY = "half_day"
    ABSENT = "absent"
    LEAVE = "leave"


class PayrollStatus(str, Enum):
    """Payroll and payroll run status."""
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PayrollFrequency(str, Enum):
    """Payroll frequency."""
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"


class AuditAction(str, Enum):
    """Payroll audit trail actions."""
    CREATED = "created"
    UPDATED = "updated"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"
    DELETED = "deleted"
    RECALCULATED = "recalculated"


def _enum(enum_cls) -> SQLEnum:
    """Store enum values (not names) in a portable VARCHAR column."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


MONEY = Numeric(18, 2)
RATE = Numeric(9, 4)


# ===========================================
# EMPLOYEE & PACKAGE MODELS
# ===========================================

class Employee(BaseModel, OrganisationMixin):
    """Employee as seen by payroll. Maintained outside the payroll core."""

    __tablename__ = "employees"

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    base_salary: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    salary_type: Mapped[SalaryType] = mapped_column(
        _enum(SalaryType), default=SalaryType.MONTHLY, nullable=False,
    )
    status: Mapped[EmployeeStatus] = mapped_column(
        _enum(EmployeeStatus), default=EmployeeStatus.ACTIVE, nullable=False,
    )
    remuneration_package_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)


class RemunerationPackage(BaseModel, OrganisationMixin):
    """Named bundle of base salary, allowances and bonuses assigned by role."""

    __tablename__ = "remuneration_packages"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    applicable_roles: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    base_salary: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    salary_type: Mapped[SalaryType] = mapped_column(
        _enum(SalaryType), default=SalaryType.MONTHLY, nullable=False,
    )
    # [{"name", "amount", "type": fixed|percentage}]
    allowances: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    # [{"name", "amount", "frequency": monthly|quarterly|annual|per_trip}]
    bonuses: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    leave_entitlements: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    overtime_multiplier: Mapped[Optional[Decimal]] = mapped_column(RATE, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ===========================================
# PAY RULE MODELS
# ===========================================

class PayComponent(BaseModel, OrganisationMixin):
    """Configurable allowance, bonus or deduction rule."""

    __tablename__ = "pay_components"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    type: Mapped[ComponentType] = mapped_column(_enum(ComponentType), nullable=False)
    category: Mapped[str] = mapped_column(String(50), default="other", nullable=False)
    # Tagged calculation strategy, e.g. {"kind": "percentage", "rate": "10", "of": "base_salary"}
    calculation: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    min_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    affects_social_contribution: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    frequency: Mapped[ComponentFrequency] = mapped_column(
        _enum(ComponentFrequency), default=ComponentFrequency.EVERY_PAYROLL, nullable=False,
    )
    # {"employee_ids": [...], "roles": [...]}
    scope: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class StatutoryRate(BaseModel, OrganisationMixin):
    """Configured income tax or social contribution rate."""

    __tablename__ = "statutory_rates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    kind: Mapped[StatutoryKind] = mapped_column(_enum(StatutoryKind), nullable=False)
    calculation_method: Mapped[CalculationMethod] = mapped_column(_enum(CalculationMethod), nullable=False)
    rate: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    employer_rate: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    # [{"min", "max", "rate"}] ascending, final tier unbounded
    tiers: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    exemption_threshold: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    max_base: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    applies_to_base: Mapped[AppliesToBase] = mapped_column(
        _enum(AppliesToBase), default=AppliesToBase.GROSS_PAY, nullable=False,
    )
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ===========================================
# INPUT FEEDS
# ===========================================

class AttendanceRecord(BaseModel, OrganisationMixin):
    """Daily attendance entry."""

    __tablename__ = "attendance_records"
    __table_args__ = (
        Index("ix_attendance_employee_date", "employee_id", "attendance_date"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(_enum(AttendanceStatus), nullable=False)
    hours_worked: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    weekend_hours: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    holiday_hours: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)


class Sale(BaseModel, OrganisationMixin):
    """Completed sale attributed to an employee for commission."""

    __tablename__ = "sales"

    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="completed", nullable=False)


# ===========================================
# PAYROLL MODELS
# ===========================================

class Payroll(BaseModel, OrganisationMixin, AuditMixin):
    """One employee's computed pay for one period."""

    __tablename__ = "payrolls"
    __table_args__ = (
        Index("ix_payroll_employee_period", "employee_id", "period_start", "period_end"),
        # One live payroll per employee and period; cancelled rows are history
        Index(
            "uq_payroll_employee_period_live",
            "employee_id", "period_start", "period_end",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    employee_role: Mapped[str] = mapped_column(String(50), nullable=False)
    run_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    frequency: Mapped[PayrollFrequency] = mapped_column(_enum(PayrollFrequency), nullable=False)
    salary_type: Mapped[SalaryType] = mapped_column(_enum(SalaryType), nullable=False)

    # Base pay
    contract_salary: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    prorated_salary: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    attendance_adjustment: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    days_worked: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    expected_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hours_worked: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    # Overtime and commission
    overtime_hours: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    overtime_multiplier: Mapped[Decimal] = mapped_column(RATE, default=Decimal("1.5"), nullable=False)
    overtime_pay: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    weekend_hours: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    weekend_pay: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    holiday_hours: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    holiday_pay: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    sales_total: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    commission: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    # Pay lines [{"name", "amount", "type", "statutory", ...}]
    allowances: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    bonuses: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    deductions: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    # Totals
    total_allowances: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_bonuses: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_statutory_deductions: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    employer_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    # Statutory
    social_contribution_employee: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    social_contribution_employer: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    income_tax: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        _enum(PayrollStatus), default=PayrollStatus.DRAFT, nullable=False, index=True,
    )
    calculation_details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)


class PayrollRun(BaseModel, OrganisationMixin, AuditMixin):
    """Batch of payrolls for one period carrying its own approval status."""

    __tablename__ = "payroll_runs"

    run_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    frequency: Mapped[PayrollFrequency] = mapped_column(_enum(PayrollFrequency), nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payroll_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    total_gross: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_net: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_employer_cost: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        _enum(PayrollStatus), default=PayrollStatus.DRAFT, nullable=False, index=True,
    )
    created_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Workflow stamps
    submitted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    submitted_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reviewed_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    rejected_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    paid_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    cancelled_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    cancelled_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class PayrollAudit(Base, OrganisationMixin):
    """
    Append-only audit trail of payroll and payroll run changes.

    Rows are only ever inserted; there is no updated_at column.
    """

    __tablename__ = "payroll_audits"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payroll_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    run_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    action: Mapped[AuditAction] = mapped_column(_enum(AuditAction), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    changed_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    previous_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    new_values: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<PayrollAudit(id={self.id}, action={self.action})>"
