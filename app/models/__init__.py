"""
Payroll Core - SQLAlchemy Models Package

This package contains all database models for the payroll engine.
"""

from app.models.base import BaseModel, TimestampMixin, AuditMixin, OrganisationMixin
from app.models.payroll import (
    # Enums
    SalaryType,
    EmployeeStatus,
    ComponentType,
    PercentageBase,
    ComponentFrequency,
    BonusFrequency,
    StatutoryKind,
    CalculationMethod,
    AppliesToBase,
    AttendanceStatus,
    PayrollStatus,
    PayrollFrequency,
    AuditAction,
    # Tables
    Employee,
    RemunerationPackage,
    PayComponent,
    StatutoryRate,
    AttendanceRecord,
    Sale,
    Payroll,
    PayrollRun,
    PayrollAudit,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    "OrganisationMixin",
    "SalaryType",
    "EmployeeStatus",
    "ComponentType",
    "PercentageBase",
    "ComponentFrequency",
    "BonusFrequency",
    "StatutoryKind",
    "CalculationMethod",
    "AppliesToBase",
    "AttendanceStatus",
    "PayrollStatus",
    "PayrollFrequency",
    "AuditAction",
    "Employee",
    "RemunerationPackage",
    "PayComponent",
    "StatutoryRate",
    "AttendanceRecord",
    "Sale",
    "Payroll",
    "PayrollRun",
    "PayrollAudit",
]
