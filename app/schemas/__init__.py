"""
Payroll Core - Schemas Package

Pydantic records used by the payroll services.
"""

from app.schemas.payroll import (
    Record,
    Employee,
    PackageAllowance,
    PackageBonus,
    RemunerationPackage,
    FixedCalculation,
    PercentageCalculation,
    HoursBasedCalculation,
    FormulaCalculation,
    Calculation,
    ComponentScope,
    PayComponent,
    TaxTier,
    StatutoryRate,
    AttendanceRecord,
    Sale,
    PayLine,
    Payroll,
    PayrollRun,
    PayrollAudit,
    Actor,
    BulkRunRequest,
    EmployeeOutcome,
    BulkRunSummary,
)

__all__ = [
    "Record",
    "Employee",
    "PackageAllowance",
    "PackageBonus",
    "RemunerationPackage",
    "FixedCalculation",
    "PercentageCalculation",
    "HoursBasedCalculation",
    "FormulaCalculation",
    "Calculation",
    "ComponentScope",
    "PayComponent",
    "TaxTier",
    "StatutoryRate",
    "AttendanceRecord",
    "Sale",
    "PayLine",
    "Payroll",
    "PayrollRun",
    "PayrollAudit",
    "Actor",
    "BulkRunRequest",
    "EmployeeOutcome",
    "BulkRunSummary",
]
