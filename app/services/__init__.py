"""
Payroll Core - Services Package

Business logic services.
"""

from app.services.entity_store import EntityStore, InMemoryEntityStore, SQLAlchemyEntityStore
from app.services.payroll_defaults import PayCycle, default_statutory_rates, get_pay_cycle
from app.services.audit_service import AuditService
from app.services.notification_service import LoggingPayslipNotifier, PayslipNotifier

# Payroll computation
from app.services.tax_calculators.statutory_service import StatutoryBases, StatutoryProfile
from app.services.pay_components import PayComponentResolver, ResolutionContext
from app.services.payroll_composer import AttendanceSummary, CompositionInput, PayrollComposer

# Runs and approvals
from app.services.bulk_payroll import OrganisationInputs, PayrollRunService
from app.services.payroll_approval import PayrollApprovalService, TRANSITIONS

__all__ = [
    # Persistence
    "EntityStore",
    "InMemoryEntityStore",
    "SQLAlchemyEntityStore",
    # Defaults and audit
    "PayCycle",
    "default_statutory_rates",
    "get_pay_cycle",
    "AuditService",
    "LoggingPayslipNotifier",
    "PayslipNotifier",
    # Computation
    "StatutoryBases",
    "StatutoryProfile",
    "PayComponentResolver",
    "ResolutionContext",
    "AttendanceSummary",
    "CompositionInput",
    "PayrollComposer",
    # Runs and approvals
    "OrganisationInputs",
    "PayrollRunService",
    "PayrollApprovalService",
    "TRANSITIONS",
]
