"""
Payroll Core - Bulk Payroll Service

Runs payroll for many employees in one request.

Flow:
1. Validate the request and load organisation-wide inputs once
   (pay components, statutory rates, packages)
2. Per employee, concurrently under a semaphore: load inputs, check the
   period is not already paid, compose, persist, audit
3. Join: one PayrollRun aggregating the successful payrolls only
4. Auto-approved runs notify each employee of their payslip

A failing employee is recorded in the summary and never aborts the others.
Payrolls persisted before a crash are left without a run and can be found with
``find_orphaned_payrolls`` and attached with ``recover_orphaned_payrolls``.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
from uuid import UUID
import logging

from app.config import Settings, get_settings
from app.models.payroll import AuditAction, EmployeeStatus, PayrollFrequency, PayrollStatus
from app.schemas.payroll import (
    Actor,
    AttendanceRecord,
    BulkRunRequest,
    BulkRunSummary,
    Employee,
    EmployeeOutcome,
    PayComponent,
    PayLine,
    Payroll,
    PayrollRun,
    RemunerationPackage,
    Sale,
    StatutoryRate,
)
from app.services.audit_service import AuditService
from app.services.entity_store import EntityStore
from app.services.notification_service import PayslipNotifier
from app.services.payroll_composer import AttendanceSummary, CompositionInput, PayrollComposer
from app.services.payroll_defaults import get_pay_cycle
from app.services.tax_calculators.statutory_service import StatutoryProfile
from app.utils.error_handling import (
    AppException,
    BusinessRuleException,
    ConflictException,
    DuplicatePeriodError,
    ErrorCode,
    InvalidDateRangeException,
    NotFoundException,
    ValidationException,
)
from app.utils.money import total

logger = logging.getLogger(__name__)


class OrganisationInputs:
    """Inputs shared by every employee of a run."""

    def __init__(
        self,
        components: List[PayComponent],
        profile: StatutoryProfile,
        packages: List[RemunerationPackage],
    ):
        self.components = components
        self.profile = profile
        self.packages = packages

    def package_for(self, employee: Employee) -> Optional[RemunerationPackage]:
        """The employee's assigned package, else the first active package for their role."""
        if employee.remuneration_package_id is not None:
            for package in self.packages:
                if package.id == employee.remuneration_package_id:
                    return package
        for package in self.packages:
            if package.is_active and employee.role in package.applicable_roles:
                return package
        return None


class PayrollRunService:
    """Service for bulk and single-employee payroll processing."""

    def __init__(
        self,
        store: EntityStore,
        settings: Optional[Settings] = None,
        composer: Optional[PayrollComposer] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.composer = composer or PayrollComposer(self.settings)
        self.audit = AuditService(store)

    # ===========================================
    # INPUT LOADING
    # ===========================================

    @staticmethod
    def _validate_request(request: BulkRunRequest) -> None:
        if request.period_end < request.period_start:
            raise InvalidDateRangeException(
                str(request.period_start),
                str(request.period_end),
                "Payroll period end must not be before its start",
            )
        if not request.employee_ids:
            raise ValidationException("At least one employee is required", field="employee_ids")

    async def load_organisation_inputs(self, organisation_id: UUID) -> OrganisationInputs:
        components = await self.store.filter(PayComponent, organisation_id=organisation_id, is_active=True)
        rates = await self.store.filter(StatutoryRate, organisation_id=organisation_id)
        packages = await self.store.filter(RemunerationPackage, organisation_id=organisation_id)
        return OrganisationInputs(
            components=components,
            profile=StatutoryProfile.from_rates(rates, organisation_id),
            packages=packages,
        )

    async def _load_employee(self, organisation_id: UUID, employee_id: UUID) -> Employee:
        employee = await self.store.get(Employee, employee_id)
        if employee is None or employee.organisation_id != organisation_id:
            raise NotFoundException("Employee", employee_id, code=ErrorCode.EMPLOYEE_NOT_FOUND)
        if employee.status != EmployeeStatus.ACTIVE:
            raise BusinessRuleException(
                f"Employee {employee.full_name} is not active",
                details={"employee_id": str(employee_id)},
            )
        return employee

    async def _load_attendance(
        self,
        employee: Employee,
        period_start: date,
        period_end: date,
        expected_days: int,
    ) -> AttendanceSummary:
        records = await self.store.filter(AttendanceRecord, employee_id=employee.id)
        in_period = [r for r in records if period_start <= r.attendance_date <= period_end]
        return AttendanceSummary.from_records(in_period, expected_days, self.settings.hours_per_day)

    async def _load_sales_total(self, employee: Employee, period_start: date, period_end: date) -> Decimal:
        sales = await self.store.filter(Sale, employee_id=employee.id, status="completed")
        return total(s.total_amount for s in sales if period_start <= s.sale_date <= period_end)

    async def _existing_payroll(self, employee_id: UUID, period_start: date, period_end: date) -> Optional[Payroll]:
        existing = await self.store.filter(
            Payroll,
            employee_id=employee_id,
            period_start=period_start,
            period_end=period_end,
        )
        for payroll in existing:
            if payroll.status != PayrollStatus.CANCELLED:
                return payroll
        return None

    # ===========================================
    # PER-EMPLOYEE PROCESSING
    # ===========================================

    async def _compose_for(
        self,
        employee: Employee,
        request: BulkRunRequest,
        inputs: OrganisationInputs,
    ) -> Payroll:
        cycle = get_pay_cycle(request.frequency)
        attendance = None
        if request.include_attendance_data:
            attendance = await self._load_attendance(
                employee, request.period_start, request.period_end, cycle.working_days,
            )
        sales_total = await self._load_sales_total(employee, request.period_start, request.period_end)

        return self.composer.compose(CompositionInput(
            employee=employee,
            period_start=request.period_start,
            period_end=request.period_end,
            frequency=request.frequency,
            components=inputs.components,
            profile=inputs.profile,
            package=inputs.package_for(employee) if request.use_package_settings else None,
            use_package_settings=request.use_package_settings,
            attendance=attendance,
            sales_total=sales_total,
            apply_income_tax=request.apply_income_tax,
            apply_social_contribution=request.apply_social_contribution,
            custom_allowances=request.custom_allowances,
            custom_bonuses=request.custom_bonuses,
            custom_deductions=request.custom_deductions,
        ))

    async def _create_payroll(
        self,
        employee_id: UUID,
        request: BulkRunRequest,
        inputs: OrganisationInputs,
        actor: Actor,
        status: PayrollStatus,
    ) -> Tuple[Employee, Payroll]:
        """Compose and persist one payroll, enforcing one live payroll per employee and period."""
        employee = await self._load_employee(request.organisation_id, employee_id)
        composed = await self._compose_for(employee, request, inputs)

        try:
            async with self.store.atomic():
                existing = await self._existing_payroll(employee_id, request.period_start, request.period_end)
                if existing is not None:
                    raise DuplicatePeriodError(employee_id, str(request.period_start), str(request.period_end))

                payroll = await self.store.create(
                    composed.model_copy(update={"status": status, "created_by_id": actor.id})
                )
                await self.audit.log_action(
                    organisation_id=request.organisation_id,
                    action=AuditAction.CREATED,
                    actor=actor,
                    payroll_id=payroll.id,
                    employee_id=employee_id,
                    new_values={
                        "status": status,
                        "gross_pay": payroll.gross_pay,
                        "net_pay": payroll.net_pay,
                    },
                )
        except DuplicatePeriodError:
            raise
        except ConflictException as e:
            # Another writer inserted the live payroll after our check
            raise DuplicatePeriodError(
                employee_id, str(request.period_start), str(request.period_end),
            ) from e
        return employee, payroll

    async def _process_one(
        self,
        semaphore: asyncio.Semaphore,
        employee_id: UUID,
        request: BulkRunRequest,
        inputs: OrganisationInputs,
        actor: Actor,
    ) -> Tuple[EmployeeOutcome, Optional[Employee], Optional[Payroll]]:
        async with semaphore:
            try:
                employee, payroll = await self._create_payroll(
                    employee_id, request, inputs, actor, PayrollStatus.DRAFT,
                )
            except Exception as e:
                logger.exception(f"Payroll failed for employee {employee_id}: {e}")
                code = e.code.value if isinstance(e, AppException) else ErrorCode.INTERNAL_ERROR.value
                message = e.message if isinstance(e, AppException) else str(e)
                return EmployeeOutcome(
                    employee_id=employee_id,
                    status="error",
                    error=message,
                    error_code=code,
                ), None, None

        return EmployeeOutcome(
            employee_id=employee_id,
            employee_name=employee.full_name,
            status="success",
            payroll_id=payroll.id,
            net_pay=payroll.net_pay,
        ), employee, payroll

    # ===========================================
    # PAYROLL RUNS
    # ===========================================

    async def _next_run_number(self, organisation_id: UUID, period_start: date) -> str:
        year = period_start.year
        month = period_start.month
        runs = await self.store.filter(PayrollRun, organisation_id=organisation_id)
        sequence = sum(
            1 for run in runs
            if run.period_start.year == year and run.period_start.month == month
        ) + 1
        return f"PAY-{year}-{month:02d}-{sequence:03d}"

    async def _create_run(
        self,
        organisation_id: UUID,
        period_start: date,
        period_end: date,
        frequency: PayrollFrequency,
        payrolls: Sequence[Payroll],
        actor: Actor,
        auto_approve: bool = False,
        notes: Optional[str] = None,
    ) -> PayrollRun:
        """Create a run over already persisted payrolls and attach them to it."""
        status = PayrollStatus.APPROVED if auto_approve else PayrollStatus.DRAFT
        now = datetime.now(timezone.utc)
        payroll_ids = [p.id for p in payrolls]

        async with self.store.atomic():
            run_number = await self._next_run_number(organisation_id, period_start)
            run = PayrollRun(
                organisation_id=organisation_id,
                run_number=run_number,
                period_start=period_start,
                period_end=period_end,
                frequency=frequency,
                employee_count=len(payrolls),
                payroll_ids=payroll_ids,
                total_gross=total(p.gross_pay for p in payrolls),
                total_net=total(p.net_pay for p in payrolls),
                total_deductions=total(p.total_deductions for p in payrolls),
                total_employer_cost=total(p.employer_cost for p in payrolls),
                status=status,
                created_by_id=actor.id,
                created_by_name=actor.name,
                notes=notes,
            )
            if auto_approve:
                run = run.model_copy(update={
                    "approved_by_id": actor.id,
                    "approved_by_name": actor.name,
                    "approved_at": now,
                })
            run = await self.store.create(run)

            patch = {"run_id": run.id, "status": status}
            if auto_approve:
                patch.update({"approved_by_id": actor.id, "approved_at": now})
            await self.store.update_many(Payroll, payroll_ids, patch)

            await self.audit.log_action(
                organisation_id=organisation_id,
                action=AuditAction.APPROVED if auto_approve else AuditAction.CREATED,
                actor=actor,
                run_id=run.id,
                new_values={
                    "run_number": run_number,
                    "status": status,
                    "employee_count": len(payrolls),
                    "total_net": run.total_net,
                },
            )

        logger.info(
            f"Payroll run {run.run_number} created with {run.employee_count} payrolls "
            f"(status {status.value}, net {run.total_net})"
        )
        return run

    async def _notify(
        self,
        notifier: PayslipNotifier,
        processed: Sequence[Tuple[Employee, Payroll]],
        run: PayrollRun,
    ) -> None:
        for employee, payroll in processed:
            approved = payroll.model_copy(update={"run_id": run.id, "status": run.status})
            try:
                await notifier.send_payslip_notification(approved, employee, employee.email)
            except Exception as e:
                logger.warning(f"Payslip notification failed for employee {employee.id}: {e}")

    async def run_bulk(
        self,
        request: BulkRunRequest,
        actor: Actor,
        notifier: Optional[PayslipNotifier] = None,
    ) -> BulkRunSummary:
        """
        Process payroll for every requested employee.

        Args:
            request: Organisation, employees, period and processing flags
            actor: User running payroll
            notifier: Payslip notifier used when the run is auto-approved

        Returns:
            Summary with the run (None when every employee failed) and one
            outcome per employee, in request order
        """
        self._validate_request(request)
        employee_ids = list(dict.fromkeys(request.employee_ids))
        inputs = await self.load_organisation_inputs(request.organisation_id)

        logger.info(
            f"Bulk payroll for {len(employee_ids)} employees, "
            f"{request.period_start} - {request.period_end} ({request.frequency.value})"
        )

        semaphore = asyncio.Semaphore(max(1, self.settings.bulk_max_concurrency))
        attempts = await asyncio.gather(*(
            self._process_one(semaphore, employee_id, request, inputs, actor)
            for employee_id in employee_ids
        ))

        results = [outcome for outcome, _, _ in attempts]
        processed = [(employee, payroll) for _, employee, payroll in attempts if payroll is not None]
        summary = BulkRunSummary(
            success_count=len(processed),
            error_count=len(results) - len(processed),
            results=results,
        )

        if not processed:
            logger.warning("Bulk payroll produced no payrolls; no run created")
            return summary

        run = await self._create_run(
            request.organisation_id,
            request.period_start,
            request.period_end,
            request.frequency,
            [payroll for _, payroll in processed],
            actor,
            auto_approve=request.auto_approve,
            notes=request.notes,
        )
        summary.run = run

        if request.auto_approve and notifier is not None:
            await self._notify(notifier, processed, run)

        logger.info(
            f"Bulk payroll {run.run_number}: {summary.success_count} succeeded, "
            f"{summary.error_count} failed"
        )
        return summary

    # ===========================================
    # SINGLE EMPLOYEE & PREVIEW
    # ===========================================

    async def process_employee(
        self,
        organisation_id: UUID,
        employee_id: UUID,
        period_start: date,
        period_end: date,
        actor: Actor,
        frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
        use_package_settings: bool = True,
        include_attendance_data: bool = True,
        apply_income_tax: bool = True,
        apply_social_contribution: bool = True,
        custom_allowances: Optional[List[PayLine]] = None,
        custom_bonuses: Optional[List[PayLine]] = None,
        custom_deductions: Optional[List[PayLine]] = None,
    ) -> Payroll:
        """Compose and persist a standalone payroll awaiting approval. Errors propagate."""
        request = BulkRunRequest(
            organisation_id=organisation_id,
            employee_ids=[employee_id],
            period_start=period_start,
            period_end=period_end,
            frequency=frequency,
            use_package_settings=use_package_settings,
            include_attendance_data=include_attendance_data,
            apply_income_tax=apply_income_tax,
            apply_social_contribution=apply_social_contribution,
            custom_allowances=custom_allowances or [],
            custom_bonuses=custom_bonuses or [],
            custom_deductions=custom_deductions or [],
        )
        self._validate_request(request)
        inputs = await self.load_organisation_inputs(organisation_id)
        _, payroll = await self._create_payroll(
            employee_id, request, inputs, actor, PayrollStatus.PENDING_APPROVAL,
        )
        logger.info(f"Payroll {payroll.id} created for employee {employee_id}, net {payroll.net_pay}")
        return payroll

    async def preview(self, request: BulkRunRequest) -> BulkRunSummary:
        """Compose payrolls for the request without persisting anything."""
        self._validate_request(request)
        inputs = await self.load_organisation_inputs(request.organisation_id)

        summary = BulkRunSummary()
        for employee_id in dict.fromkeys(request.employee_ids):
            try:
                employee = await self._load_employee(request.organisation_id, employee_id)
                payroll = await self._compose_for(employee, request, inputs)
            except Exception as e:
                logger.exception(f"Preview failed for employee {employee_id}: {e}")
                summary.results.append(EmployeeOutcome(
                    employee_id=employee_id,
                    status="error",
                    error=e.message if isinstance(e, AppException) else str(e),
                    error_code=e.code.value if isinstance(e, AppException) else ErrorCode.INTERNAL_ERROR.value,
                ))
                continue
            summary.payrolls.append(payroll)
            summary.results.append(EmployeeOutcome(
                employee_id=employee_id,
                employee_name=employee.full_name,
                status="success",
                net_pay=payroll.net_pay,
            ))

        payrolls = summary.payrolls
        summary.success_count = len(payrolls)
        summary.error_count = len(summary.results) - len(payrolls)
        summary.run = PayrollRun(
            organisation_id=request.organisation_id,
            run_number="PREVIEW",
            period_start=request.period_start,
            period_end=request.period_end,
            frequency=request.frequency,
            employee_count=len(payrolls),
            total_gross=total(p.gross_pay for p in payrolls),
            total_net=total(p.net_pay for p in payrolls),
            total_deductions=total(p.total_deductions for p in payrolls),
            total_employer_cost=total(p.employer_cost for p in payrolls),
        )
        return summary

    # ===========================================
    # ORPHAN RECOVERY
    # ===========================================

    async def find_orphaned_payrolls(
        self,
        organisation_id: UUID,
        period_start: date,
        period_end: date,
    ) -> List[Payroll]:
        """
        Bulk payrolls persisted without a run.

        Bulk payrolls stay in draft until their run is created, so a draft
        payroll with no run means its bulk run did not finish.
        """
        return await self.store.filter(
            Payroll,
            organisation_id=organisation_id,
            period_start=period_start,
            period_end=period_end,
            run_id=None,
            status=PayrollStatus.DRAFT,
        )

    async def recover_orphaned_payrolls(
        self,
        organisation_id: UUID,
        period_start: date,
        period_end: date,
        actor: Actor,
        frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
    ) -> Optional[PayrollRun]:
        """Attach orphaned payrolls to a new draft run. Returns None when there are none."""
        orphans = await self.find_orphaned_payrolls(organisation_id, period_start, period_end)
        if not orphans:
            return None
        logger.info(f"Recovering {len(orphans)} orphaned payrolls for {period_start} - {period_end}")
        return await self._create_run(
            organisation_id, period_start, period_end, frequency, orphans, actor,
            notes="Recovered from an incomplete bulk run",
        )
