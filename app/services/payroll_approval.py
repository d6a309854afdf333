"""
Payroll Core - Payroll Approval Workflow

State machine governing payroll runs and standalone payrolls:

    draft -> pending_review -> pending_approval -> approved -> paid
    reject: pending_review | pending_approval -> cancelled (reason required)
    cancel: draft | approved -> cancelled

Each transition checks the reason, the actor's capability and the current
status before writing anything. The write is a compare-and-set on the status,
so a concurrent transition on the same run fails instead of overwriting.
Run transitions cascade the status to every payroll in the run and append one
audit row.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple
from uuid import UUID
import logging
import weakref

from app.config import Settings, get_settings
from app.models.payroll import AuditAction, PayrollStatus
from app.schemas.payroll import Actor, Payroll, PayrollRun
from app.services.audit_service import AuditService
from app.services.entity_store import EntityStore
from app.utils.error_handling import (
    CannotDeleteException,
    ErrorCode,
    InsufficientPermissionsException,
    NotFoundException,
    StaleRecordError,
    WorkflowViolation,
)
from app.utils.permissions import PayrollPermission, has_any_permission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """One edge of the approval state machine."""
    action: str
    sources: FrozenSet[PayrollStatus]
    target: PayrollStatus
    permissions: Tuple[PayrollPermission, ...]
    audit_action: AuditAction
    # Prefix of the run's <stamp>_by_id / <stamp>_by_name / <stamp>_at fields
    stamp: str
    requires_reason: bool = False
    creator_allowed: bool = False


TRANSITIONS: Dict[str, Transition] = {
    "submit": Transition(
        action="submit",
        sources=frozenset({PayrollStatus.DRAFT}),
        target=PayrollStatus.PENDING_REVIEW,
        permissions=(PayrollPermission.SUBMIT,),
        audit_action=AuditAction.SUBMITTED,
        stamp="submitted",
        creator_allowed=True,
    ),
    "review": Transition(
        action="review",
        sources=frozenset({PayrollStatus.PENDING_REVIEW}),
        target=PayrollStatus.PENDING_APPROVAL,
        permissions=(PayrollPermission.REVIEW,),
        audit_action=AuditAction.REVIEWED,
        stamp="reviewed",
    ),
    "approve": Transition(
        action="approve",
        sources=frozenset({PayrollStatus.PENDING_APPROVAL}),
        target=PayrollStatus.APPROVED,
        permissions=(PayrollPermission.APPROVE,),
        audit_action=AuditAction.APPROVED,
        stamp="approved",
    ),
    "reject": Transition(
        action="reject",
        sources=frozenset({PayrollStatus.PENDING_REVIEW, PayrollStatus.PENDING_APPROVAL}),
        target=PayrollStatus.CANCELLED,
        permissions=(PayrollPermission.APPROVE, PayrollPermission.REVIEW),
        audit_action=AuditAction.REJECTED,
        stamp="rejected",
        requires_reason=True,
    ),
    "pay": Transition(
        action="pay",
        sources=frozenset({PayrollStatus.APPROVED}),
        target=PayrollStatus.PAID,
        permissions=(PayrollPermission.PROCESS,),
        audit_action=AuditAction.PAID,
        stamp="paid",
    ),
    "cancel": Transition(
        action="cancel",
        sources=frozenset({PayrollStatus.DRAFT, PayrollStatus.APPROVED}),
        target=PayrollStatus.CANCELLED,
        permissions=(PayrollPermission.CANCEL,),
        audit_action=AuditAction.CANCELLED,
        stamp="cancelled",
    ),
}

# Status given to a run's payrolls when the run reaches a status
PAYROLL_STATUS_FOR_RUN = {
    PayrollStatus.PENDING_REVIEW: PayrollStatus.PENDING_APPROVAL,
}

# Run field holding free-text notes for an action
NOTES_FIELDS = {
    "review": "review_notes",
    "approve": "approval_notes",
}


class PayrollApprovalService:
    """Applies approval workflow transitions to payroll runs and standalone payrolls."""

    def __init__(self, store: EntityStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = AuditService(store)
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def _lock_for(self, record_id: UUID) -> asyncio.Lock:
        # Entries vanish once no transition holds or awaits the lock
        lock = self._locks.get(record_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[record_id] = lock
        return lock

    # ===========================================
    # CHECKS
    # ===========================================

    @staticmethod
    def _get_transition(action: str) -> Transition:
        transition = TRANSITIONS.get(action)
        if transition is None:
            raise WorkflowViolation(f"Unknown payroll action '{action}'", action=action)
        return transition

    @staticmethod
    def _check_reason(transition: Transition, reason: Optional[str]) -> None:
        if transition.requires_reason and not (reason and reason.strip()):
            raise WorkflowViolation(
                f"A reason is required to {transition.action} payroll",
                action=transition.action,
                code=ErrorCode.REASON_REQUIRED,
            )

    def _authorize(self, transition: Transition, actor: Actor, created_by_id: Optional[UUID]) -> None:
        if transition.creator_allowed and created_by_id is not None and actor.id == created_by_id:
            return
        if not has_any_permission(actor.role, transition.permissions, self.settings):
            raise InsufficientPermissionsException(
                " or ".join(p.value for p in transition.permissions),
                actor.role,
            )

    @staticmethod
    def _check_state(transition: Transition, status: PayrollStatus, label: str) -> None:
        if status not in transition.sources:
            raise WorkflowViolation(
                f"Cannot {transition.action} {label} in {status.value} status",
                current_status=status.value,
                action=transition.action,
            )

    # ===========================================
    # PATCHES
    # ===========================================

    @staticmethod
    def _run_patch(
        transition: Transition,
        actor: Actor,
        now: datetime,
        reason: Optional[str],
        notes: Optional[str],
        payment_date: Optional[date],
    ) -> Dict[str, Any]:
        patch: Dict[str, Any] = {
            "status": transition.target,
            f"{transition.stamp}_by_id": actor.id,
            f"{transition.stamp}_by_name": actor.name,
            f"{transition.stamp}_at": now,
        }
        if transition.requires_reason:
            patch["rejection_reason"] = reason.strip()
        notes_field = NOTES_FIELDS.get(transition.action)
        if notes_field and notes:
            patch[notes_field] = notes
        if transition.target == PayrollStatus.PAID:
            patch["payment_date"] = payment_date or now.date()
        return patch

    @staticmethod
    def _payroll_patch(
        transition: Transition,
        status: PayrollStatus,
        actor: Actor,
        now: datetime,
        reason: Optional[str],
        payment_date: Optional[date],
    ) -> Dict[str, Any]:
        patch: Dict[str, Any] = {"status": status}
        if transition.action == "approve":
            patch.update({"approved_by_id": actor.id, "approved_at": now})
        elif transition.action == "reject":
            patch.update({
                "rejected_by_id": actor.id,
                "rejected_at": now,
                "rejection_reason": reason.strip(),
            })
        elif transition.target == PayrollStatus.PAID:
            patch["payment_date"] = payment_date or now.date()
        return patch

    # ===========================================
    # RUN TRANSITIONS
    # ===========================================

    async def _get_run(self, run_id: UUID) -> PayrollRun:
        run = await self.store.get(PayrollRun, run_id)
        if run is None:
            raise NotFoundException("PayrollRun", run_id, code=ErrorCode.PAYROLL_RUN_NOT_FOUND)
        return run

    async def transition(
        self,
        run_id: UUID,
        action: str,
        actor: Actor,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        payment_date: Optional[date] = None,
    ) -> PayrollRun:
        """
        Apply a workflow action to a payroll run.

        Args:
            run_id: Payroll run to transition
            action: submit, review, approve, reject, pay or cancel
            actor: User performing the action
            reason: Rejection reason (required for reject)
            notes: Review or approval notes
            payment_date: Date paid, defaults to today (pay only)

        Returns:
            The updated run

        Raises:
            WorkflowViolation: invalid action for the current status, missing
                reason, or the run changed concurrently
            InsufficientPermissionsException: actor lacks the capability
            NotFoundException: run does not exist
        """
        transition = self._get_transition(action)
        self._check_reason(transition, reason)

        async with self._lock_for(run_id):
            run = await self._get_run(run_id)
            self._authorize(transition, actor, run.created_by_id)
            self._check_state(transition, run.status, "payroll run")

            now = datetime.now(timezone.utc)
            run_patch = self._run_patch(transition, actor, now, reason, notes, payment_date)
            payroll_status = PAYROLL_STATUS_FOR_RUN.get(transition.target, transition.target)
            payroll_patch = self._payroll_patch(transition, payroll_status, actor, now, reason, payment_date)

            try:
                async with self.store.atomic():
                    updated = await self.store.update(
                        PayrollRun, run_id, run_patch, expected={"status": run.status},
                    )
                    await self.store.update_many(Payroll, run.payroll_ids, payroll_patch)
                    await self.audit.log_action(
                        organisation_id=run.organisation_id,
                        action=transition.audit_action,
                        actor=actor,
                        run_id=run_id,
                        previous_status=run.status.value,
                        new_values={"status": transition.target, "notes": notes},
                        reason=reason,
                    )
            except StaleRecordError as e:
                raise WorkflowViolation(
                    f"Payroll run {run.run_number} changed while applying {action}",
                    current_status=run.status.value,
                    action=action,
                ) from e

        logger.info(
            f"Payroll run {run.run_number} {action}: {run.status.value} -> "
            f"{transition.target.value} by {actor.name}"
        )
        return updated

    async def submit(self, run_id: UUID, actor: Actor) -> PayrollRun:
        return await self.transition(run_id, "submit", actor)

    async def review(self, run_id: UUID, actor: Actor, notes: Optional[str] = None) -> PayrollRun:
        return await self.transition(run_id, "review", actor, notes=notes)

    async def approve(self, run_id: UUID, actor: Actor, notes: Optional[str] = None) -> PayrollRun:
        return await self.transition(run_id, "approve", actor, notes=notes)

    async def reject(self, run_id: UUID, actor: Actor, reason: Optional[str]) -> PayrollRun:
        return await self.transition(run_id, "reject", actor, reason=reason)

    async def mark_paid(self, run_id: UUID, actor: Actor, payment_date: Optional[date] = None) -> PayrollRun:
        return await self.transition(run_id, "pay", actor, payment_date=payment_date)

    async def cancel(self, run_id: UUID, actor: Actor) -> PayrollRun:
        return await self.transition(run_id, "cancel", actor)

    # ===========================================
    # STANDALONE PAYROLLS
    # ===========================================

    async def transition_payroll(
        self,
        payroll_id: UUID,
        action: str,
        actor: Actor,
        reason: Optional[str] = None,
        payment_date: Optional[date] = None,
    ) -> Payroll:
        """Apply a workflow action to a payroll that is not part of a run."""
        transition = self._get_transition(action)
        self._check_reason(transition, reason)

        async with self._lock_for(payroll_id):
            payroll = await self.store.get(Payroll, payroll_id)
            if payroll is None:
                raise NotFoundException("Payroll", payroll_id, code=ErrorCode.PAYROLL_NOT_FOUND)
            if payroll.run_id is not None:
                raise WorkflowViolation(
                    f"Payroll {payroll_id} belongs to run {payroll.run_id}; transition the run instead",
                    current_status=payroll.status.value,
                    action=action,
                )
            self._authorize(transition, actor, payroll.created_by_id)
            self._check_state(transition, payroll.status, "payroll")

            now = datetime.now(timezone.utc)
            patch = self._payroll_patch(transition, transition.target, actor, now, reason, payment_date)
            try:
                async with self.store.atomic():
                    updated = await self.store.update(
                        Payroll, payroll_id, patch, expected={"status": payroll.status},
                    )
                    await self.audit.log_action(
                        organisation_id=payroll.organisation_id,
                        action=transition.audit_action,
                        actor=actor,
                        payroll_id=payroll_id,
                        employee_id=payroll.employee_id,
                        previous_status=payroll.status.value,
                        new_values={"status": transition.target},
                        reason=reason,
                    )
            except StaleRecordError as e:
                raise WorkflowViolation(
                    f"Payroll {payroll_id} changed while applying {action}",
                    current_status=payroll.status.value,
                    action=action,
                ) from e

        logger.info(
            f"Payroll {payroll_id} {action}: {payroll.status.value} -> "
            f"{transition.target.value} by {actor.name}"
        )
        return updated

    # ===========================================
    # DELETION
    # ===========================================

    def _authorize_delete(self, actor: Actor, created_by_id: Optional[UUID]) -> None:
        if created_by_id is not None and actor.id == created_by_id:
            return
        if not has_any_permission(actor.role, (PayrollPermission.CANCEL,), self.settings):
            raise InsufficientPermissionsException(PayrollPermission.CANCEL.value, actor.role)

    async def delete_draft_run(self, run_id: UUID, actor: Actor) -> None:
        """Delete a draft run and its payrolls. Audit history is kept."""
        async with self._lock_for(run_id):
            run = await self._get_run(run_id)
            self._authorize_delete(actor, run.created_by_id)
            if run.status != PayrollStatus.DRAFT:
                raise CannotDeleteException("PayrollRun", run.status.value)

            async with self.store.atomic():
                for payroll_id in run.payroll_ids:
                    await self.store.delete(Payroll, payroll_id)
                await self.store.delete(PayrollRun, run_id)
                await self.audit.log_action(
                    organisation_id=run.organisation_id,
                    action=AuditAction.DELETED,
                    actor=actor,
                    run_id=run_id,
                    previous_status=run.status.value,
                    new_values={"run_number": run.run_number, "payroll_ids": run.payroll_ids},
                )

        logger.info(f"Draft payroll run {run.run_number} deleted by {actor.name}")

    async def delete_draft_payroll(self, payroll_id: UUID, actor: Actor) -> None:
        """Delete a draft payroll that is not attached to a run."""
        async with self._lock_for(payroll_id):
            payroll = await self.store.get(Payroll, payroll_id)
            if payroll is None:
                raise NotFoundException("Payroll", payroll_id, code=ErrorCode.PAYROLL_NOT_FOUND)
            self._authorize_delete(actor, payroll.created_by_id)
            if payroll.status != PayrollStatus.DRAFT:
                raise CannotDeleteException("Payroll", payroll.status.value)
            if payroll.run_id is not None:
                raise WorkflowViolation(
                    f"Payroll {payroll_id} belongs to run {payroll.run_id}; delete the run instead",
                    current_status=payroll.status.value,
                    action="delete",
                )

            async with self.store.atomic():
                await self.store.delete(Payroll, payroll_id)
                await self.audit.log_action(
                    organisation_id=payroll.organisation_id,
                    action=AuditAction.DELETED,
                    actor=actor,
                    payroll_id=payroll_id,
                    employee_id=payroll.employee_id,
                    previous_status=payroll.status.value,
                )

        logger.info(f"Draft payroll {payroll_id} deleted by {actor.name}")
