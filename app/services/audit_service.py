"""
Payroll Core - Audit Service

Append-only audit trail for payrolls and payroll runs.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic_core import to_jsonable_python

from app.models.payroll import AuditAction
from app.schemas.payroll import Actor, PayrollAudit
from app.services.entity_store import EntityStore

logger = logging.getLogger(__name__)


class AuditService:
    """Writes and reads PayrollAudit rows through the entity store."""

    def __init__(self, store: EntityStore):
        self.store = store

    async def log_action(
        self,
        organisation_id: UUID,
        action: AuditAction,
        actor: Optional[Actor] = None,
        payroll_id: Optional[UUID] = None,
        run_id: Optional[UUID] = None,
        employee_id: Optional[UUID] = None,
        previous_status: Optional[str] = None,
        new_values: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> PayrollAudit:
        """
        Log an audit action.

        Args:
            organisation_id: Organisation the record belongs to
            action: Type of action performed
            actor: User who performed the action
            payroll_id: Affected payroll, if any
            run_id: Affected payroll run, if any
            employee_id: Employee the payroll belongs to
            previous_status: Status before the action
            new_values: Changed fields (made JSON safe)
            reason: Free-text reason, required for rejections

        Returns:
            Created PayrollAudit record
        """
        audit = PayrollAudit(
            organisation_id=organisation_id,
            action=action,
            payroll_id=payroll_id,
            run_id=run_id,
            employee_id=employee_id,
            changed_by_id=actor.id if actor else None,
            changed_by_name=actor.name if actor else None,
            previous_status=previous_status,
            new_values=to_jsonable_python(new_values or {}),
            reason=reason,
        )
        return await self.store.create(audit)

    async def get_history(
        self,
        payroll_id: Optional[UUID] = None,
        run_id: Optional[UUID] = None,
    ) -> List[PayrollAudit]:
        """Audit rows for a payroll or a run, oldest first."""
        criteria: Dict[str, Any] = {}
        if payroll_id is not None:
            criteria["payroll_id"] = payroll_id
        if run_id is not None:
            criteria["run_id"] = run_id
        rows = await self.store.filter(PayrollAudit, **criteria)
        return sorted(rows, key=lambda row: row.created_at)
