"""
Payroll Core - Notification Service

Payslip notifications sent when payroll is approved.

Delivery is pluggable: the bulk run orchestrator only depends on the
PayslipNotifier interface. Delivery failures are reported with
NotificationFailure and never roll back payroll data.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from app.schemas.payroll import Employee, Payroll
from app.utils.error_handling import NotificationFailure

logger = logging.getLogger(__name__)


class PayslipNotifier(ABC):
    """Sends a payslip notice to one employee."""

    @abstractmethod
    async def send_payslip_notification(
        self,
        payroll: Payroll,
        employee: Employee,
        recipient: str,
    ) -> None:
        """
        Notify an employee that their payslip is available.

        Args:
            payroll: The approved payroll
            employee: Employee the payroll belongs to
            recipient: Delivery address (email)

        Raises:
            NotificationFailure: delivery failed
        """


def build_payslip_message(payroll: Payroll, currency: str) -> Dict[str, Any]:
    """Subject and body for a payslip notice."""
    period = f"{payroll.period_start:%d %b %Y} - {payroll.period_end:%d %b %Y}"
    return {
        "subject": f"Payslip for {period}",
        "message": (
            f"Dear {payroll.employee_name}, your payslip for {period} is ready. "
            f"Gross pay: {currency} {payroll.gross_pay:,}. "
            f"Net pay: {currency} {payroll.net_pay:,}."
        ),
    }


class LoggingPayslipNotifier(PayslipNotifier):
    """Records payslip notices in memory and in the log. Used when no mail transport is wired."""

    def __init__(self, currency: str = "SLE"):
        self.currency = currency
        self.sent: List[Dict[str, Any]] = []

    async def send_payslip_notification(
        self,
        payroll: Payroll,
        employee: Employee,
        recipient: Optional[str],
    ) -> None:
        if not recipient:
            raise NotificationFailure(f"No email address for employee {employee.id}")

        notice = build_payslip_message(payroll, self.currency)
        notice.update({"recipient": recipient, "payroll_id": payroll.id, "employee_id": employee.id})
        self.sent.append(notice)
        logger.info(f"Payslip notification queued for {recipient} (payroll {payroll.id})")
