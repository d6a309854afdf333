"""
Payroll Core - Error Handling Module

This module provides the exception hierarchy used by the payroll services:
- Configuration errors (bad tax tiers, conflicting caps, missing salaries)
- Workflow violations for the approval state machine
- Duplicate period and concurrency conflicts
- Standardized error dictionaries for callers that serialise failures
"""

from datetime import datetime, timezone
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Optional, Union
from uuid import UUID


class ErrorCode(str, Enum):
    """Standardized error codes for the payroll core"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    # Authorization Errors (403)
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    PAYROLL_NOT_FOUND = "PAYROLL_NOT_FOUND"
    PAYROLL_RUN_NOT_FOUND = "PAYROLL_RUN_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_PERIOD = "DUPLICATE_PERIOD"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    WORKFLOW_VIOLATION = "WORKFLOW_VIOLATION"
    REASON_REQUIRED = "REASON_REQUIRED"
    CANNOT_DELETE = "CANNOT_DELETE"
    CANNOT_MODIFY = "CANNOT_MODIFY"

    # External Service Errors (502)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    NOTIFICATION_ERROR = "NOTIFICATION_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AppException(Exception):
    """Base exception for all payroll exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a plain dictionary"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidDateRangeException(ValidationException):
    """Invalid pay period"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must not be after end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class ConfigurationError(AppException):
    """
    Raised when pay rules or statutory rates cannot produce a valid figure.

    Covers invalid tax tiers, components with conflicting caps or negative
    amounts, disabled or malformed formulas, and employees without a
    resolvable base salary. Fails only the computation it affects.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=ErrorCode.CONFIGURATION_ERROR,
            message=message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


# ============================================================================
# Authorization Exceptions
# ============================================================================

class InsufficientPermissionsException(AppException):
    """Actor's role does not carry the capability a transition needs"""

    def __init__(self, required_permission: str, user_role: Optional[str] = None):
        details = {"required_permission": required_permission}
        if user_role:
            details["user_role"] = user_role
        super().__init__(
            code=ErrorCode.INSUFFICIENT_PERMISSIONS,
            message=f"Insufficient permissions. Required: {required_permission}",
            status_code=HTTPStatus.FORBIDDEN,
            details=details,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        msg = message or f"{resource_type} not found"
        if resource_id and not message:
            msg = f"{resource_type} with ID {resource_id} not found"

        super().__init__(
            code=code,
            message=msg,
            status_code=HTTPStatus.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=HTTPStatus.CONFLICT,
            details=details,
        )


class DuplicatePeriodError(ConflictException):
    """A non-cancelled payroll already exists for the employee and period"""

    def __init__(self, employee_id: Union[str, UUID], period_start: str, period_end: str):
        super().__init__(
            message=(
                f"Payroll already exists for employee {employee_id} "
                f"for period {period_start} to {period_end}"
            ),
            code=ErrorCode.DUPLICATE_PERIOD,
            details={
                "employee_id": str(employee_id),
                "period_start": period_start,
                "period_end": period_end,
            },
        )


class StaleRecordError(ConflictException):
    """Compare-and-set update found the record in a different state"""

    def __init__(self, resource_type: str, resource_id: Union[str, UUID], expected: Dict[str, Any]):
        super().__init__(
            message=f"{resource_type} {resource_id} was modified concurrently",
            code=ErrorCode.VERSION_CONFLICT,
            details={"resource_id": str(resource_id), "expected": {k: str(v) for k, v in expected.items()}},
        )


# ============================================================================
# Business Rule Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            details=details,
        )


class WorkflowViolation(BusinessRuleException):
    """Transition not valid from the current status, or missing its reason"""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        action: Optional[str] = None,
        code: ErrorCode = ErrorCode.WORKFLOW_VIOLATION,
    ):
        details = {}
        if current_status is not None:
            details["current_status"] = current_status
        if action is not None:
            details["action"] = action
        super().__init__(message=message, code=code, details=details)


class CannotDeleteException(BusinessRuleException):
    """Record is past draft and can no longer be deleted"""

    def __init__(self, resource_type: str, status: str):
        super().__init__(
            message=f"Only draft {resource_type} records can be deleted (status: {status})",
            code=ErrorCode.CANNOT_DELETE,
            details={"resource_type": resource_type, "status": status},
        )


class ImmutableRecordException(BusinessRuleException):
    """Append-only records cannot be updated or deleted"""

    def __init__(self, resource_type: str):
        super().__init__(
            message=f"{resource_type} records are append-only",
            code=ErrorCode.CANNOT_MODIFY,
            details={"resource_type": resource_type},
        )


# ============================================================================
# External Service Exceptions
# ============================================================================

class NotificationFailure(AppException):
    """Payslip notification could not be delivered"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.NOTIFICATION_ERROR,
            message=message,
            status_code=HTTPStatus.BAD_GATEWAY,
            original_error=original_error,
        )
