"""
Payroll Core - Permissions System

Payroll workflow capabilities per organisation role.

Permission Matrix (defaults, overridable via WORKFLOW_ROLE_CAPABILITIES):
=========================================================================

| Permission | Super Admin | Org Admin | Payroll Admin | HR Admin | Accountant |
|------------|-------------|-----------|---------------|----------|------------|
| submit     | X           | X         | X             | X        |            |
| review     | X           | X         |               |          | X          |
| approve    | X           | X         |               |          |            |
| process    | X           | X         | X             |          |            |
| cancel     | X           | X         |               |          |            |

The creator of a payroll run may always submit it.
"""

from enum import Enum
from typing import Iterable, Optional, Set

from app.config import Settings, get_settings


# ===========================================
# PERMISSION ENUMS
# ===========================================

class PayrollPermission(str, Enum):
    """Capabilities for the payroll approval workflow."""

    SUBMIT = "submit"
    REVIEW = "review"
    APPROVE = "approve"
    # Mark approved payroll as paid
    PROCESS = "process"
    CANCEL = "cancel"


# ===========================================
# PERMISSION HELPER FUNCTIONS
# ===========================================

def get_role_permissions(role: str, settings: Optional[Settings] = None) -> Set[PayrollPermission]:
    """Get all payroll permissions for a role. Unknown capability names are ignored."""
    settings = settings or get_settings()
    permissions = set()
    for name in settings.workflow_role_capabilities.get(role, []):
        try:
            permissions.add(PayrollPermission(name))
        except ValueError:
            continue
    return permissions


def has_permission(role: str, permission: PayrollPermission, settings: Optional[Settings] = None) -> bool:
    """Check if a role has a specific payroll permission."""
    return permission in get_role_permissions(role, settings)


def has_any_permission(
    role: str,
    permissions: Iterable[PayrollPermission],
    settings: Optional[Settings] = None,
) -> bool:
    """Check if a role holds at least one of the given permissions."""
    granted = get_role_permissions(role, settings)
    return any(permission in granted for permission in permissions)
