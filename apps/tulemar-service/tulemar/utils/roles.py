"""
Role-based permission utilities for shop staff and customers.

Roles mirror the ``app_role`` values stored in ``user_roles``. Staff roles are
the ones that can hold a stakeholder assignment on an order.
"""

from typing import Dict, Iterable, FrozenSet
from enum import Enum


ROLE_ADMIN = "admin"
ROLE_SYSADMIN = "sysadmin"
ROLE_STORE_MANAGER = "store_manager"
ROLE_SHOPPER = "shopper"
ROLE_DRIVER = "driver"
ROLE_CONCIERGE = "concierge"
ROLE_CLIENT = "client"

ROLE_PERMISSIONS = {
    ROLE_ADMIN: {
        "can_view_orders": True,
        "can_work_orders": True,
        "can_assign_staff": True,
    },
    ROLE_SYSADMIN: {
        "can_view_orders": True,
        "can_work_orders": True,
        "can_assign_staff": True,
    },
    ROLE_STORE_MANAGER: {
        "can_view_orders": True,
        "can_work_orders": False,
        "can_assign_staff": False,
    },
    ROLE_SHOPPER: {
        "can_view_orders": True,
        "can_work_orders": True,
        "can_assign_staff": False,
    },
    ROLE_DRIVER: {
        "can_view_orders": True,
        "can_work_orders": True,
        "can_assign_staff": False,
    },
    ROLE_CONCIERGE: {
        "can_view_orders": True,
        "can_work_orders": True,
        "can_assign_staff": False,
    },
    ROLE_CLIENT: {
        "can_view_orders": False,
        "can_work_orders": False,
        "can_assign_staff": False,
    },
}

ALLOWED_ROLES = set(ROLE_PERMISSIONS.keys())

# Derived role groups
ADMIN_ROLES: FrozenSet[str] = frozenset({ROLE_ADMIN, ROLE_SYSADMIN})
STAFF_ROLES: FrozenSet[str] = frozenset({ROLE_SHOPPER, ROLE_DRIVER, ROLE_CONCIERGE})
OPERATIONAL_ROLES: FrozenSet[str] = ADMIN_ROLES | STAFF_ROLES | frozenset({ROLE_STORE_MANAGER})

# Recipient aliases accepted by the notification orchestrator
_RECIPIENT_ALIASES = {
    "customer": ROLE_CLIENT,
    "stakeholder": ROLE_SHOPPER,
    "system": ROLE_ADMIN,
}


class StaffRoleEnum(str, Enum):
    """Roles that can be assigned to an order."""
    shopper = ROLE_SHOPPER
    driver = ROLE_DRIVER
    concierge = ROLE_CONCIERGE


def get_role_permissions(role: str) -> Dict[str, bool]:
    """
    Get the default permissions for a given role.

    Raises:
        ValueError: If role is not recognized
    """
    if role not in ROLE_PERMISSIONS:
        raise ValueError(f"Unknown role: {role}. Allowed roles: {list(ROLE_PERMISSIONS.keys())}")

    return ROLE_PERMISSIONS[role].copy()


def validate_role(role: str) -> None:
    """
    Validate that a role is allowed.

    Raises:
        ValueError: If role is not allowed
    """
    if role not in ALLOWED_ROLES:
        raise ValueError(f"Invalid role '{role}'. Allowed roles: {sorted(ALLOWED_ROLES)}")


def validate_assignment_role(role: str) -> None:
    """Validate that a role can hold a stakeholder assignment."""
    if role not in STAFF_ROLES:
        raise ValueError(f"Invalid assignment role '{role}'. Allowed roles: {sorted(STAFF_ROLES)}")


def is_admin_role(roles: Iterable[str]) -> bool:
    """Return True if any of ``roles`` is an admin role."""
    return any(r in ADMIN_ROLES for r in roles or ())


def has_any_role(roles: Iterable[str], allowed: Iterable[str]) -> bool:
    allowed_set = set(allowed)
    return any(r in allowed_set for r in roles or ())


def roles_allow(roles: Iterable[str], permission: str) -> bool:
    """Return True if any held role grants ``permission``."""
    for role in roles or ():
        if ROLE_PERMISSIONS.get(role, {}).get(permission):
            return True
    return False


def map_recipient_type(value: str) -> str:
    """Normalize a caller-supplied recipient type to a known role.

    Unknown values fall back to the customer role.
    """
    key = (value or "").strip().lower()
    if key in _RECIPIENT_ALIASES:
        return _RECIPIENT_ALIASES[key]
    if key in ALLOWED_ROLES:
        return key
    return ROLE_CLIENT
