"""
Role definitions for RBAC.

Roles in hierarchy (lowest to highest):
- user: Authenticated back-office access only
- manager: Read API keys, site keys, audit logs and analytics
- admin: Full access including key creation, rotation, revocation and secret recovery
"""
from enum import Enum
from typing import Dict, Set


class Role(str, Enum):
    """User roles with hierarchy."""
    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"


# Role hierarchy (numeric levels for comparison)
ROLE_HIERARCHY: Dict[str, int] = {
    Role.USER.value: 1,
    Role.MANAGER.value: 2,
    Role.ADMIN.value: 3,
}

VALID_ROLES: Set[str] = {r.value for r in Role}


def normalize_role(role: str) -> str:
    """
    Normalize a role string.

    Args:
        role: Role string in any case

    Returns:
        Role value, or "" for unknown roles (which rank below every real role)
    """
    role_lower = str(role).lower().strip()
    if role_lower in VALID_ROLES:
        return role_lower
    return ""


def role_rank(role: str) -> int:
    return ROLE_HIERARCHY.get(normalize_role(role), 0)


def has_permission(user_role: str, required_role: str) -> bool:
    """
    Check if user role has permission for required role.

    Args:
        user_role: User's role
        required_role: Minimum required role

    Returns:
        True if user has sufficient permissions (boundary inclusive)
    """
    required_level = role_rank(required_role)
    if required_level == 0:
        raise ValueError(f"Unknown required role: {required_role!r}")
    return role_rank(user_role) >= required_level
