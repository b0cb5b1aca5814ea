"""Caller identity resolution and role predicates."""

from .gate import IdentityGate, is_active, is_admin, is_care_staff, is_staff_or_admin
from .models import ACTIVE_STATUS, CallerContext, Role, UserAccount, normalize_role, normalize_roles

__all__ = [
    "ACTIVE_STATUS",
    "CallerContext",
    "IdentityGate",
    "Role",
    "UserAccount",
    "is_active",
    "is_admin",
    "is_care_staff",
    "is_staff_or_admin",
    "normalize_role",
    "normalize_roles",
]
