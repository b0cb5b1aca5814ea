from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable


class Role(str, Enum):
    """Role codes understood by the support core."""

    ADMIN = "admin"
    CARE_STAFF = "care-staff"
    CUSTOMER = "customer"


ACTIVE_STATUS = "Active"


def normalize_role(code: str) -> str:
    """Map a raw role code onto a canonical :class:`Role` value when possible.

    Upstream directories use codes such as ``ADMIN``, ``CUSTOMER_CARE`` or
    ``customer-care-staff``; matching is by keyword, with admin taking
    precedence over care and care over customer.
    """

    value = (code or "").strip().lower().replace("_", "-")
    if "admin" in value:
        return Role.ADMIN.value
    if "care" in value:
        return Role.CARE_STAFF.value
    if "customer" in value:
        return Role.CUSTOMER.value
    return value


def normalize_roles(codes: Iterable[str]) -> frozenset[str]:
    return frozenset(normalized for normalized in map(normalize_role, codes) if normalized)


@dataclass(slots=True, frozen=True)
class UserAccount:
    """Identity record resolved from the user directory."""

    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    status: str = ACTIVE_STATUS
    email: str | None = None
    full_name: str | None = None
    support_priority_level: int | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or ""


@dataclass(slots=True, frozen=True)
class CallerContext:
    """Explicit description of who is invoking a service operation.

    ``user_id`` is ``None`` when the transport could not authenticate the
    request; the identity gate turns that into an unauthenticated outcome.
    """

    user_id: str | None = None

    @classmethod
    def anonymous(cls) -> "CallerContext":
        return cls(user_id=None)
