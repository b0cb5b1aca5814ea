from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AbstractSet

from supportdesk.errors import ACCOUNT_LOCKED, ForbiddenError, UnauthenticatedError

from .models import ACTIVE_STATUS, CallerContext, Role, UserAccount

if TYPE_CHECKING:
    from supportdesk.storage.base import UserDirectory

logger = logging.getLogger(__name__)


def is_admin(roles: AbstractSet[str]) -> bool:
    return Role.ADMIN.value in roles


def is_care_staff(roles: AbstractSet[str]) -> bool:
    return Role.CARE_STAFF.value in roles


def is_staff_or_admin(roles: AbstractSet[str]) -> bool:
    return is_admin(roles) or is_care_staff(roles)


def is_active(account: UserAccount) -> bool:
    return (account.status or ACTIVE_STATUS) == ACTIVE_STATUS


class IdentityGate:
    """Resolve callers to directory accounts and answer role questions."""

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    async def resolve(self, caller: CallerContext) -> UserAccount:
        if not caller.user_id:
            raise UnauthenticatedError()
        account = await self._directory.get_user(caller.user_id)
        if account is None:
            logger.info("Caller %s does not resolve to a user account", caller.user_id)
            raise UnauthenticatedError()
        return account

    async def require_active(self, caller: CallerContext) -> UserAccount:
        """Resolve the caller and reject locked accounts."""

        account = await self.resolve(caller)
        if not is_active(account):
            raise ForbiddenError(ACCOUNT_LOCKED)
        return account

    async def require_admin(self, caller: CallerContext, *, reason: str) -> UserAccount:
        account = await self.require_active(caller)
        if not is_admin(account.roles):
            raise ForbiddenError(reason)
        return account

    async def require_staff(self, caller: CallerContext, *, reason: str) -> UserAccount:
        account = await self.require_active(caller)
        if not is_staff_or_admin(account.roles):
            raise ForbiddenError(reason)
        return account

    async def find_active_care_staff(self, user_id: str | None) -> UserAccount | None:
        """Return the account when it exists, is Active and holds care staff."""

        if not user_id:
            return None
        account = await self._directory.get_user(user_id)
        if account is None or not is_active(account) or not is_care_staff(account.roles):
            return None
        return account
