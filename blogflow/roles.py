"""User roles and permission checks.

Roles form a closed, ordered set: ``READER < AUTHOR < ADMIN``.  A user's
role is read from ``profiles.role``; a missing profile or an unknown
role name counts as ``READER``.
"""

import logging
from enum import IntEnum
from typing import Optional

from blogflow.database import SupabaseDB
from blogflow.exceptions import PermissionDeniedError

logger = logging.getLogger(__name__)


class Role(IntEnum):
    """User role; a higher value grants everything a lower one does."""

    READER = 1
    AUTHOR = 2
    ADMIN = 3

    @classmethod
    def parse(cls, name: Optional[str]) -> "Role":
        """Resolve a stored role name, falling back to ``READER``."""
        if not name:
            return cls.READER
        try:
            return cls[name.strip().upper()]
        except KeyError:
            logger.warning("[ROLES] Unknown role '%s', treating as reader", name)
            return cls.READER


def has_role(actual: Role, required: Role) -> bool:
    """Whether *actual* is at least *required*."""
    return actual >= required


def require_role(actual: Role, required: Role) -> None:
    """Raise ``PermissionDeniedError`` unless *actual* is at least *required*."""
    if not has_role(actual, required):
        raise PermissionDeniedError(
            f"Requires {required.name.lower()} role, caller is {actual.name.lower()}"
        )


async def get_user_role(db: SupabaseDB, user_id: str) -> Role:
    """Load a user's role from ``profiles``."""
    return Role.parse(await db.get_profile_role(user_id))


__all__ = ["Role", "has_role", "require_role", "get_user_role"]
