"""Request dependencies: services, caller identity, roles, cron secret."""

import hmac
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, Request

from blogflow.exceptions import UnauthorizedError
from blogflow.roles import Role, get_user_role, require_role
from blogflow.services import Services


@dataclass
class CurrentUser:
    id: str
    role: Role


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_user(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> CurrentUser:
    """Resolve the bearer token to a user and their role.

    Raises:
        UnauthorizedError: If the header is missing or the token is
            rejected by the identity provider.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthorizedError("Missing bearer token")

    user_id = await services.db.get_user_id_for_token(token)
    if not user_id:
        raise UnauthorizedError("Invalid or expired token")
    return CurrentUser(id=user_id, role=await get_user_role(services.db, user_id))


def require(role: Role) -> Callable:
    """Dependency factory: the caller must hold at least *role*."""

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        require_role(user.role, role)
        return user

    return checker


require_author = require(Role.AUTHOR)
require_admin = require(Role.ADMIN)


async def verify_cron_secret(
    x_cron_secret: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> None:
    """Guard for sweep endpoints.

    Raises:
        UnauthorizedError: If no ``CRON_SECRET`` is configured or the
            ``X-Cron-Secret`` header does not match it.
    """
    expected = services.settings.cron_secret
    if not expected:
        raise UnauthorizedError("Sweep endpoints are disabled (CRON_SECRET not set)")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        raise UnauthorizedError("Invalid cron secret")


__all__ = [
    "CurrentUser",
    "get_services",
    "get_current_user",
    "require",
    "require_author",
    "require_admin",
    "verify_cron_secret",
]
