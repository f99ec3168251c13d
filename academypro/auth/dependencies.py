"""
FastAPI dependencies that turn the bearer token into the calling user
and gate routes by role and by academy.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from academypro.auth.security import decode_token
from academypro.database.models import Role
from academypro.errors import ForbiddenError, UnauthorizedError

_bearer = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    user_id: str
    role: Role
    academy_id: Optional[str] = None


def user_from_token(token: str) -> CurrentUser:
    payload = decode_token(token)
    if payload is None or not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired token")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise UnauthorizedError("Invalid token payload")
    return CurrentUser(user_id=payload["sub"], role=role, academy_id=payload.get("academy_id"))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CurrentUser:
    if credentials is None:
        raise UnauthorizedError("Authorization header missing")
    return user_from_token(credentials.credentials)


def require_roles(*roles: Role):
    """Build a dependency that admits only the given roles."""
    allowed = set(roles)

    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise ForbiddenError("You do not have permission for this action")
        return user

    return _dependency


def ensure_same_academy(user: CurrentUser, academy_id: Optional[str]) -> None:
    if not academy_id or user.academy_id != academy_id:
        raise ForbiddenError("You cannot access another academy", error_code="CROSS_ACADEMY")
