from __future__ import annotations

from typing import Optional

from userhub.service.auth import AuthenticatedUser
from userhub.service.errors import ForbiddenError, UnauthenticatedError


def is_authenticated(current_user: Optional[AuthenticatedUser]) -> bool:
    return current_user is not None


def require_authenticated(current_user: Optional[AuthenticatedUser]) -> AuthenticatedUser:
    if current_user is None:
        raise UnauthenticatedError("authentication required")
    return current_user


def require_ownership(
    current_user: Optional[AuthenticatedUser], owner_id: int
) -> AuthenticatedUser:
    """Allow only the owner of ``owner_id`` through."""
    user = require_authenticated(current_user)
    if user.id != owner_id:
        raise ForbiddenError("not allowed to modify this resource")
    return user
