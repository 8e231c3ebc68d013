from __future__ import annotations

from typing import List, Optional

from userhub.logging import get_logger
from userhub.service.auth import AuthenticatedUser, SessionCache, UserStore
from userhub.service.errors import ConflictError, NotFoundError
from userhub.service.guards import require_authenticated, require_ownership
from userhub.service.passwords import PasswordService
from userhub.storage.errors import CacheUnavailableError, ConstraintViolation
from userhub.storage.models import User

logger = get_logger(__name__)


class UserService:
    """User CRUD behind the access guards."""

    def __init__(
        self,
        store: UserStore,
        cache: SessionCache,
        passwords: Optional[PasswordService] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.passwords = passwords or PasswordService()

    def list_users(self, limit: int = 100) -> List[User]:
        return self.store.list_users(limit=limit)

    def get_user(self, user_id: int) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        return user

    def me(self, current_user: Optional[AuthenticatedUser]) -> User:
        identity = require_authenticated(current_user)
        return self.get_user(identity.id)

    def create_user(
        self,
        current_user: Optional[AuthenticatedUser],
        name: str,
        email: str,
        password: str,
    ) -> User:
        actor = require_authenticated(current_user)
        if self.store.email_exists(email):
            raise ConflictError("email already registered", detail={"field": "email"})
        try:
            user = self.store.create_user(name, email, self.passwords.hash(password))
        except ConstraintViolation as exc:
            raise ConflictError("email already registered", detail=exc.detail) from exc
        logger.info("user_created", user_id=user.id, created_by=actor.id)
        return user

    def update_user(
        self,
        current_user: Optional[AuthenticatedUser],
        user_id: int,
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        require_ownership(current_user, user_id)
        try:
            user = self.store.update_user(user_id, name=name, email=email)
        except ConstraintViolation as exc:
            raise ConflictError("email already registered", detail=exc.detail) from exc
        if user is None:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        logger.info("user_updated", user_id=user_id)
        return user

    async def delete_user(
        self, current_user: Optional[AuthenticatedUser], user_id: int
    ) -> User:
        require_ownership(current_user, user_id)
        user = self.store.delete_user(user_id)
        if user is None:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        try:
            await self.cache.remove_refresh_token(user_id)
        except CacheUnavailableError as exc:
            # Refresh re-checks that the user exists, so a stale slot is inert
            logger.warning("user_delete_refresh_cleanup_failed", user_id=user_id, error=str(exc))
        logger.info("user_deleted", user_id=user_id)
        return user
