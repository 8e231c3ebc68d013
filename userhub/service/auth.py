from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from userhub.logging import get_logger
from userhub.service.errors import (
    ConflictError,
    RevocationError,
    ServerError,
    UnauthorizedError,
)
from userhub.service.passwords import PasswordService
from userhub.service.tokens import InvalidTokenError, TokenCodec, TokenKind
from userhub.storage.errors import CacheUnavailableError, ConstraintViolation
from userhub.storage.models import User

logger = get_logger(__name__)

INVALID_CREDENTIALS = "invalid credentials"
INVALID_REFRESH_TOKEN = "invalid refresh token"


class UserStore(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def create_user(self, name: str, email: str, password_hash: str) -> User: ...

    def email_exists(self, email: str) -> bool: ...

    def list_users(self, limit: int = 100) -> List[User]: ...

    def update_user(
        self, user_id: int, *, name: Optional[str] = None, email: Optional[str] = None
    ) -> Optional[User]: ...

    def delete_user(self, user_id: int) -> Optional[User]: ...


class SessionCache(Protocol):
    async def store_refresh_token(self, user_id: int, token: str, ttl_seconds: int = ...) -> None: ...

    async def get_refresh_token(self, user_id: int) -> Optional[str]: ...

    async def remove_refresh_token(self, user_id: int) -> None: ...

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None: ...

    async def is_blacklisted(self, token: str) -> bool: ...


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthenticatedUser:
    id: int
    email: str
    name: str

    @classmethod
    def from_user(cls, user: User) -> "AuthenticatedUser":
        return cls(id=user.id, email=user.email, name=user.name)


class AuthService:
    """Registration, login, refresh rotation and revocation.

    One refresh token is live per user: issuing a new pair overwrites the
    stored slot, so a superseded refresh token is rejected. Logout removes
    the slot and blacklists the presented access token for the rest of its
    lifetime, so a refresh token issued before logout no longer works either.
    """

    def __init__(
        self,
        store: UserStore,
        cache: SessionCache,
        codec: TokenCodec,
        passwords: Optional[PasswordService] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.codec = codec
        self.passwords = passwords or PasswordService()
        self.logger = logger

    async def register(self, name: str, email: str, password: str) -> AuthenticatedUser:
        if self.store.email_exists(email):
            raise ConflictError("email already registered", detail={"field": "email"})
        password_hash = self.passwords.hash(password)
        try:
            user = self.store.create_user(name, email, password_hash)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration for the same email
            raise ConflictError("email already registered", detail=exc.detail) from exc
        self.logger.info("user_registered", user_id=user.id)
        return AuthenticatedUser.from_user(user)

    async def login(self, email: str, password: str) -> AuthTokens:
        user = self.store.get_user_by_email(email)
        if user is None:
            verified = self.passwords.verify_without_account(password)
        else:
            verified = self.passwords.verify(password, user.password_hash)
        if not verified:
            self.logger.warning("login_failed")
            raise UnauthorizedError(INVALID_CREDENTIALS)
        tokens = await self._issue_pair(user)
        self.logger.info("user_logged_in", user_id=user.id)
        return tokens

    async def register_and_login(
        self, name: str, email: str, password: str
    ) -> Tuple[AuthenticatedUser, AuthTokens]:
        """Create the account and hand back its first token pair."""
        identity = await self.register(name, email, password)
        user = self.store.get_user(identity.id)
        if user is None:
            raise ServerError("registered user could not be loaded")
        tokens = await self._issue_pair(user)
        return identity, tokens

    async def refresh(self, refresh_token: str) -> AuthTokens:
        try:
            payload = self.codec.verify(refresh_token, TokenKind.REFRESH)
        except InvalidTokenError:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN) from None
        stored = await self._cache_call(
            "get_refresh_token", self.cache.get_refresh_token(payload.user_id)
        )
        if stored is None or not hmac.compare_digest(
            stored.encode(), refresh_token.encode()
        ):
            self.logger.warning("refresh_token_superseded", user_id=payload.user_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        user = self.store.get_user(payload.user_id)
        if user is None:
            self.logger.warning("refresh_for_missing_user", user_id=payload.user_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        tokens = await self._issue_pair(user)
        self.logger.info("tokens_refreshed", user_id=user.id)
        return tokens

    async def logout(self, user_id: int, access_token: str) -> None:
        """Drop the refresh slot and blacklist ``access_token``.

        Both steps are attempted; if either fails a ``RevocationError`` naming
        the failed steps is raised after the second attempt.
        """
        failed_steps: List[str] = []
        try:
            await self.cache.remove_refresh_token(user_id)
        except CacheUnavailableError as exc:
            self.logger.error("logout_refresh_remove_failed", user_id=user_id, error=str(exc))
            failed_steps.append("remove_refresh_token")

        ttl = min(self.codec.remaining_lifetime(access_token), self.codec.access_ttl_seconds)
        try:
            await self.cache.blacklist_token(access_token, ttl)
        except CacheUnavailableError as exc:
            self.logger.error("logout_blacklist_failed", user_id=user_id, error=str(exc))
            failed_steps.append("blacklist_token")

        if failed_steps:
            raise RevocationError(
                "logout did not complete", detail={"failed_steps": failed_steps}
            )
        self.logger.info("user_logged_out", user_id=user_id, blacklist_ttl=ttl)

    async def validate_access_token(self, token: Optional[str]) -> Optional[AuthenticatedUser]:
        """Resolve a bearer token to its user, or None for any failure."""
        if not token:
            return None
        try:
            payload = self.codec.verify(token, TokenKind.ACCESS)
            if await self.cache.is_blacklisted(token):
                return None
            user = self.store.get_user(payload.user_id)
        except InvalidTokenError:
            return None
        except Exception as exc:
            # Callers only see "not authenticated"; keep the cause in the logs
            self.logger.warning(
                "access_token_validation_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
        if user is None:
            return None
        return AuthenticatedUser.from_user(user)

    async def authenticate(self, authorization: Optional[str]) -> Optional[AuthenticatedUser]:
        token = self.codec.extract_bearer(authorization)
        if token is None:
            return None
        return await self.validate_access_token(token)

    async def _issue_pair(self, user: User) -> AuthTokens:
        tokens = AuthTokens(
            access_token=self.codec.issue(TokenKind.ACCESS, user.id, user.email),
            refresh_token=self.codec.issue(TokenKind.REFRESH, user.id, user.email),
        )
        await self._cache_call(
            "store_refresh_token",
            self.cache.store_refresh_token(
                user.id, tokens.refresh_token, self.codec.refresh_ttl_seconds
            ),
        )
        return tokens

    async def _cache_call(self, operation: str, awaitable):
        try:
            return await awaitable
        except CacheUnavailableError as exc:
            self.logger.error("session_cache_failed", operation=operation, error=str(exc))
            raise ServerError("session store unavailable") from exc
