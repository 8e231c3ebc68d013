from __future__ import annotations

import secrets
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from userhub.logging import get_logger

logger = get_logger(__name__)


class PasswordService:
    """argon2id hashing for stored credentials."""

    def __init__(self, hasher: Optional[PasswordHasher] = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)
        self._reference_digest: Optional[str] = None

    def hash(self, plaintext: str) -> str:
        return self._hasher.hash(plaintext)

    def verify(self, plaintext: str, digest: str) -> bool:
        try:
            return self._hasher.verify(digest, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unreadable")
            return False

    def verify_without_account(self, plaintext: str) -> bool:
        """Spend one full verification for a login with no matching account.

        The reference digest uses the same hasher parameters as real ones, so
        unknown emails cost as much as wrong passwords. Always False.
        """
        if self._reference_digest is None:
            self._reference_digest = self._hasher.hash(secrets.token_urlsafe(16))
        self.verify(plaintext, self._reference_digest)
        return False
