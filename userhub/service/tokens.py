from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from userhub.config import Settings
from userhub.logging import get_logger
from userhub.service.errors import ConfigError

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "
_HEADER = {"alg": "HS256", "typ": "JWT"}


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPayload:
    user_id: int
    email: str
    issued_at: int
    expires_at: int
    kind: TokenKind
    jti: str


class InvalidTokenError(Exception):
    """Token failed verification.

    Malformed, badly signed, expired and wrong-kind tokens all raise this
    with the same message so callers cannot tell the cases apart.
    """

    MESSAGE = "invalid or expired token"

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


class TokenCodec:
    """Signs and verifies HS256 access/refresh tokens."""

    def __init__(
        self,
        secret: Optional[str],
        *,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ConfigError("JWT_SECRET is not configured")
        self._secret = secret.encode()
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            settings.jwt_secret,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
        )

    def ttl_for(self, kind: TokenKind) -> int:
        if kind == TokenKind.ACCESS:
            return self.access_ttl_seconds
        return self.refresh_ttl_seconds

    def _now(self) -> int:
        return int(self._clock())

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(self, kind: TokenKind, user_id: int, email: str) -> str:
        kind = TokenKind(kind)
        now = self._now()
        payload = TokenPayload(
            user_id=user_id,
            email=email,
            issued_at=now,
            expires_at=now + self.ttl_for(kind),
            kind=kind,
            jti=str(uuid.uuid4()),
        )
        return self.encode(payload)

    def encode(self, payload: TokenPayload) -> str:
        claims = {
            "sub": payload.user_id,
            "email": payload.email,
            "iat": payload.issued_at,
            "exp": payload.expires_at,
            "token_type": TokenKind(payload.kind).value,
            "jti": payload.jti,
        }
        header_enc = self._encode_segment(
            json.dumps(_HEADER, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(claims, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str, kind: Optional[TokenKind] = None) -> TokenPayload:
        """Return the payload of a valid token or raise ``InvalidTokenError``.

        When ``kind`` is given the ``token_type`` claim must match it.
        """
        if not isinstance(token, str):
            raise InvalidTokenError()
        parts = token.split(".")
        if len(parts) != 3:
            raise InvalidTokenError()
        header_b64, payload_b64, sig_b64 = parts
        # Nothing attacker-controlled is parsed before the signature matches
        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidTokenError()
        try:
            header = json.loads(self._decode_segment(header_b64))
            claims = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError, RecursionError):
            raise InvalidTokenError() from None
        # Only HS256 is accepted; anything else is an algorithm confusion attempt
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            raise InvalidTokenError()
        payload = self._payload_from_claims(claims)
        if payload.expires_at <= self._now():
            raise InvalidTokenError()
        if kind is not None and payload.kind != TokenKind(kind):
            raise InvalidTokenError()
        return payload

    @staticmethod
    def _payload_from_claims(claims: Any) -> TokenPayload:
        if not isinstance(claims, dict):
            raise InvalidTokenError()
        sub = claims.get("sub")
        email = claims.get("email")
        iat = claims.get("iat")
        exp = claims.get("exp")
        jti = claims.get("jti")
        # bool is an int subclass; reject it explicitly
        for value in (sub, iat, exp):
            if not isinstance(value, int) or isinstance(value, bool):
                raise InvalidTokenError()
        if not isinstance(email, str) or not email or not isinstance(jti, str):
            raise InvalidTokenError()
        try:
            kind = TokenKind(claims.get("token_type"))
        except ValueError:
            raise InvalidTokenError() from None
        if exp <= iat:
            raise InvalidTokenError()
        return TokenPayload(
            user_id=sub,
            email=email,
            issued_at=iat,
            expires_at=exp,
            kind=kind,
            jti=jti,
        )

    def remaining_lifetime(self, token: str) -> int:
        """Seconds until ``token`` expires; 0 when it is invalid or spent."""
        try:
            payload = self.verify(token)
        except InvalidTokenError:
            return 0
        return max(0, payload.expires_at - self._now())

    @staticmethod
    def extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header or not header.startswith(BEARER_PREFIX):
            return None
        token = header[len(BEARER_PREFIX):].strip()
        return token or None
