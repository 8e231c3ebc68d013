from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from userhub.service.auth import AuthenticatedUser, AuthTokens
from userhub.storage.models import User


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize ``value`` after stripping zero-width and bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "UNAUTHENTICATED",
    "UNAUTHORIZED",
    "FORBIDDEN",
    "NOT_FOUND",
    "BAD_USER_INPUT",
    "CONFLICT",
    "INTERNAL_SERVER_ERROR",
})


class ErrorBody(BaseModel):
    """Error body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_name(value: str) -> str:
    normalized = _normalize_unicode(value).strip()
    if not normalized:
        raise ValueError("name must not be blank")
    return normalized


def _validate_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


class RegisterRequest(BaseModel):
    name: str = Field(..., max_length=120)
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def _validate_register_name(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_strength(value)


# Same shape and rules as registration
CreateUserRequest = RegisterRequest


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class TokenRefreshRequest(BaseModel):
    refresh_token: str = Field(..., max_length=2048)


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    email: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _validate_update_name(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value) if value is not None else None

    @field_validator("email")
    @classmethod
    def _validate_update_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value) if value is not None else None

    @model_validator(mode="after")
    def _require_a_change(self):
        if self.name is None and self.email is None:
            raise ValueError("at least one of name or email is required")
        return self


class TokensResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

    @classmethod
    def from_tokens(cls, tokens: AuthTokens) -> "TokensResponse":
        return cls(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    @classmethod
    def from_identity(cls, identity: AuthenticatedUser) -> "UserResponse":
        return cls(id=identity.id, name=identity.name, email=identity.email)


class UserListResponse(BaseModel):
    items: List[UserResponse]


class RegisterResponse(BaseModel):
    user: UserResponse
    tokens: TokensResponse
