from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status

from userhub.api.schemas import (
    CreateUserRequest,
    Envelope,
    LoginRequest,
    RegisterRequest,
    RegisterResponse,
    TokenRefreshRequest,
    TokensResponse,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
)
from userhub.service.auth import AuthenticatedUser
from userhub.service.runtime import get_runtime

router = APIRouter(prefix="/v1")


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


@dataclass(frozen=True)
class RequestContext:
    """Identity resolved for one request; ``current_user`` is None when anonymous."""

    current_user: Optional[AuthenticatedUser]
    access_token: Optional[str]


async def get_request_context(
    authorization: Optional[str] = Header(None),
) -> RequestContext:
    runtime = get_runtime()
    token = runtime.codec.extract_bearer(authorization)
    current_user = await runtime.auth.validate_access_token(token) if token else None
    return RequestContext(current_user=current_user, access_token=token)


async def get_authenticated_context(
    ctx: RequestContext = Depends(get_request_context),
) -> RequestContext:
    if ctx.current_user is None:
        raise _http_error("UNAUTHENTICATED", "authentication required", status_code=401)
    return ctx


@router.post(
    "/auth/register",
    response_model=Envelope,
    status_code=status.HTTP_201_CREATED,
    tags=["auth"],
)
async def register(body: RegisterRequest):
    """Create an account and return it with its first token pair.

    Raises:
        409: If the email is already registered
    """
    runtime = get_runtime()
    identity, tokens = await runtime.auth.register_and_login(
        body.name, body.email, body.password
    )
    return Envelope(
        status="ok",
        data=RegisterResponse(
            user=UserResponse.from_identity(identity),
            tokens=TokensResponse.from_tokens(tokens),
        ),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Exchange email and password for an access/refresh token pair.

    Raises:
        401: If credentials are invalid (same response for unknown email)
    """
    runtime = get_runtime()
    tokens = await runtime.auth.login(body.email, body.password)
    return Envelope(status="ok", data=TokensResponse.from_tokens(tokens))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: TokenRefreshRequest):
    runtime = get_runtime()
    tokens = await runtime.auth.refresh(body.refresh_token)
    return Envelope(status="ok", data=TokensResponse.from_tokens(tokens))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(ctx: RequestContext = Depends(get_authenticated_context)):
    """Revoke the presented access token and the caller's refresh token."""
    runtime = get_runtime()
    await runtime.auth.logout(ctx.current_user.id, ctx.access_token)
    return Envelope(status="ok", data={"message": "logged out"})


@router.get("/me", response_model=Envelope, tags=["users"])
async def me(ctx: RequestContext = Depends(get_request_context)):
    runtime = get_runtime()
    user = runtime.users.me(ctx.current_user)
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(limit: int = Query(100, ge=1, le=500)):
    runtime = get_runtime()
    users = runtime.users.list_users(limit=limit)
    return Envelope(
        status="ok",
        data=UserListResponse(items=[UserResponse.from_user(u) for u in users]),
    )


@router.get("/users/{user_id}", response_model=Envelope, tags=["users"])
async def get_user(user_id: int = Path(..., ge=1)):
    runtime = get_runtime()
    user = runtime.users.get_user(user_id)
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.post(
    "/users",
    response_model=Envelope,
    status_code=status.HTTP_201_CREATED,
    tags=["users"],
)
async def create_user(
    body: CreateUserRequest, ctx: RequestContext = Depends(get_request_context)
):
    runtime = get_runtime()
    user = runtime.users.create_user(ctx.current_user, body.name, body.email, body.password)
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.patch("/users/{user_id}", response_model=Envelope, tags=["users"])
async def update_user(
    body: UpdateUserRequest,
    user_id: int = Path(..., ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    runtime = get_runtime()
    user = runtime.users.update_user(
        ctx.current_user, user_id, name=body.name, email=body.email
    )
    return Envelope(status="ok", data=UserResponse.from_user(user))


@router.delete("/users/{user_id}", response_model=Envelope, tags=["users"])
async def delete_user(
    user_id: int = Path(..., ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    runtime = get_runtime()
    user = await runtime.users.delete_user(ctx.current_user, user_id)
    return Envelope(status="ok", data=UserResponse.from_user(user))
