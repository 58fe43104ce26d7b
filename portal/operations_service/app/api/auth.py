"""Login, registration and access-log endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..accounts import AccountRepository, AuthService
from ..dependencies import get_account_repository, get_auth_service
from ..errors import DomainError, ValidationError
from ..schemas import (
    AccessLogCreate,
    AccessLogResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    UserRegister,
    UserResponse,
)

router = APIRouter(tags=["auth"])


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        user, token = await auth.login(payload.email, payload.password)
    except DomainError as exc:
        raise exc.to_http() from exc
    return LoginResponse(token=token, id=user.id, name=user.name, email=user.email, access=user.access)


@router.post("/auth/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: UserRegister,
    auth: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        user = await auth.register(payload)
    except DomainError as exc:
        raise exc.to_http() from exc
    return UserResponse.model_validate(user)


@router.post("/auth/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> dict[str, str]:
    try:
        await auth.change_password(payload.user_id, payload.old_password, payload.new_password)
    except DomainError as exc:
        raise exc.to_http() from exc
    return {"message": "Password updated"}


@router.post("/access-log", response_model=AccessLogResponse, status_code=status.HTTP_201_CREATED)
async def record_access(
    payload: AccessLogCreate,
    repository: AccountRepository = Depends(get_account_repository),
) -> AccessLogResponse:
    missing = [name for name in ("user_id", "description") if getattr(payload, name) is None]
    if missing:
        raise ValidationError("Missing required fields", fields=missing).to_http()
    entry = await repository.add_access_log(payload.user_id.upper(), payload.description)
    return AccessLogResponse.model_validate(entry, from_attributes=True)
