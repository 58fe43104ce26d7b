"""User administration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from ..accounts import AccountRepository, AuthService
from ..dependencies import get_account_repository, get_auth_service
from ..errors import DomainError, NotFound
from ..schemas import UserResponse, UserUpdate

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
async def list_users(
    access: str | None = Query(default=None),
    repository: AccountRepository = Depends(get_account_repository),
) -> list[UserResponse]:
    users = await repository.list_users(access=access if access and access.strip() else None)
    return [UserResponse.model_validate(user) for user in users]


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserUpdate,
    auth: AuthService = Depends(get_auth_service),
) -> UserResponse:
    try:
        user = await auth.update_user(user_id, payload)
    except DomainError as exc:
        raise exc.to_http() from exc
    return UserResponse.model_validate(user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    repository: AccountRepository = Depends(get_account_repository),
) -> Response:
    user = await repository.get_user(user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found", user_id=user_id).to_http()
    await repository.delete_user(user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
