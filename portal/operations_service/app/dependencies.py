"""Dependency helpers for the operations service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import cast

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.common import ServiceSettings, get_settings, lifespan_session

from .accounts import AccountRepository, AuthService
from .catalog import CatalogRepository
from .errors import DomainError
from .logistics import LogisticsRepository
from .models import User
from .services import WorkorderEngine

_bearer = HTTPBearer(auto_error=False)


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_service_settings(request: Request) -> ServiceSettings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, ServiceSettings):
        return settings
    return get_settings()


def get_workorder_engine(request: Request) -> WorkorderEngine:
    return cast(WorkorderEngine, request.app.state.workorder_engine)


def get_catalog_repository(session: AsyncSession = Depends(get_session)) -> CatalogRepository:
    return CatalogRepository(session)


def get_logistics_repository(session: AsyncSession = Depends(get_session)) -> LogisticsRepository:
    return LogisticsRepository(session)


def get_account_repository(session: AsyncSession = Depends(get_session)) -> AccountRepository:
    return AccountRepository(session)


def get_auth_service(
    repository: AccountRepository = Depends(get_account_repository),
    settings: ServiceSettings = Depends(get_service_settings),
) -> AuthService:
    return AuthService(repository, settings)


def get_actor_id(x_user_id: str | None = Header(default=None)) -> str | None:
    return x_user_id


async def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    x_user_id: str | None = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
) -> User | None:
    token = credentials.credentials if credentials is not None else None
    try:
        return await auth.resolve_caller(token, x_user_id)
    except DomainError as exc:
        raise exc.to_http() from exc
