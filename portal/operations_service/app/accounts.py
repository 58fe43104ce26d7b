"""User accounts, credential checks and access-log bookkeeping."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.common import ServiceSettings

from .errors import Conflict, Forbidden, NotFound, Unauthorized
from .metrics import LOGINS_TOTAL
from .models import AccessLog, User
from .schemas import UserRegister, UserUpdate

_LOGGER = logging.getLogger(__name__)

DEFAULT_ACCESS = "staff"
PRIVILEGED_ACCESS = frozenset({"superadmin", "admin"})


class AccountRepository:
    """Persistence utilities for users and their access log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id.strip().upper())

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def list_users(self, *, access: str | None) -> list[User]:
        stmt = select(User).order_by(User.name, User.id)
        if access is not None:
            stmt = stmt.where(User.access == access.strip().lower())
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def add_user(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user

    async def delete_user(self, user: User) -> None:
        await self.session.delete(user)
        await self.session.flush()

    async def add_access_log(self, user_id: str, description: str) -> AccessLog:
        entry = AccessLog(user_id=user_id, description=description)
        self.session.add(entry)
        await self.session.flush()
        await self.session.refresh(entry, attribute_names=["created_at"])
        return entry

    async def flush(self) -> None:
        await self.session.flush()


class AuthService:
    """Password hashing with bcrypt and bearer tokens signed with PyJWT."""

    def __init__(self, repository: AccountRepository, settings: ServiceSettings) -> None:
        self.repository = repository
        self.settings = settings

    def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.settings.password_hash_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Stored value is not a bcrypt hash.
            return False

    def issue_token(self, user: User) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": user.id,
            "email": user.email,
            "access": user.access,
            "iat": now,
            "exp": now + timedelta(minutes=self.settings.jwt_expiry_minutes),
        }
        return jwt.encode(claims, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def decode_token(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.PyJWTError as exc:
            raise Unauthorized("Invalid or expired token") from exc

    async def login(self, email: str, password: str) -> tuple[User, str]:
        user = await self.repository.get_user_by_email(email)
        if user is None or not self.verify_password(password, user.password):
            LOGINS_TOTAL.labels(outcome="rejected").inc()
            raise Unauthorized("Invalid email or password")
        await self.repository.add_access_log(user.id, "User logged in")
        LOGINS_TOTAL.labels(outcome="accepted").inc()
        _LOGGER.info("User %s logged in", user.id)
        return user, self.issue_token(user)

    async def register(self, payload: UserRegister) -> User:
        if await self.repository.get_user_by_email(payload.email) is not None:
            raise Conflict("Email already registered", field="email")
        if await self.repository.get_user(payload.id) is not None:
            raise Conflict(f"User id {payload.id} already taken", field="id")
        user = User(
            id=payload.id,
            name=payload.name.strip(),
            email=payload.email,
            password=self.hash_password(payload.password),
            access=(payload.access or DEFAULT_ACCESS).strip().lower(),
        )
        return await self.repository.add_user(user)

    async def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)
        if not self.verify_password(old_password, user.password):
            raise Unauthorized("Old password is incorrect")
        user.password = self.hash_password(new_password)
        await self.repository.flush()
        await self.repository.add_access_log(user.id, "User changed password")

    async def update_user(self, user_id: str, payload: UserUpdate) -> User:
        user = await self.repository.get_user(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found", user_id=user_id)
        supplied = payload.model_fields_set
        if "name" in supplied and payload.name:
            user.name = payload.name.strip()
        if "email" in supplied and payload.email:
            email = payload.email.strip().lower()
            other = await self.repository.get_user_by_email(email)
            if other is not None and other.id != user.id:
                raise Conflict("Email already registered", field="email")
            user.email = email
        if "password" in supplied and payload.password:
            user.password = self.hash_password(payload.password)
        if "access" in supplied:
            user.access = (payload.access or DEFAULT_ACCESS).strip().lower()
        await self.repository.flush()
        return user

    async def resolve_caller(self, token: str | None, user_id: str | None) -> User | None:
        """Identify the caller from a bearer token, falling back to the ``X-User-Id`` header."""

        if token:
            claims = self.decode_token(token)
            return await self.repository.get_user(str(claims.get("sub", "")))
        if user_id and user_id.strip():
            return await self.repository.get_user(user_id)
        return None


def has_access(user: User | None, *levels: str) -> bool:
    return user is not None and user.access.strip().lower() in {level.lower() for level in levels}


def require_access(user: User | None, *levels: str) -> User:
    if user is None:
        raise Unauthorized("Authentication required")
    if not has_access(user, *levels):
        raise Forbidden(f"Requires {' or '.join(levels)} access")
    return user
