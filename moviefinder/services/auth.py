"""Account management: credentials, OAuth users and password resets."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

import bcrypt
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import User

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_MIN_LENGTH = 6
# bcrypt only looks at the first 72 bytes of a password.
PASSWORD_MAX_BYTES = 72
RESET_TOKEN_BYTES = 20


class AuthError(ValueError):
    """A user-facing authentication failure, optionally tied to a form field."""

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_field_errors(self) -> dict[str, list[str]]:
        return {self.field or "form": [self.message]}


def _validate_email(value: str) -> str:
    email = value.strip().lower()
    if not EMAIL_RE.match(email) or len(email) > 100:
        raise ValueError("Invalid email address")
    return email


def _validate_password(value: str) -> str:
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    return value


class SignupForm(BaseModel):
    name: str = Field(max_length=60)
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        name = value.strip()
        if len(name) < 2:
            raise ValueError("Name must be at least 2 characters")
        return name

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password(value)


class PasswordChangeForm(BaseModel):
    current_password: str | None = None
    new_password: str

    @field_validator("current_password", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value:
            return None
        return value

    @field_validator("new_password")
    @classmethod
    def _check_new_password(cls, value: str) -> str:
        return _validate_password(value)


class ResetPasswordForm(BaseModel):
    user_id: str = Field(min_length=1)
    token: str = Field(min_length=1)
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password(value)

    @model_validator(mode="after")
    def _passwords_match(self) -> "ResetPasswordForm":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


def field_errors(exc: ValidationError) -> dict[str, list[str]]:
    """Flatten pydantic errors into ``{field: [messages]}`` for form rendering."""

    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        location = error.get("loc") or ()
        field = str(location[0]) if location else "form"
        message = str(error.get("msg", "Invalid input"))
        message = message.removeprefix("Value error, ")
        errors.setdefault(field, []).append(message)
    return errors


@dataclass(slots=True)
class SessionUser:
    """The signed-in account as seen by pages and routes."""

    id: str
    name: str
    email: str
    image: str | None = None
    has_password: bool = False

    @property
    def initial(self) -> str:
        return (self.name[:1] or "U").upper()


class AuthService:
    """Creates users and verifies credentials and reset tokens."""

    def __init__(
        self, settings: Settings, session_factory: async_sessionmaker[AsyncSession]
    ):
        self._settings = settings
        self._session_factory = session_factory

    async def signup(self, form: SignupForm) -> SessionUser:
        password_hash = await self.hash_password(form.password)
        async with self._session_factory() as session:
            if await self._find_by_email(session, form.email) is not None:
                raise AuthError("Email already in use", field="email")
            user = User(name=form.name, email=form.email, password_hash=password_hash)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise AuthError("Email already in use", field="email") from exc
            logger.info("Created account %s", user.id)
            return self._to_session_user(user)

    async def authenticate(self, email: str, password: str) -> SessionUser | None:
        """Return the user for valid credentials, ``None`` otherwise."""

        try:
            normalized = _validate_email(email)
            _validate_password(password)
        except ValueError:
            return None
        async with self._session_factory() as session:
            user = await self._find_by_email(session, normalized)
        if user is None or not user.password_hash:
            return None
        if not await self.verify_password(password, user.password_hash):
            return None
        return self._to_session_user(user)

    async def upsert_oauth_user(
        self, *, email: str, name: str | None, image: str | None
    ) -> SessionUser:
        """Return the account for an OAuth identity, creating it on first sign-in."""

        normalized = _validate_email(email)
        async with self._session_factory() as session:
            user = await self._find_by_email(session, normalized)
            if user is None:
                user = User(
                    name=(name or normalized.split("@", 1)[0])[:60],
                    email=normalized,
                    image=image,
                )
                session.add(user)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    user = await self._find_by_email(session, normalized)
                    if user is None:
                        raise
                else:
                    logger.info("Created OAuth account %s", user.id)
            elif image and not user.image:
                user.image = image
                await session.commit()
            return self._to_session_user(user)

    async def get_user(self, user_id: str | None) -> SessionUser | None:
        if not user_id:
            return None
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        return self._to_session_user(user) if user is not None else None

    async def change_password(self, user_id: str | None, form: PasswordChangeForm) -> None:
        if not user_id:
            raise AuthError("Not authenticated")
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise AuthError("User not found")
            if user.password_hash:
                if not form.current_password:
                    raise AuthError("Current password is required", field="current_password")
                if not await self.verify_password(form.current_password, user.password_hash):
                    raise AuthError("Incorrect current password", field="current_password")
            user.password_hash = await self.hash_password(form.new_password)
            await session.commit()
        logger.info("Password updated for %s", user_id)

    async def request_password_reset(self, email: str) -> str | None:
        """Issue a reset token and deliver the link.

        Returns the reset URL when an account exists. Callers must not reveal
        the difference to the visitor.
        """

        try:
            normalized = _validate_email(email)
        except ValueError:
            return None
        token = secrets.token_hex(RESET_TOKEN_BYTES)
        async with self._session_factory() as session:
            user = await self._find_by_email(session, normalized)
            if user is None:
                return None
            user.reset_token_hash = self.hash_reset_token(token)
            user.reset_token_expires_at = datetime.utcnow() + timedelta(
                seconds=self._settings.password_reset_ttl_seconds
            )
            await session.commit()
            user_id = user.id

        query = urlencode({"userId": user_id, "token": token})
        reset_url = f"{self._settings.public_base_url}/reset-password?{query}"
        # Email delivery is mocked: the link goes to the log.
        logger.info("Password reset requested for %s: %s", normalized, reset_url)
        return reset_url

    async def reset_password(self, form: ResetPasswordForm) -> None:
        token_hash = self.hash_reset_token(form.token)
        async with self._session_factory() as session:
            result = await session.execute(
                select(User).where(
                    User.id == form.user_id,
                    User.reset_token_hash == token_hash,
                    User.reset_token_expires_at > datetime.utcnow(),
                )
            )
            user = result.scalar_one_or_none()
            if user is None:
                raise AuthError("Invalid token")
            user.password_hash = await self.hash_password(form.password)
            user.reset_token_hash = None
            user.reset_token_expires_at = None
            await session.commit()
        logger.info("Password reset completed for %s", form.user_id)

    async def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._settings.bcrypt_rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    async def verify_password(password: str, password_hash: str) -> bool:
        try:
            return await asyncio.to_thread(
                bcrypt.checkpw, password.encode("utf-8"), password_hash.encode("utf-8")
            )
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    @staticmethod
    def hash_reset_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    async def _find_by_email(session: AsyncSession, email: str) -> User | None:
        result = await session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    def _to_session_user(user: User) -> SessionUser:
        return SessionUser(
            id=user.id,
            name=user.name,
            email=user.email,
            image=user.image,
            has_password=bool(user.password_hash),
        )
