"""Account management, password hashing and session tokens."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import timedelta
from typing import Any

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import scoped_session
from ..db_models import Collection, CollectionItem, Movie, Series, User
from ..errors import (
    AuthError,
    DuplicateError,
    InvalidCredentialsError,
    InvalidResetTokenError,
    TokenExpiredError,
    UserNotFoundError,
    ValidationError,
)
from ..events import USER_CREATED, USER_UPDATED, EventBus
from ..models import AuthResponse, Claims, PreferencesUpdate, UserPublic
from ..utils import utcnow

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
TOKEN_LIFETIME_SECONDS = 7 * 24 * 60 * 60
RESET_TOKEN_LIFETIME = timedelta(hours=1)
ADMIN_RESET_TOKEN_LIFETIME = timedelta(hours=24)
MIN_ADMIN_PASSWORD_LENGTH = 4
RESET_ACKNOWLEDGEMENT = "If the email exists, a reset link has been sent."
VALID_ROLES = ("admin", "user")


class AuthService:
    """Register and authenticate users and run the admin user lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        jwt_secret: str,
        *,
        events: EventBus | None = None,
        password_hasher: PasswordHasher | None = None,
        reset_url: str = "/reset-password",
    ):
        self._session_factory = session_factory
        self._jwt_secret = jwt_secret
        self._events = events
        self._hasher = password_hasher or PasswordHasher()
        self._reset_url = reset_url

    # ------------------------------------------------------------------
    # Hashing and tokens
    # ------------------------------------------------------------------
    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def create_token(self, user: User) -> str:
        issued_at = int(time.time())
        claims = {
            "sub": user.id,
            "username": user.username,
            "role": user.role,
            "iat": issued_at,
            "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        }
        return jwt.encode(claims, self._jwt_secret, algorithm=TOKEN_ALGORITHM)

    def verify_token(self, token: str) -> Claims:
        """Decode a session token, distinguishing expiry from other failures."""

        try:
            payload = jwt.decode(
                token, self._jwt_secret, algorithms=[TOKEN_ALGORITHM]
            )
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise AuthError(str(exc)) from exc
        try:
            claims = Claims.model_validate(payload)
        except ValueError as exc:
            raise AuthError("Malformed token claims") from exc
        # jose accepts a token during the second it expires; ``exp`` is exclusive.
        if claims.exp <= int(time.time()):
            raise TokenExpiredError()
        return claims

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------
    async def register(self, username: str, email: str, password: str) -> AuthResponse:
        """Create an account; the very first account becomes the administrator."""

        password_hash = self.hash_password(password)
        async with scoped_session(self._session_factory) as session:
            await self._ensure_unique(session, username, email)
            user_count = await session.scalar(select(func.count()).select_from(User))
            user = User(
                username=username,
                email=email,
                password_hash=password_hash,
                role="admin" if not user_count else "user",
            )
            session.add(user)
            await session.commit()

        logger.info("Registered user %s with role %s", user.username, user.role)
        public = UserPublic.model_validate(user)
        self._publish(USER_CREATED, public)
        return AuthResponse(token=self.create_token(user), user=public)

    async def login(self, username: str, password: str) -> AuthResponse:
        async with scoped_session(self._session_factory) as session:
            user = await session.scalar(select(User).where(User.username == username))
        if user is None or not self.verify_password(password, user.password_hash):
            raise InvalidCredentialsError()
        return AuthResponse(
            token=self.create_token(user), user=UserPublic.model_validate(user)
        )

    async def get_user(self, user_id: str) -> UserPublic:
        async with scoped_session(self._session_factory) as session:
            user = await session.get(User, user_id)
        if user is None:
            raise UserNotFoundError()
        return UserPublic.model_validate(user)

    async def update_preferences(
        self, user_id: str, preferences: PreferencesUpdate
    ) -> UserPublic:
        values = preferences.model_dump(exclude_unset=True, exclude_none=True)
        async with scoped_session(self._session_factory) as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFoundError()
            for field, value in values.items():
                setattr(user, field, value)
            if values:
                await session.commit()
        public = UserPublic.model_validate(user)
        if values:
            self._publish(USER_UPDATED, public)
        return public

    async def request_password_reset(self, email: str) -> str:
        """Issue a one-hour reset secret and log the link for manual delivery."""

        async with scoped_session(self._session_factory) as session:
            user = await session.scalar(select(User).where(User.email == email))
            if user is None:
                raise ValidationError("Email address not found")
            secret = await self._issue_reset_secret(session, user, RESET_TOKEN_LIFETIME)
            expires = user.reset_token_expires

        logger.info(
            "Password reset requested for %s: %s?token=%s (valid until %s UTC)",
            user.username,
            self._reset_url,
            secret,
            expires.isoformat() if expires else "unknown",
        )
        return RESET_ACKNOWLEDGEMENT

    async def reset_password(self, token: str, new_password: str) -> None:
        async with scoped_session(self._session_factory) as session:
            result = await session.scalars(
                select(User).where(
                    User.reset_token.is_not(None),
                    User.reset_token_expires > utcnow(),
                )
            )
            for user in result.all():
                if not self.verify_password(token, user.reset_token or ""):
                    continue
                user.password_hash = self.hash_password(new_password)
                user.reset_token = None
                user.reset_token_expires = None
                await session.commit()
                logger.info("Password reset completed for %s", user.username)
                return
        raise InvalidResetTokenError()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    async def list_users(self) -> list[UserPublic]:
        async with scoped_session(self._session_factory) as session:
            result = await session.scalars(
                select(User).order_by(User.created_at.desc())
            )
            return [UserPublic.model_validate(user) for user in result.all()]

    async def update_user_role(
        self, user_id: str, role: str, *, actor_id: str | None = None
    ) -> UserPublic:
        if role not in VALID_ROLES:
            raise ValidationError("Invalid role")
        if actor_id is not None and actor_id == user_id and role != "admin":
            raise ValidationError("Cannot remove your own admin role")
        async with scoped_session(self._session_factory) as session:
            user = await self._load_user(session, user_id)
            user.role = role
            await session.commit()
        public = UserPublic.model_validate(user)
        self._publish(USER_UPDATED, public)
        return public

    async def admin_set_password(self, user_id: str, password: str) -> str:
        if len(password) < MIN_ADMIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters"
            )
        async with scoped_session(self._session_factory) as session:
            user = await self._load_user(session, user_id)
            user.password_hash = self.hash_password(password)
            user.reset_token = None
            user.reset_token_expires = None
            await session.commit()
        return "Password updated successfully"

    async def delete_user(self, user_id: str, *, actor_id: str | None = None) -> str:
        """Remove a user and everything they own in a single transaction."""

        if actor_id is not None and actor_id == user_id:
            raise ValidationError("Cannot delete your own account")
        async with scoped_session(self._session_factory) as session:
            async with session.begin():
                await self._load_user(session, user_id)
                owned_collections = select(Collection.id).where(
                    Collection.user_id == user_id
                )
                await session.execute(delete(Movie).where(Movie.user_id == user_id))
                await session.execute(delete(Series).where(Series.user_id == user_id))
                await session.execute(
                    delete(CollectionItem).where(
                        CollectionItem.collection_id.in_(owned_collections)
                    )
                )
                await session.execute(
                    delete(Collection).where(Collection.user_id == user_id)
                )
                await session.execute(delete(User).where(User.id == user_id))
        logger.info("Deleted user %s", user_id)
        return "User deleted successfully"

    async def admin_create_user(
        self, username: str, email: str, password: str | None = None
    ) -> tuple[UserPublic, str | None]:
        """Create a regular user; without a password a 24h reset secret is minted."""

        secret: str | None = None
        async with scoped_session(self._session_factory) as session:
            await self._ensure_unique(session, username, email)
            user = User(
                username=username,
                email=email,
                password_hash=self.hash_password(password or uuid.uuid4().hex),
                role="user",
            )
            session.add(user)
            await session.flush()
            if not password:
                secret = await self._issue_reset_secret(
                    session, user, ADMIN_RESET_TOKEN_LIFETIME
                )
            else:
                await session.commit()

        public = UserPublic.model_validate(user)
        self._publish(USER_CREATED, public)
        return public, secret

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _ensure_unique(
        self, session: AsyncSession, username: str, email: str
    ) -> None:
        existing = await session.scalar(
            select(User.id).where(or_(User.username == username, User.email == email))
        )
        if existing is not None:
            raise DuplicateError("Username or email already exists")

    async def _issue_reset_secret(
        self, session: AsyncSession, user: User, lifetime: timedelta
    ) -> str:
        secret = str(uuid.uuid4())
        user.reset_token = self.hash_password(secret)
        user.reset_token_expires = utcnow() + lifetime
        await session.commit()
        return secret

    @staticmethod
    async def _load_user(session: AsyncSession, user_id: str) -> User:
        try:
            uuid.UUID(user_id)
        except ValueError as exc:
            raise ValidationError("Invalid user ID") from exc
        user = await session.get(User, user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    def _publish(self, event_type: str, payload: Any) -> None:
        if self._events is not None:
            self._events.publish(event_type, payload)
