"""Auth primitive: sign-up, sign-in, sign-out and current-session lookup."""
import logging
import uuid
from datetime import timedelta

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchd.clock import Clock, utcnow
from patchd.config import settings
from patchd.errors import ConflictError, UnauthorizedError
from patchd.gateway.errors import backend_errors
from patchd.models.user import User
from patchd.schemas.auth import AuthSession
from patchd.schemas.user import UserRead

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


class AuthGateway:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.redis = redis_client
        self.clock = clock
        self.session: AuthSession | None = None

    def issue_tokens(self, user_id: uuid.UUID) -> AuthSession:
        """Issue JWT access + refresh token pair."""
        now = self.clock()
        expires_at = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        access_payload = {
            "sub": str(user_id),
            "type": "access",
            "iat": now,
            "exp": expires_at,
        }
        access_token = jwt.encode(
            access_payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
        )

        refresh_payload = {
            "sub": str(user_id),
            "type": "refresh",
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        }
        refresh_token = jwt.encode(
            refresh_payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
        )

        return AuthSession(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def _decode(self, token: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise UnauthorizedError("Invalid session token") from exc

        if payload.get("type") != expected_type:
            raise UnauthorizedError("Invalid session token type")
        # Expiry is checked against the injected clock, not the wall clock
        if payload.get("exp", 0) <= self.clock().timestamp():
            raise UnauthorizedError("Session has expired, please sign in again")
        return payload

    async def sign_up(self, email: str, password: str, username: str) -> UserRead:
        """Register a new user with email/password."""
        now = self.clock()
        async with backend_errors("sign up"):
            async with self._session_factory() as db:
                existing = await db.execute(
                    select(User).where(or_(User.email == email, User.username == username))
                )
                if existing.scalars().first() is not None:
                    raise ConflictError("This email or username is already registered")

                user = User(
                    id=uuid.uuid4(),
                    email=email,
                    username=username,
                    password_hash=hash_password(password),
                    created_at=now,
                    updated_at=now,
                )
                db.add(user)
                await db.commit()
                await db.refresh(user)
                return UserRead.model_validate(user)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Authenticate with email/password and hold the resulting session."""
        async with backend_errors("sign in"):
            async with self._session_factory() as db:
                result = await db.execute(select(User).where(User.email == email))
                user = result.scalar_one_or_none()

        if user is None or user.password_hash is None:
            raise UnauthorizedError("Invalid login credentials")
        if not verify_password(password, user.password_hash):
            raise UnauthorizedError("Invalid login credentials")

        self.session = self.issue_tokens(user.id)
        logger.info("Signed in user %s", user.id)
        return self.session

    async def refresh_session(self) -> AuthSession:
        """Rotate the held token pair, revoking the old refresh token."""
        if self.session is None:
            raise UnauthorizedError("Not signed in")
        payload = self._decode(self.session.refresh_token, "refresh")

        jti = payload.get("jti")
        if jti:
            async with backend_errors("refresh session"):
                if await self.redis.get(f"revoked_refresh:{jti}"):
                    raise UnauthorizedError("Refresh token has been revoked")
                ttl = settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400
                await self.redis.set(f"revoked_refresh:{jti}", "1", ex=ttl)

        self.session = self.issue_tokens(uuid.UUID(payload["sub"]))
        return self.session

    async def sign_out(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        try:
            payload = jwt.get_unverified_claims(session.refresh_token)
        except JWTError:
            return
        jti = payload.get("jti")
        if jti:
            ttl = settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400
            async with backend_errors("sign out"):
                await self.redis.set(f"revoked_refresh:{jti}", "1", ex=ttl)

    def current_user_id(self) -> uuid.UUID:
        """Identity of the held session; raises Unauthorized when absent or expired."""
        if self.session is None:
            raise UnauthorizedError("Not signed in")
        payload = self._decode(self.session.access_token, "access")
        return uuid.UUID(payload["sub"])
