"""Local authentication service (email/password)."""

from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from skillstudio.auth.models import PlanTier, UserAccount
from skillstudio.errors import ValidationError
from skillstudio.logging_config import get_logger
from skillstudio.settings import settings
from skillstudio.storage.db import db

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# JWT settings
JWT_ALGORITHM = "HS256"


class LocalAuthService:
    """Authentication service for local (email/password) users."""

    def __init__(self):
        """Initialize auth service."""
        self.logger = get_logger(__name__)

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit)."""
        return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")

    def hash_password(self, password: str) -> str:
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        return pwd_context.verify(self._truncate_password(password), hashed)

    # ==================== USER MANAGEMENT ====================

    def create_user(
        self,
        email: str,
        password: str,
        name: str | None = None,
        plan: PlanTier = PlanTier.FREE,
    ) -> UserAccount:
        """Create a new local user.

        Args:
            email: User email
            password: Plain password
            name: Optional name
            plan: Initial plan (billing webhooks move it afterwards)

        Returns:
            Created user account

        Raises:
            ValidationError: If email already exists
        """
        with db.session() as session:
            existing = session.query(UserAccount).filter(
                UserAccount.email == email.lower()
            ).first()

            if existing:
                raise ValidationError("Email already registered", code="email_taken")

            user = UserAccount(
                email=email.lower(),
                name=name,
                password_hash=self.hash_password(password),
                plan=plan,
            )
            session.add(user)
            session.commit()
            session.refresh(user)

            self.logger.info("user_created", user_id=user.id)
            return user

    def authenticate(self, email: str, password: str) -> UserAccount | None:
        """Authenticate a user.

        Returns:
            User account if valid, None otherwise
        """
        with db.session() as session:
            user = session.query(UserAccount).filter(
                UserAccount.email == email.lower(),
                UserAccount.is_active == True,  # noqa: E712
            ).first()

            if not user or not user.password_hash:
                return None

            if not self.verify_password(password, user.password_hash):
                return None

            user.last_login_at = datetime.utcnow()
            session.commit()

            self.logger.info("user_authenticated", user_id=user.id)
            return user

    def get_user_by_id(self, user_id: int) -> UserAccount | None:
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.id == user_id,
                UserAccount.is_active == True,  # noqa: E712
            ).first()

    def get_user_by_email(self, email: str) -> UserAccount | None:
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.email == email.lower(),
            ).first()

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        user: UserAccount,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Args:
            user: User account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=settings.jwt_expire_hours)

        now = datetime.utcnow()
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "exp": now + expires_delta,
            "iat": now,
        }

        return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Returns:
            Token payload or None if invalid
        """
        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def get_user_from_token(self, token: str) -> UserAccount | None:
        payload = self.verify_token(token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None

        return self.get_user_by_id(int(user_id))
