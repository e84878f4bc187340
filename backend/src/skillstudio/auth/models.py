"""Authentication models for user accounts."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, Integer, String

from skillstudio.storage.models import Base


class PlanTier(str, Enum):
    """Billing plan a user is on."""
    FREE = "free"
    PREMIUM = "premium"        # Paid "Pro" plan
    STAFF_PRO = "staff_pro"    # Complimentary Pro for staff
    ADMIN = "admin"


# Plans that may apply to the ambassador program
AMBASSADOR_QUALIFYING_PLANS = frozenset({PlanTier.PREMIUM})

# Plans whose ambassadors earn revenue share
COMMISSION_ELIGIBLE_PLANS = frozenset({PlanTier.PREMIUM, PlanTier.STAFF_PRO})


class UserAccount(Base):
    """User account.

    Plan fields are mirrored from Stripe by the billing webhook.
    """
    __tablename__ = "user_accounts"

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)

    # Billing
    plan = Column(
        SQLEnum(PlanTier, values_callable=lambda e: [m.value for m in e]),
        default=PlanTier.FREE,
        nullable=False,
    )
    subscription_status = Column(String(50), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    # Status
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, plan={self.plan})>"

    @property
    def can_apply_as_ambassador(self) -> bool:
        return self.plan in AMBASSADOR_QUALIFYING_PLANS

    @property
    def earns_commission(self) -> bool:
        return self.plan in COMMISSION_ELIGIBLE_PLANS


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    Prevents duplicate processing of webhook events (e.g., Stripe payments).
    Stored in database to survive server restarts and work across multiple processes.
    """
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    source = Column(String(50), nullable=False)
    processed_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"


# Pydantic models for API


class User(BaseModel):
    """User data for API responses."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str | None
    plan: PlanTier
    subscription_status: str | None = None
    is_active: bool
    created_at: datetime


class UserCreate(BaseModel):
    """User creation request."""
    email: EmailStr
    password: str = Field(..., min_length=10, max_length=128)
    name: str | None = None
    referral_code: str | None = Field(default=None, max_length=32)


class UserLogin(BaseModel):
    """User login request."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User
    referral_attributed: bool = False
