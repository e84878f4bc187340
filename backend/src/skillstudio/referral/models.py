"""Ambassador program database models."""

from datetime import datetime
from enum import Enum, IntEnum

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from skillstudio.storage.models import Base


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class OnboardingStep(IntEnum):
    """Ambassador onboarding progress.

    Only moves forward, except that disconnecting the payout account
    returns to TRAINED.
    """
    UNAPPLIED = 0
    APPLIED = 1
    TRAINED = 2          # Social proof submitted / training viewed
    PAYOUT_LINKED = 3    # Connect account created, verification pending
    ONBOARDED = 4        # Connect account verified


class ReferralStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE_PRO = "active_pro"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    INELIGIBLE = "ineligible"  # Ambassador was not on an eligible plan
    FAILED = "failed"          # Payout attempt failed, needs manual follow-up


class CommissionKind(str, Enum):
    TRIAL_BONUS = "trial_bonus"
    MONTHLY_RECURRING = "monthly_recurring"
    MANUAL = "manual"


class Ambassador(Base):
    """A user enrolled in the referral program.

    One row per user. ``referral_code`` never changes once assigned.
    """
    __tablename__ = "ambassadors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)
    referral_code = Column(String(20), unique=True, nullable=True, index=True)

    onboarding_step = Column(Integer, default=OnboardingStep.APPLIED.value, nullable=False)

    # Social proof
    social_posts_completed = Column(Integer, default=0, nullable=False)
    social_links = Column(JSON, nullable=True)

    # Payout sub-account (Stripe Connect)
    stripe_account_id = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("UserAccount", foreign_keys=[user_id])

    def __repr__(self):
        return f"<Ambassador(id={self.id}, code={self.referral_code}, step={self.onboarding_step})>"

    @property
    def step(self) -> OnboardingStep:
        return OnboardingStep(self.onboarding_step or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "referral_code": self.referral_code,
            "onboarding_step": self.onboarding_step,
            "social_posts_completed": self.social_posts_completed,
            "stripe_account_id": self.stripe_account_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Referral(Base):
    """A signup attributed to an ambassador.

    ``referred_user_id`` is unique: the first attribution wins.
    """
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    ambassador_id = Column(Integer, ForeignKey("ambassadors.id"), nullable=False, index=True)
    referred_user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, unique=True)
    status = Column(
        SQLEnum(ReferralStatus, values_callable=_enum_values),
        default=ReferralStatus.TRIAL,
        nullable=False,
    )

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ambassador = relationship("Ambassador", foreign_keys=[ambassador_id])
    referred = relationship("UserAccount", foreign_keys=[referred_user_id])

    def __repr__(self):
        return f"<Referral(ambassador={self.ambassador_id}, referred={self.referred_user_id}, status={self.status})>"


class Commission(Base):
    """A credit owed to an ambassador, in minor currency units.

    Append-only apart from the pending -> paid transition.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_commissions_amount_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    ambassador_id = Column(Integer, ForeignKey("ambassadors.id"), nullable=False, index=True)
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=True, index=True)

    amount = Column(Integer, nullable=False)
    status = Column(
        SQLEnum(CommissionStatus, values_callable=_enum_values),
        default=CommissionStatus.PENDING,
        nullable=False,
    )
    kind = Column(
        SQLEnum(CommissionKind, values_callable=_enum_values),
        default=CommissionKind.MANUAL,
        nullable=False,
    )

    # Caller-supplied key (e.g. billing event id) for at-least-once delivery
    idempotency_key = Column(String(255), unique=True, nullable=True)
    transfer_reference = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    paid_at = Column(DateTime, nullable=True)

    ambassador = relationship("Ambassador", foreign_keys=[ambassador_id])

    def __repr__(self):
        return f"<Commission(id={self.id}, ambassador={self.ambassador_id}, amount={self.amount}, status={self.status})>"
