"""Add ambassador program tables

Revision ID: 002_ambassador
Revises: 001_initial
Create Date: 2026-03-01

Adds tables for:
- ambassadors: one row per enrolled user, onboarding step and payout account
- referrals: signups attributed to an ambassador (one per referred user)
- commissions: append-only earnings ledger
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "002_ambassador"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ambassador program tables."""

    # Ambassadors table
    op.create_table(
        "ambassadors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=True),
        sa.Column("onboarding_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("social_posts_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("social_links", sa.JSON(), nullable=True),
        sa.Column("stripe_account_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_ambassadors_user_id"),
    )
    op.create_index("ix_ambassadors_referral_code", "ambassadors", ["referral_code"], unique=True)

    # Referrals table (first attribution wins)
    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ambassador_id", sa.Integer(), nullable=False),
        sa.Column("referred_user_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("trial", "active_pro", name="referralstatus"),
            nullable=False,
            server_default="trial",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["ambassador_id"], ["ambassadors.id"]),
        sa.ForeignKeyConstraint(["referred_user_id"], ["user_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referred_user_id", name="uq_referrals_referred_user_id"),
    )
    op.create_index("ix_referrals_ambassador_id", "referrals", ["ambassador_id"], unique=False)

    # Commissions ledger
    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ambassador_id", sa.Integer(), nullable=False),
        sa.Column("referral_id", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "ineligible", "failed", name="commissionstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "kind",
            sa.Enum("trial_bonus", "monthly_recurring", "manual", name="commissionkind"),
            nullable=False,
            server_default="manual",
        ),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("transfer_reference", sa.String(255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["ambassador_id"], ["ambassadors.id"]),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key", name="uq_commissions_idempotency_key"),
        sa.CheckConstraint("amount >= 0", name="ck_commissions_amount_non_negative"),
    )
    op.create_index("ix_commissions_ambassador_id", "commissions", ["ambassador_id"], unique=False)
    op.create_index("ix_commissions_referral_id", "commissions", ["referral_id"], unique=False)


def downgrade() -> None:
    """Drop ambassador program tables."""
    op.drop_table("commissions")
    op.drop_table("referrals")
    op.drop_table("ambassadors")

    bind = op.get_bind()
    sa.Enum(name="commissionkind").drop(bind, checkfirst=True)
    sa.Enum(name="commissionstatus").drop(bind, checkfirst=True)
    sa.Enum(name="referralstatus").drop(bind, checkfirst=True)
