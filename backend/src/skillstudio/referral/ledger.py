"""Commission ledger.

Rows are appended and never edited, except for the pending -> paid flip
made by the payout job. Totals are always summed from the rows.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func

from skillstudio.errors import NotFound, ValidationError
from skillstudio.logging_config import get_logger
from skillstudio.referral.models import (
    Ambassador,
    Commission,
    CommissionKind,
    CommissionStatus,
    Referral,
    ReferralStatus,
)
from skillstudio.storage.db import db, insert_ignoring_conflicts

logger = get_logger(__name__)


@dataclass
class LedgerSummary:
    """Aggregated earnings and referral counts for one ambassador."""
    total_earned: int = 0      # Sum of paid commissions (cents)
    pending: int = 0           # Sum of pending commissions (cents)
    total_referrals: int = 0
    trial_referrals: int = 0
    active_pro_referrals: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_referrals": self.total_referrals,
            "active_pro_members": self.active_pro_referrals,
            "active_trials": self.trial_referrals,
            "total_earned_cents": self.total_earned,
            "pending_cents": self.pending,
            "total_earned_usd": self.total_earned / 100,
            "pending_usd": self.pending / 100,
        }


class CommissionLedger:
    """Accrues and aggregates ambassador commissions."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def accrue(
        self,
        ambassador_id: int,
        amount: int,
        status: CommissionStatus = CommissionStatus.PENDING,
        kind: CommissionKind = CommissionKind.MANUAL,
        referral_id: int | None = None,
        idempotency_key: str | None = None,
        details: dict | None = None,
    ) -> tuple[Commission, bool]:
        """Append a commission entry.

        With an ``idempotency_key`` a repeated call returns the entry that
        was recorded first instead of adding another.

        Args:
            ambassador_id: Ambassador to credit
            amount: Minor currency units, >= 0
            status: Initial status
            kind: What the commission is for
            referral_id: Referral that produced it, if any
            idempotency_key: Caller-supplied key, e.g. a billing event id
            details: Free-form context

        Returns:
            (commission, created)

        Raises:
            ValidationError: negative or non-integer amount
            NotFound: ambassador does not exist
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("Commission amount must be a non-negative integer (minor units)")

        status = CommissionStatus(status)
        kind = CommissionKind(kind)

        with db.session() as session:
            if not session.get(Ambassador, ambassador_id):
                raise NotFound(f"Ambassador {ambassador_id} not found")

            values = {
                "ambassador_id": ambassador_id,
                "referral_id": referral_id,
                "amount": amount,
                "status": status,
                "kind": kind,
                "idempotency_key": idempotency_key,
                "details": details,
            }

            if idempotency_key is None:
                commission = Commission(**values)
                session.add(commission)
                session.flush()
                created = True
            else:
                created = insert_ignoring_conflicts(
                    session, Commission, values, conflict_columns=["idempotency_key"]
                )
                commission = session.query(Commission).filter(
                    Commission.idempotency_key == idempotency_key
                ).one()

        if created:
            self.logger.info(
                "commission_accrued",
                commission_id=commission.id,
                ambassador_id=ambassador_id,
                amount=amount,
                status=status.value,
                kind=kind.value,
            )
        else:
            self.logger.info("commission_duplicate", idempotency_key=idempotency_key)

        return commission, created

    def mark_paid(self, commission_id: int, transfer_reference: str | None = None) -> bool:
        """Flip a pending commission to paid.

        Returns:
            True if it was pending and is now paid
        """
        with db.session() as session:
            updated = session.query(Commission).filter(
                Commission.id == commission_id,
                Commission.status == CommissionStatus.PENDING,
            ).update(
                {
                    Commission.status: CommissionStatus.PAID,
                    Commission.paid_at: datetime.utcnow(),
                    Commission.transfer_reference: transfer_reference,
                },
                synchronize_session=False,
            )

        if updated:
            self.logger.info("commission_paid", commission_id=commission_id, transfer=transfer_reference)
        return bool(updated)

    def summarize(self, ambassador_id: int) -> LedgerSummary:
        """Recompute earnings and referral counts from the raw rows."""
        summary = LedgerSummary()

        with db.session() as session:
            sums = session.query(Commission.status, func.coalesce(func.sum(Commission.amount), 0)).filter(
                Commission.ambassador_id == ambassador_id,
                Commission.status.in_([CommissionStatus.PAID, CommissionStatus.PENDING]),
            ).group_by(Commission.status).all()

            for status, total in sums:
                if status == CommissionStatus.PAID:
                    summary.total_earned = int(total)
                elif status == CommissionStatus.PENDING:
                    summary.pending = int(total)

            counts = session.query(Referral.status, func.count(Referral.id)).filter(
                Referral.ambassador_id == ambassador_id,
            ).group_by(Referral.status).all()

            for status, count in counts:
                summary.total_referrals += count
                if status == ReferralStatus.TRIAL:
                    summary.trial_referrals = count
                elif status == ReferralStatus.ACTIVE_PRO:
                    summary.active_pro_referrals = count

        return summary

    def list_for_ambassador(self, ambassador_id: int, limit: int = 50) -> list[Commission]:
        with db.session() as session:
            return session.query(Commission).filter(
                Commission.ambassador_id == ambassador_id,
            ).order_by(Commission.created_at.desc(), Commission.id.desc()).limit(limit).all()


commission_ledger = CommissionLedger()
