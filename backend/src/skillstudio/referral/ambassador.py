"""Ambassador onboarding state machine.

Steps (see ``OnboardingStep``)::

    0 unapplied -> 1 applied -> 2 trained -> 3 payout linked -> 4 onboarded
                                     ^               |
                                     +-- disconnect -+

Every write is a single conditional UPDATE or a conflict-tolerant INSERT,
so concurrent requests for the same ambassador cannot push the step
backwards or create a second row. Step 4 is only a cached copy of the
payout processor's verification flag and is re-checked from step 3 on
every read.
"""

from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import case, func, or_

from skillstudio.auth.models import UserAccount
from skillstudio.errors import NotFound, PermissionDenied, StudioError, UpstreamError, ValidationError
from skillstudio.logging_config import get_logger
from skillstudio.payments.stripe_service import StripeConnectProcessor
from skillstudio.referral.codes import MAX_CODE_ATTEMPTS, generate_code
from skillstudio.referral.ledger import CommissionLedger, commission_ledger
from skillstudio.referral.models import Ambassador, OnboardingStep
from skillstudio.settings import settings
from skillstudio.storage.db import db, insert_ignoring_conflicts

logger = get_logger(__name__)


@dataclass
class PayoutLink:
    """Where to send the ambassador next.

    ``status`` is ``onboarding`` for a (resumable) Connect onboarding flow,
    ``complete`` for the Connect dashboard of a verified account.
    """
    url: str
    status: Literal["onboarding", "complete"]


def _advance_to(step: OnboardingStep):
    """SQL expression raising ``onboarding_step`` to at least ``step``."""
    return case(
        (Ambassador.onboarding_step < step.value, step.value),
        else_=Ambassador.onboarding_step,
    )


class AmbassadorService:
    """Drives an ambassador through onboarding."""

    def __init__(self, processor=None, ledger: CommissionLedger | None = None):
        """Initialize ambassador service.

        Args:
            processor: Payout processor (defaults to Stripe Connect)
            ledger: Commission ledger used for dashboard totals
        """
        self.processor = processor or StripeConnectProcessor()
        self.ledger = ledger or commission_ledger
        self.logger = get_logger(__name__)

    # ==================== LOOKUPS ====================

    def get_for_user(self, user_id: int) -> Ambassador | None:
        with db.session() as session:
            return session.query(Ambassador).filter(Ambassador.user_id == user_id).first()

    def require_for_user(self, user_id: int) -> Ambassador:
        ambassador = self.get_for_user(user_id)
        if not ambassador:
            raise NotFound("Ambassador profile not found", code="not_ambassador")
        return ambassador

    def _reload(self, ambassador_id: int) -> Ambassador:
        with db.session() as session:
            return session.query(Ambassador).filter(Ambassador.id == ambassador_id).one()

    def _update_for_user(self, user_id: int, values: dict) -> Ambassador:
        """Apply one UPDATE to the user's ambassador row and return the fresh row."""
        with db.session() as session:
            updated = session.query(Ambassador).filter(
                Ambassador.user_id == user_id,
            ).update(values, synchronize_session=False)

            if not updated:
                raise NotFound("Ambassador profile not found", code="not_ambassador")

            return session.query(Ambassador).filter(Ambassador.user_id == user_id).one()

    # ==================== 0 -> 1: APPLY ====================

    def apply(self, user: UserAccount) -> tuple[Ambassador, bool]:
        """Enroll ``user`` in the program.

        Re-applying returns the existing record untouched.

        Returns:
            (ambassador, created)

        Raises:
            PermissionDenied: user is not on the qualifying plan (``requires_pro``)
        """
        if not user.can_apply_as_ambassador:
            self.logger.info("ambassador_apply_denied", user_id=user.id, plan=str(user.plan))
            raise PermissionDenied("Must be a Pro member to apply.", code="requires_pro")

        with db.session() as session:
            existing = session.query(Ambassador).filter(Ambassador.user_id == user.id).first()
            if existing:
                return existing, False

            for _ in range(MAX_CODE_ATTEMPTS):
                # The code goes in with the row, so no ambassador ever exists without one
                created = insert_ignoring_conflicts(
                    session,
                    Ambassador,
                    {
                        "user_id": user.id,
                        "referral_code": generate_code(),
                        "onboarding_step": OnboardingStep.APPLIED.value,
                        "social_posts_completed": 0,
                    },
                )
                ambassador = session.query(Ambassador).filter(Ambassador.user_id == user.id).first()
                if ambassador:
                    if created:
                        self.logger.info(
                            "ambassador_applied",
                            user_id=user.id,
                            ambassador_id=ambassador.id,
                            code=ambassador.referral_code,
                        )
                    return ambassador, created
                # Nothing inserted and no row for this user: the code was taken

        raise StudioError("Could not allocate a unique referral code")

    # ==================== 1 -> 2: SOCIAL PROOF / TRAINING ====================

    def submit_social_proof(self, user: UserAccount, links: list[str]) -> Ambassador:
        """Record proof-of-work post links and move to step 2.

        Raises:
            ValidationError: fewer than the required number of distinct links
            NotFound: user is not an ambassador
        """
        cleaned = [link.strip() for link in links if isinstance(link, str) and link.strip()]
        cleaned = list(dict.fromkeys(cleaned))

        required = settings.min_social_proof_links
        if len(cleaned) < required:
            raise ValidationError(
                f"Please provide at least {required} post links.",
                code="insufficient_links",
            )

        ambassador = self._update_for_user(
            user.id,
            {
                Ambassador.social_posts_completed: len(cleaned),
                Ambassador.social_links: cleaned,
                Ambassador.onboarding_step: _advance_to(OnboardingStep.TRAINED),
            },
        )

        self.logger.info(
            "ambassador_social_proof_submitted",
            ambassador_id=ambassador.id,
            links=len(cleaned),
            step=ambassador.onboarding_step,
        )
        return ambassador

    def complete_training(self, user: UserAccount) -> Ambassador:
        """Acknowledge that the training material was viewed.

        Submitting enough social proof already moves the ambassador to
        step 2, so for anyone who got there that way this is an idempotent
        acknowledgement. It only advances an ambassador whose links are on
        file but whose step lags behind. Never lowers the step.

        Raises:
            ValidationError: the social proof is not on file
        """
        ambassador = self.require_for_user(user.id)
        if ambassador.step >= OnboardingStep.TRAINED:
            return ambassador

        required = settings.min_social_proof_links
        if (ambassador.social_posts_completed or 0) < required:
            raise ValidationError(
                f"Please provide at least {required} post links.",
                code="insufficient_links",
            )

        ambassador = self._update_for_user(
            user.id,
            {Ambassador.onboarding_step: _advance_to(OnboardingStep.TRAINED)},
        )
        self.logger.info("ambassador_training_completed", ambassador_id=ambassador.id)
        return ambassador

    # ==================== 2 -> 3: PAYOUT ONBOARDING ====================

    def begin_payout_onboarding(self, user: UserAccount) -> PayoutLink:
        """Start, resume or manage the ambassador's payout account.

        Whether to start onboarding or hand out a dashboard link is decided
        by the processor's verification flag, not by the local step.

        Raises:
            PermissionDenied: training not completed (``training_required``)
            UpstreamError: processor failure, with its message
        """
        ambassador = self.require_for_user(user.id)

        if ambassador.step < OnboardingStep.TRAINED:
            raise PermissionDenied(
                "Complete training before connecting a payout account.",
                code="training_required",
            )

        account_id = ambassador.stripe_account_id
        if not account_id:
            account_id = self._link_new_account(ambassador, user.email)

        account = self.processor.retrieve_account(account_id)

        if account.verified:
            self._mark_onboarded(ambassador.id)
            try:
                url = self.processor.create_dashboard_login_link(account_id)
                return PayoutLink(url=url, status="complete")
            except UpstreamError as e:
                # Some account types cannot get login links; resume onboarding instead
                self.logger.warning("payout_login_link_fallback", ambassador_id=ambassador.id, error=e.message)

        url = self.processor.create_onboarding_link(
            account_id,
            return_url=f"{settings.site_url}/ambassador/dashboard?connected=true",
            refresh_url=f"{settings.site_url}/ambassador/onboarding?refresh=true",
        )
        return PayoutLink(url=url, status="onboarding")

    def _link_new_account(self, ambassador: Ambassador, email: str) -> str:
        new_account_id = self.processor.create_sub_account(email)

        with db.session() as session:
            linked = session.query(Ambassador).filter(
                Ambassador.id == ambassador.id,
                Ambassador.stripe_account_id.is_(None),
            ).update(
                {
                    Ambassador.stripe_account_id: new_account_id,
                    Ambassador.onboarding_step: _advance_to(OnboardingStep.PAYOUT_LINKED),
                },
                synchronize_session=False,
            )

            if linked:
                self.logger.info(
                    "payout_account_linked",
                    ambassador_id=ambassador.id,
                    account_id=new_account_id,
                )
                return new_account_id

            # Another request linked an account first; use theirs
            current = session.query(Ambassador.stripe_account_id).filter(
                Ambassador.id == ambassador.id
            ).scalar()

        self.logger.warning(
            "payout_account_link_race",
            ambassador_id=ambassador.id,
            orphaned_account_id=new_account_id,
            kept_account_id=current,
        )
        if not current:
            raise NotFound("Payout account was disconnected", code="payout_disconnected")
        return current

    def _mark_onboarded(self, ambassador_id: int) -> bool:
        with db.session() as session:
            updated = session.query(Ambassador).filter(
                Ambassador.id == ambassador_id,
                Ambassador.onboarding_step == OnboardingStep.PAYOUT_LINKED.value,
                Ambassador.stripe_account_id.is_not(None),
            ).update(
                {Ambassador.onboarding_step: OnboardingStep.ONBOARDED.value},
                synchronize_session=False,
            )

        if updated:
            self.logger.info("ambassador_onboarded", ambassador_id=ambassador_id)
        return bool(updated)

    # ==================== 3 -> 4: VERIFICATION SYNC ====================

    def sync_verification(self, ambassador: Ambassador) -> Ambassador:
        """Pull the processor's verification flag and advance to step 4 if set.

        Only acts at step 3; callers run this on every read instead of
        waiting for a redirect or webhook that may never arrive.
        """
        if ambassador.step != OnboardingStep.PAYOUT_LINKED or not ambassador.stripe_account_id:
            return ambassador

        account = self.processor.retrieve_account(ambassador.stripe_account_id)
        if not account.verified:
            return ambassador

        self._mark_onboarded(ambassador.id)
        return self._reload(ambassador.id)

    # ==================== 3 -> 2: DISCONNECT ====================

    def disconnect_payout(self, user: UserAccount) -> Ambassador:
        """Unlink the payout account and step back to "ready to connect".

        The external account is left alone; only our reference is cleared.
        """
        ambassador = self._update_for_user(
            user.id,
            {
                Ambassador.stripe_account_id: None,
                Ambassador.onboarding_step: case(
                    (Ambassador.onboarding_step > OnboardingStep.TRAINED.value, OnboardingStep.TRAINED.value),
                    else_=Ambassador.onboarding_step,
                ),
            },
        )
        self.logger.info("payout_account_disconnected", ambassador_id=ambassador.id, step=ambassador.onboarding_step)
        return ambassador

    # ==================== OPS ESCAPE HATCH ====================

    def debug_advance(self, user_id: int) -> Ambassador:
        """Bump the step by one with no checks. Ops/testing only."""
        ambassador = self._update_for_user(
            user_id,
            {
                Ambassador.onboarding_step: case(
                    (
                        Ambassador.onboarding_step < OnboardingStep.ONBOARDED.value,
                        Ambassador.onboarding_step + 1,
                    ),
                    else_=Ambassador.onboarding_step,
                ),
            },
        )
        self.logger.warning("ambassador_debug_advanced", ambassador_id=ambassador.id, step=ambassador.onboarding_step)
        return ambassador

    # ==================== DASHBOARD ====================

    def ensure_referral_code(self, ambassador: Ambassador) -> Ambassador:
        """Backfill a missing or blank referral code, persisting it once."""
        if ambassador.referral_code:
            return ambassador

        with db.session() as session:
            for _ in range(MAX_CODE_ATTEMPTS):
                code = generate_code()
                taken = session.query(Ambassador.id).filter(Ambassador.referral_code == code).first()
                if taken:
                    continue

                healed = session.query(Ambassador).filter(
                    Ambassador.id == ambassador.id,
                    or_(Ambassador.referral_code.is_(None), Ambassador.referral_code == ""),
                ).update({Ambassador.referral_code: code}, synchronize_session=False)

                if healed:
                    self.logger.warning("referral_code_backfilled", ambassador_id=ambassador.id, code=code)
                break
            else:
                raise StudioError("Could not allocate a unique referral code")

        # Whoever won, the stored code is now the one to use
        return self._reload(ambassador.id)

    def _payout_block(self, ambassador: Ambassador) -> dict[str, Any]:
        if not ambassador.stripe_account_id:
            return {"status": "not_connected", "dashboard_url": None}

        if ambassador.step < OnboardingStep.ONBOARDED:
            return {"status": "pending_verification", "dashboard_url": None}

        try:
            url = self.processor.create_dashboard_login_link(ambassador.stripe_account_id)
        except UpstreamError as e:
            self.logger.warning("payout_dashboard_link_unavailable", ambassador_id=ambassador.id, error=e.message)
            url = None
        return {"status": "verified", "dashboard_url": url}

    def get_stats(self, user: UserAccount) -> dict[str, Any]:
        """Dashboard payload: repairs the referral code and verification state first."""
        ambassador = self.require_for_user(user.id)
        ambassador = self.ensure_referral_code(ambassador)
        ambassador = self.sync_verification(ambassador)

        summary = self.ledger.summarize(ambassador.id)

        return {
            "ambassador": ambassador.to_dict(),
            "referral_link": f"{settings.site_url}/?ref={ambassador.referral_code}",
            "stats": summary.to_dict(),
            "payout": self._payout_block(ambassador),
        }

    def program_overview(self) -> dict[str, Any]:
        """Admin counts: every ambassador, broken down by onboarding step."""
        with db.session() as session:
            rows = session.query(Ambassador.onboarding_step, func.count(Ambassador.id)).group_by(
                Ambassador.onboarding_step
            ).all()

        by_step = {step.name.lower(): 0 for step in OnboardingStep if step > OnboardingStep.UNAPPLIED}
        for step, count in rows:
            by_step[OnboardingStep(step).name.lower()] = count

        return {
            "total_ambassadors": sum(by_step.values()),
            "onboarded": by_step["onboarded"],
            "by_step": by_step,
        }


ambassador_service = AmbassadorService()
