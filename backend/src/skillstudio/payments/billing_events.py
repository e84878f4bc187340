"""Stripe billing events: plan sync, referral status and commission accrual.

Events arrive as plain dicts (the verified webhook payload). Handlers are
safe to re-run for the same event: plan writes are absolute and commissions
are keyed by the event id.
"""

from datetime import datetime
from typing import Any, Callable

from skillstudio.auth.models import PlanTier, UserAccount
from skillstudio.logging_config import get_logger
from skillstudio.referral.attribution import ReferralAttributionStore, attribution_store
from skillstudio.referral.ledger import CommissionLedger, commission_ledger
from skillstudio.referral.models import (
    Ambassador,
    CommissionKind,
    CommissionStatus,
    Referral,
    ReferralStatus,
)
from skillstudio.referral.notifications import ReferralNotification
from skillstudio.settings import settings
from skillstudio.storage.db import db

logger = get_logger(__name__)

ACTIVE_SUBSCRIPTION_STATUSES = {"active", "trialing"}


def _timestamp(value: Any) -> datetime | None:
    if not isinstance(value, (int, float)):
        return None
    return datetime.utcfromtimestamp(value)


def _invoice_subscription(invoice: dict) -> str | None:
    """Subscription id of an invoice, across Stripe API versions."""
    if invoice.get("subscription"):
        return invoice["subscription"]
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return details.get("subscription")


class BillingEventHandler:
    """Applies Stripe events to accounts, referrals and the commission ledger."""

    def __init__(
        self,
        ledger: CommissionLedger | None = None,
        attribution: ReferralAttributionStore | None = None,
    ):
        self.ledger = ledger or commission_ledger
        self.attribution = attribution or attribution_store
        self.logger = get_logger(__name__)

        self._handlers: dict[str, Callable[[str, dict], list[ReferralNotification]]] = {
            "checkout.session.completed": self.on_checkout_completed,
            "customer.subscription.created": self.on_subscription_changed,
            "customer.subscription.updated": self.on_subscription_changed,
            "customer.subscription.deleted": self.on_subscription_deleted,
            "invoice.payment_succeeded": self.on_invoice_paid,
            "invoice.payment_failed": self.on_invoice_failed,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    def handle(self, event: dict) -> list[ReferralNotification]:
        """Dispatch one event.

        Returns:
            Notifications to deliver once the event is committed
        """
        event_type = event.get("type", "")
        handler = self._handlers.get(event_type)
        if handler is None:
            self.logger.info("stripe_webhook_unhandled", event_type=event_type)
            return []

        return handler(event["id"], event["data"]["object"])

    # ==================== ACCOUNT SYNC ====================

    def _update_user(self, obj: dict, values: dict[str, Any]) -> UserAccount | None:
        """Write ``values`` to the user behind a Stripe object.

        Looks the user up by ``metadata.user_id`` first, then by customer id.
        """
        customer_id = obj.get("customer")
        user_id = (obj.get("metadata") or {}).get("user_id")

        with db.session() as session:
            user = None
            if user_id:
                try:
                    user = session.get(UserAccount, int(user_id))
                except (TypeError, ValueError):
                    # Older subscriptions carry ids from the previous account system
                    self.logger.warning("stripe_metadata_user_id_invalid", user_id=user_id, customer_id=customer_id)
                if user and customer_id:
                    user.stripe_customer_id = customer_id
            if user is None and customer_id:
                user = session.query(UserAccount).filter(
                    UserAccount.stripe_customer_id == customer_id
                ).first()

            if user is None:
                self.logger.warning("stripe_user_not_found", customer_id=customer_id, user_id=user_id)
                return None

            for key, value in values.items():
                setattr(user, key, value)

        self.logger.info(
            "user_billing_synced",
            user_id=user.id,
            plan=user.plan.value if isinstance(user.plan, PlanTier) else user.plan,
            subscription_status=user.subscription_status,
        )
        return user

    # ==================== HANDLERS ====================

    def on_checkout_completed(self, event_id: str, session: dict) -> list[ReferralNotification]:
        if session.get("mode") != "subscription":
            return []

        user = self._update_user(
            session,
            {
                "plan": PlanTier.PREMIUM,
                "stripe_subscription_id": session.get("subscription"),
            },
        )
        if user is None:
            return []

        amount_total = session.get("amount_total") or 0
        if amount_total == settings.trial_amount_cents:
            kind = CommissionKind.TRIAL_BONUS
        elif amount_total >= settings.pro_min_amount_cents:
            kind = CommissionKind.MONTHLY_RECURRING
        else:
            return []

        return self._commission_for(user, kind, event_id, amount_total)

    def on_subscription_changed(self, event_id: str, subscription: dict) -> list[ReferralNotification]:
        status = subscription.get("status")
        is_active = status in ACTIVE_SUBSCRIPTION_STATUSES

        user = self._update_user(
            subscription,
            {
                "plan": PlanTier.PREMIUM if is_active else PlanTier.FREE,
                "stripe_subscription_id": subscription.get("id"),
                "subscription_status": status,
                "current_period_end": _timestamp(subscription.get("current_period_end")),
            },
        )
        if user is not None:
            referral_status = ReferralStatus.ACTIVE_PRO if status == "active" else ReferralStatus.TRIAL
            self.attribution.set_status_for_user(user.id, referral_status)
        return []

    def on_subscription_deleted(self, event_id: str, subscription: dict) -> list[ReferralNotification]:
        user = self._update_user(
            subscription,
            {
                "plan": PlanTier.FREE,
                "subscription_status": subscription.get("status"),
                "current_period_end": None,
            },
        )
        if user is not None:
            self.attribution.set_status_for_user(user.id, ReferralStatus.TRIAL)
        return []

    def on_invoice_paid(self, event_id: str, invoice: dict) -> list[ReferralNotification]:
        if not _invoice_subscription(invoice):
            return []

        amount_paid = invoice.get("amount_paid") or 0
        if amount_paid <= settings.recurring_min_invoice_cents:
            return []

        user = self._find_customer(invoice.get("customer"))
        if user is None:
            return []

        return self._commission_for(user, CommissionKind.MONTHLY_RECURRING, event_id, amount_paid)

    def on_invoice_failed(self, event_id: str, invoice: dict) -> list[ReferralNotification]:
        attempts = invoice.get("attempt_count") or 0
        if attempts >= settings.payment_failure_downgrade_attempts:
            self.logger.warning(
                "subscription_payment_failed_downgrade",
                customer_id=invoice.get("customer"),
                attempts=attempts,
            )
            self._update_user({"customer": invoice.get("customer")}, {"plan": PlanTier.FREE})
        return []

    # ==================== COMMISSIONS ====================

    def _find_customer(self, customer_id: str | None) -> UserAccount | None:
        if not customer_id:
            return None
        with db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.stripe_customer_id == customer_id
            ).first()

    def _commission_for(
        self,
        user: UserAccount,
        kind: CommissionKind,
        event_id: str,
        amount_paid: int,
    ) -> list[ReferralNotification]:
        """Accrue the commission a referred user's payment earns, if any."""
        with db.session() as session:
            referral = session.query(Referral).filter(Referral.referred_user_id == user.id).first()
            if not referral:
                return []

            ambassador = session.get(Ambassador, referral.ambassador_id)
            if not ambassador or not ambassador.stripe_account_id:
                self.logger.info(
                    "commission_skipped_no_payout_account",
                    ambassador_id=referral.ambassador_id,
                    event_id=event_id,
                )
                return []

            ambassador_user = session.get(UserAccount, ambassador.user_id)

        if ambassador_user is None or not ambassador_user.earns_commission:
            self.logger.info(
                "commission_ineligible",
                ambassador_id=ambassador.id,
                plan=ambassador_user.plan.value if ambassador_user else None,
            )
            self.ledger.accrue(
                ambassador.id,
                0,
                status=CommissionStatus.INELIGIBLE,
                kind=kind,
                referral_id=referral.id,
                idempotency_key=event_id,
                details={"reason": "Ambassador not on Pro plan"},
            )
            return []

        amount = (
            settings.trial_commission_cents
            if kind == CommissionKind.TRIAL_BONUS
            else settings.recurring_commission_cents
        )
        _, created = self.ledger.accrue(
            ambassador.id,
            amount,
            status=CommissionStatus.PENDING,
            kind=kind,
            referral_id=referral.id,
            idempotency_key=event_id,
            details={"event_id": event_id, "amount_paid": amount_paid},
        )
        if not created:
            return []

        return [
            ReferralNotification(
                ambassador_id=ambassador.id,
                ambassador_email=ambassador_user.email,
                referred_user_email=user.email,
                referred_user_name=user.name or "Referred User",
                type="referral_success",
                amount_cents=amount,
            )
        ]


billing_events = BillingEventHandler()
