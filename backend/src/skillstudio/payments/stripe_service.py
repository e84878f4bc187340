"""Stripe integration: Connect payout accounts and webhook verification."""

from dataclasses import dataclass

import stripe

from skillstudio.errors import UpstreamError
from skillstudio.logging_config import get_logger
from skillstudio.settings import settings

logger = get_logger(__name__)

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key


@dataclass
class PayoutAccount:
    """What we need to know about an external payout sub-account."""
    id: str
    verified: bool


class StripeConnectProcessor:
    """Payout processor backed by Stripe Connect standard accounts.

    Every Stripe failure is re-raised as ``UpstreamError`` carrying Stripe's
    own message.
    """

    def __init__(self, country: str = "US"):
        self.country = country

    def _ensure_configured(self) -> None:
        if not settings.stripe_secret_key:
            raise UpstreamError("Stripe is not configured", code="stripe_not_configured")

    def create_sub_account(self, owner_email: str) -> str:
        """Create a Connect account for an ambassador.

        Returns:
            Stripe account id
        """
        self._ensure_configured()
        try:
            account = stripe.Account.create(
                type="standard",
                country=self.country,
                email=owner_email,
            )
        except stripe.StripeError as e:
            logger.error("stripe_account_create_failed", error=str(e))
            raise UpstreamError(e.user_message or str(e))

        logger.info("stripe_account_created", account_id=account.id)
        return account.id

    def retrieve_account(self, account_id: str) -> PayoutAccount:
        """Fetch an account's verification state.

        ``details_submitted`` is Stripe's signal that onboarding finished.
        """
        self._ensure_configured()
        try:
            account = stripe.Account.retrieve(account_id)
        except stripe.StripeError as e:
            logger.error("stripe_account_retrieve_failed", account_id=account_id, error=str(e))
            raise UpstreamError(e.user_message or str(e))

        return PayoutAccount(id=account.id, verified=bool(account.get("details_submitted")))

    def create_onboarding_link(self, account_id: str, return_url: str, refresh_url: str) -> str:
        self._ensure_configured()

        if settings.stripe_secret_key.startswith("sk_live") and return_url.startswith("http:"):
            logger.warning("stripe_live_mode_http_origin", return_url=return_url)

        try:
            link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            logger.error("stripe_account_link_failed", account_id=account_id, error=str(e))
            raise UpstreamError(e.user_message or str(e))

        return link.url

    def create_dashboard_login_link(self, account_id: str) -> str:
        self._ensure_configured()
        try:
            link = stripe.Account.create_login_link(account_id)
        except stripe.StripeError as e:
            logger.warning("stripe_login_link_failed", account_id=account_id, error=str(e))
            raise UpstreamError(e.user_message or str(e))

        return link.url


def verify_webhook_signature(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value

    Returns:
        Verified Stripe event

    Raises:
        ValueError: If signature is invalid or webhooks are not configured
    """
    if not settings.stripe_webhook_secret:
        raise ValueError("Stripe webhook secret not configured")

    try:
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
        )
    except stripe.SignatureVerificationError:
        raise ValueError("Invalid webhook signature")
