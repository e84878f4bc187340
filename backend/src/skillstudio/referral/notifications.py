"""Outbound ambassador notifications (marketing automation webhook).

Fire-and-forget: every failure is logged and swallowed, so callers never
see an exception from here.
"""

from dataclasses import asdict, dataclass
from typing import Literal

import httpx

from skillstudio.logging_config import get_logger
from skillstudio.settings import settings

logger = get_logger(__name__)


@dataclass
class ReferralNotification:
    """Payload posted to the ambassador webhook."""
    ambassador_id: int
    ambassador_email: str
    referred_user_email: str
    type: Literal["referral_signup", "referral_success"]
    referred_user_name: str | None = None
    amount_cents: int | None = None


class AmbassadorNotifier:
    """Posts ambassador events to an external webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.ambassador_webhook_url
        self.transport = transport
        self.enabled = bool(self.webhook_url)

        if not self.enabled:
            logger.warning("ambassador_notifier_disabled", reason="AMBASSADOR_WEBHOOK_URL not set")

    async def send(self, notification: ReferralNotification) -> bool:
        """Deliver one notification.

        Returns:
            True if the webhook accepted it, False otherwise
        """
        if not self.enabled:
            logger.info("ambassador_notification_skipped", type=notification.type)
            return False

        payload = {k: v for k, v in asdict(notification).items() if v is not None}

        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=settings.notification_timeout_seconds,
            ) as client:
                response = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "ambassador_notification_error",
                type=notification.type,
                ambassador_id=notification.ambassador_id,
                error=str(e),
            )
            return False

        if response.is_success:
            logger.info(
                "ambassador_notification_sent",
                type=notification.type,
                ambassador_id=notification.ambassador_id,
            )
            return True

        logger.warning(
            "ambassador_notification_failed",
            type=notification.type,
            ambassador_id=notification.ambassador_id,
            status=response.status_code,
            body=response.text[:200],
        )
        return False


notifier = AmbassadorNotifier()
