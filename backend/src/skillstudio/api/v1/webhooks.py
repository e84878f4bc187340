"""Webhook endpoints for external services."""

import json
from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from skillstudio.auth.models import ProcessedWebhookEvent
from skillstudio.logging_config import get_logger
from skillstudio.payments.billing_events import billing_events
from skillstudio.payments.stripe_service import verify_webhook_signature
from skillstudio.referral.notifications import notifier
from skillstudio.settings import settings
from skillstudio.storage.db import db, insert_ignoring_conflicts

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def is_event_processed(event_id: str, source: str) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        event_id: The unique event ID from the webhook source
        source: The webhook source (e.g., "stripe")

    Returns:
        True if already processed, False otherwise
    """
    with db.session() as session:
        existing = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id,
            ProcessedWebhookEvent.source == source,
        ).first()
        return existing is not None


def mark_event_processed(event_id: str, event_type: str, source: str) -> None:
    """Mark a webhook event as processed.

    A concurrent delivery of the same event may have marked it already;
    that is not an error.
    """
    with db.session() as session:
        insert_ignoring_conflicts(
            session,
            ProcessedWebhookEvent,
            {
                "event_id": event_id,
                "event_type": event_type,
                "source": source,
                "processed_at": datetime.utcnow(),
            },
            conflict_columns=["event_id"],
        )


def cleanup_old_events(days: int = 30) -> int:
    """Remove webhook events older than specified days.

    Returns:
        Number of deleted events
    """
    cutoff = datetime.utcnow() - timedelta(days=days)
    with db.session() as session:
        return session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.processed_at < cutoff
        ).delete()


@router.post("/stripe")
async def stripe_webhook(request: Request, background_tasks: BackgroundTasks):
    """Handle Stripe billing events.

    Verifies the signature, skips events already processed, and applies
    the rest to plans, referrals and the commission ledger. Ambassador
    notifications go out after the response.
    """
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        verify_webhook_signature(payload, sig_header)
    except ValueError as e:
        logger.warning("stripe_webhook_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    # Handlers work on the plain JSON payload
    event = json.loads(payload)
    event_id = event["id"]
    event_type = event["type"]

    if not billing_events.handles(event_type):
        logger.info("stripe_webhook_unhandled", event_type=event_type)
        return {"received": True}

    if is_event_processed(event_id, "stripe"):
        logger.info("stripe_webhook_duplicate", event_id=event_id)
        return {"received": True, "duplicate": True}

    try:
        notifications = billing_events.handle(event)
    except Exception as e:
        logger.error("stripe_webhook_error", event_id=event_id, event_type=event_type, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error processing webhook",
        )

    # Mark as processed AFTER successful handling
    mark_event_processed(event_id, event_type, "stripe")

    for notification in notifications:
        background_tasks.add_task(notifier.send, notification)

    logger.info("stripe_webhook_processed", event_id=event_id, event_type=event_type)
    return {"received": True}
