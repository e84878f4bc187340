"""Referral attribution.

A visit carrying ``?ref=CODE`` leaves a cookie marker on the client. The
next authenticated request trades that marker for a durable ``Referral``
row. Markers are never validated up front; an unknown code is simply
inert when it is finally checked.
"""

from dataclasses import dataclass

from fastapi import BackgroundTasks, Request, Response

from skillstudio.auth.models import UserAccount
from skillstudio.logging_config import get_logger
from skillstudio.referral.codes import normalize_code
from skillstudio.referral.models import Ambassador, Referral, ReferralStatus
from skillstudio.referral.notifications import ReferralNotification, notifier
from skillstudio.settings import settings
from skillstudio.storage.db import db, insert_ignoring_conflicts

logger = get_logger(__name__)


# ==================== MARKER (COOKIE) ====================


def tag_visit(response: Response, code: str | None) -> bool:
    """Set the attribution marker cookie.

    Returns:
        True if a marker was set
    """
    code = normalize_code(code)
    if not code:
        return False

    response.set_cookie(
        key=settings.referral_cookie_name,
        value=code,
        max_age=settings.referral_cookie_max_age_days * 24 * 60 * 60,
        path="/",
        httponly=False,  # Frontend reads it to prefill signup
        samesite="lax",
    )
    return True


def read_marker(request: Request) -> str | None:
    return normalize_code(request.cookies.get(settings.referral_cookie_name))


def clear_marker(response: Response) -> None:
    response.delete_cookie(key=settings.referral_cookie_name, path="/")


# ==================== DURABLE ATTRIBUTION ====================


@dataclass
class AttributionResult:
    """Outcome of one attribution check.

    ``reason`` is one of: no_marker, unknown_code, self_referral, created,
    already_attributed.
    """
    reason: str
    created: bool = False
    ambassador_id: int | None = None
    referral_id: int | None = None
    notification: ReferralNotification | None = None

    @property
    def attributed(self) -> bool:
        return self.created


class ReferralAttributionStore:
    """Turns attribution markers into Referral rows, once per user."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def attribute(self, user_id: int, code: str | None) -> AttributionResult:
        """Attribute ``user_id`` to the ambassador owning ``code``.

        Safe to call with no code, with an unknown code, and any number of
        times: the unique constraint on ``referred_user_id`` makes repeats
        no-ops, and the first ambassador recorded keeps the referral.

        Args:
            user_id: Authenticated user
            code: Marker value, if any

        Returns:
            AttributionResult (with a notification payload when a row was created)
        """
        code = normalize_code(code)
        if not code:
            return AttributionResult(reason="no_marker")

        with db.session() as session:
            ambassador = session.query(Ambassador).filter(
                Ambassador.referral_code == code
            ).first()

            if not ambassador:
                self.logger.info("referral_code_unknown", code=code, user_id=user_id)
                return AttributionResult(reason="unknown_code")

            if ambassador.user_id == user_id:
                return AttributionResult(reason="self_referral", ambassador_id=ambassador.id)

            created = insert_ignoring_conflicts(
                session,
                Referral,
                {
                    "ambassador_id": ambassador.id,
                    "referred_user_id": user_id,
                    "status": ReferralStatus.TRIAL,
                },
                conflict_columns=["referred_user_id"],
            )

            referral = session.query(Referral).filter(
                Referral.referred_user_id == user_id
            ).one()

            if not created:
                return AttributionResult(
                    reason="already_attributed",
                    ambassador_id=referral.ambassador_id,
                    referral_id=referral.id,
                )

            ambassador_user = session.get(UserAccount, ambassador.user_id)
            referred_user = session.get(UserAccount, user_id)
            notification = None
            if ambassador_user and referred_user:
                notification = ReferralNotification(
                    ambassador_id=ambassador.id,
                    ambassador_email=ambassador_user.email,
                    referred_user_email=referred_user.email,
                    referred_user_name=referred_user.name,
                    type="referral_signup",
                )

            self.logger.info(
                "referral_attributed",
                ambassador_id=ambassador.id,
                referred_user_id=user_id,
                referral_id=referral.id,
            )

            return AttributionResult(
                reason="created",
                created=True,
                ambassador_id=ambassador.id,
                referral_id=referral.id,
                notification=notification,
            )

    def get_referral_for_user(self, user_id: int) -> Referral | None:
        with db.session() as session:
            return session.query(Referral).filter(
                Referral.referred_user_id == user_id
            ).first()

    def set_status_for_user(self, user_id: int, status: ReferralStatus) -> bool:
        """Move a referred user's referral to ``status``.

        Returns:
            True if a referral existed and changed
        """
        with db.session() as session:
            updated = session.query(Referral).filter(
                Referral.referred_user_id == user_id,
                Referral.status != status,
            ).update({Referral.status: status}, synchronize_session=False)

        if updated:
            self.logger.info("referral_status_changed", referred_user_id=user_id, status=status.value)
        return bool(updated)


attribution_store = ReferralAttributionStore()


def exchange_marker(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    user_id: int,
    code: str | None = None,
) -> AttributionResult:
    """Trade the visitor's marker for a referral and consume the cookie.

    An explicit ``code`` (e.g. typed into the signup form) takes precedence
    over the cookie. The ambassador notification runs after the response.
    """
    marker = normalize_code(code) or read_marker(request)
    if not marker:
        return AttributionResult(reason="no_marker")

    result = attribution_store.attribute(user_id, marker)
    clear_marker(response)

    if result.notification:
        background_tasks.add_task(notifier.send, result.notification)

    return result
