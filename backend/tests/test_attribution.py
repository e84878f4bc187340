"""Tests for referral attribution."""

from fastapi import Response

from skillstudio.auth.models import PlanTier
from skillstudio.referral.attribution import ReferralAttributionStore, clear_marker, tag_visit
from skillstudio.referral.models import Referral, ReferralStatus
from skillstudio.storage.db import db


def _referrals_for(user_id: int) -> list[Referral]:
    with db.session() as session:
        return session.query(Referral).filter(Referral.referred_user_id == user_id).all()


def test_tag_visit_sets_readable_cookie():
    response = Response()

    assert tag_visit(response, " ABC123 ") is True

    header = response.headers["set-cookie"]
    assert "ref_code=ABC123" in header
    assert "Max-Age=2592000" in header
    assert "Path=/" in header
    assert "httponly" not in header.lower()
    assert "samesite=lax" in header.lower()


def test_tag_visit_ignores_empty_code():
    response = Response()

    assert tag_visit(response, "   ") is False
    assert "set-cookie" not in response.headers


def test_clear_marker_expires_cookie():
    response = Response()

    clear_marker(response)

    assert "ref_code=" in response.headers["set-cookie"]
    assert "Max-Age=0" in response.headers["set-cookie"]


class TestAttribute:
    def test_no_marker_is_a_noop(self, make_user):
        store = ReferralAttributionStore()
        user = make_user()

        result = store.attribute(user.id, None)

        assert result.reason == "no_marker"
        assert result.attributed is False
        assert _referrals_for(user.id) == []

    def test_unknown_code_is_ignored(self, make_user):
        store = ReferralAttributionStore()
        user = make_user()

        result = store.attribute(user.id, "ABC123")

        assert result.reason == "unknown_code"
        assert _referrals_for(user.id) == []

    def test_valid_code_creates_referral(self, service, pro_user, make_user):
        ambassador, _ = service.apply(pro_user)
        referred = make_user(name="Rita Referred")
        store = ReferralAttributionStore()

        result = store.attribute(referred.id, ambassador.referral_code)

        assert result.created is True
        assert result.ambassador_id == ambassador.id
        rows = _referrals_for(referred.id)
        assert len(rows) == 1
        assert rows[0].ambassador_id == ambassador.id
        assert rows[0].status == ReferralStatus.TRIAL

        notification = result.notification
        assert notification.type == "referral_signup"
        assert notification.ambassador_email == pro_user.email
        assert notification.referred_user_email == referred.email
        assert notification.referred_user_name == "Rita Referred"

    def test_repeat_attribution_is_idempotent(self, service, pro_user, make_user):
        ambassador, _ = service.apply(pro_user)
        referred = make_user()
        store = ReferralAttributionStore()

        store.attribute(referred.id, ambassador.referral_code)
        second = store.attribute(referred.id, ambassador.referral_code)

        assert second.reason == "already_attributed"
        assert second.created is False
        assert second.notification is None
        assert len(_referrals_for(referred.id)) == 1

    def test_first_attribution_wins(self, service, pro_user, make_user):
        first_ambassador, _ = service.apply(pro_user)
        second_ambassador, _ = service.apply(make_user(plan=PlanTier.PREMIUM))
        referred = make_user()
        store = ReferralAttributionStore()

        store.attribute(referred.id, first_ambassador.referral_code)
        result = store.attribute(referred.id, second_ambassador.referral_code)

        assert result.created is False
        assert result.ambassador_id == first_ambassador.id
        rows = _referrals_for(referred.id)
        assert [r.ambassador_id for r in rows] == [first_ambassador.id]

    def test_self_referral_is_ignored(self, service, pro_user):
        ambassador, _ = service.apply(pro_user)
        store = ReferralAttributionStore()

        result = store.attribute(pro_user.id, ambassador.referral_code)

        assert result.reason == "self_referral"
        assert _referrals_for(pro_user.id) == []


def test_set_status_for_user(service, pro_user, make_user):
    ambassador, _ = service.apply(pro_user)
    referred = make_user()
    store = ReferralAttributionStore()
    store.attribute(referred.id, ambassador.referral_code)

    assert store.set_status_for_user(referred.id, ReferralStatus.ACTIVE_PRO) is True
    assert store.set_status_for_user(referred.id, ReferralStatus.ACTIVE_PRO) is False
    assert store.get_referral_for_user(referred.id).status == ReferralStatus.ACTIVE_PRO


def test_set_status_without_referral(make_user):
    assert ReferralAttributionStore().set_status_for_user(make_user().id, ReferralStatus.TRIAL) is False
