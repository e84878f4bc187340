"""HTTP tests for the auth, ambassador and webhook routers."""

import json

import pytest
from fastapi.testclient import TestClient

from skillstudio.auth.models import PlanTier, UserAccount
from skillstudio.referral.models import Ambassador, Commission, Referral
from skillstudio.settings import settings
from skillstudio.storage.db import db

LINKS = [
    "https://www.tiktok.com/@amy/video/1",
    "https://www.instagram.com/p/abc",
    "https://x.com/amy/status/42",
]


def _referrals() -> list[Referral]:
    with db.session() as session:
        return session.query(Referral).all()


def _ambassador_count() -> int:
    with db.session() as session:
        return session.query(Ambassador).count()


class TestErrors:
    def test_missing_credential_is_401(self, client):
        response = client.post("/api/v1/ambassador/apply")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "code": "unauthorized"}

    def test_bad_token_is_401(self, client):
        response = client.get("/api/v1/ambassador/stats", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_body_validation_uses_error_shape(self, client, pro_user, auth_headers):
        response = client.post(
            "/api/v1/ambassador/verify-posts",
            json={"links": "not-a-list"},
            headers=auth_headers(pro_user),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestApplyEndpoint:
    def test_free_user_gets_upgrade_reason(self, client, make_user, auth_headers):
        user = make_user(plan=PlanTier.FREE)

        response = client.post("/api/v1/ambassador/apply", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["code"] == "requires_pro"
        assert _ambassador_count() == 0

    def test_apply_is_idempotent(self, client, pro_user, auth_headers):
        first = client.post("/api/v1/ambassador/apply", headers=auth_headers(pro_user))
        second = client.post("/api/v1/ambassador/apply", headers=auth_headers(pro_user))

        assert first.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["created"] is True
        assert second.json()["created"] is False
        assert second.json()["ambassador"]["referral_code"] == first.json()["ambassador"]["referral_code"]
        assert _ambassador_count() == 1


class TestOnboardingFlow:
    def test_verify_posts_needs_three_links(self, client, pro_user, auth_headers):
        headers = auth_headers(pro_user)
        client.post("/api/v1/ambassador/apply", headers=headers)

        response = client.post("/api/v1/ambassador/verify-posts", json={"links": LINKS[:2]}, headers=headers)

        assert response.status_code == 400
        assert "at least 3" in response.json()["error"]

    def test_connect_before_training_is_forbidden(self, client, pro_user, auth_headers):
        headers = auth_headers(pro_user)
        client.post("/api/v1/ambassador/apply", headers=headers)

        response = client.post("/api/v1/ambassador/connect", headers=headers)

        assert response.status_code == 403
        assert response.json()["code"] == "training_required"

    def test_connect_failure_shows_upstream_message(self, client, processor, pro_user, auth_headers):
        headers = auth_headers(pro_user)
        client.post("/api/v1/ambassador/apply", headers=headers)
        client.post("/api/v1/ambassador/verify-posts", json={"links": LINKS}, headers=headers)
        processor.fail_create_with = "Connect is not enabled on this platform."

        response = client.post("/api/v1/ambassador/connect", headers=headers)

        assert response.status_code == 502
        assert response.json()["error"] == "Connect is not enabled on this platform."

    def test_full_flow(self, client, processor, pro_user, auth_headers):
        headers = auth_headers(pro_user)

        assert client.post("/api/v1/ambassador/apply", headers=headers).json()["ambassador"]["onboarding_step"] == 1

        response = client.post("/api/v1/ambassador/verify-posts", json={"links": LINKS}, headers=headers)
        assert response.json() == {"success": True, "step": 2, "social_posts_completed": 3}

        assert client.post("/api/v1/ambassador/complete-training", headers=headers).json()["step"] == 2

        connect = client.post("/api/v1/ambassador/connect", headers=headers).json()
        assert connect["status"] == "onboarding"
        assert connect["url"].startswith("https://connect.test/onboarding/")

        stats = client.get("/api/v1/ambassador/stats", headers=headers).json()
        assert stats["success"] is True
        assert stats["ambassador"]["onboarding_step"] == 3
        assert stats["payout"]["status"] == "pending_verification"

        processor.verify(stats["ambassador"]["stripe_account_id"])

        stats = client.get("/api/v1/ambassador/stats", headers=headers).json()
        assert stats["ambassador"]["onboarding_step"] == 4
        assert stats["payout"]["status"] == "verified"
        assert stats["payout"]["dashboard_url"].startswith("https://connect.test/dashboard/")
        assert stats["stats"]["total_earned_cents"] == 0

        connect = client.post("/api/v1/ambassador/connect", headers=headers).json()
        assert connect["status"] == "complete"

        disconnect = client.post("/api/v1/ambassador/disconnect", headers=headers).json()
        assert disconnect == {"success": True, "step": 2}

    def test_stats_for_non_ambassador_is_404(self, client, pro_user, auth_headers):
        response = client.get("/api/v1/ambassador/stats", headers=auth_headers(pro_user))

        assert response.status_code == 404
        assert response.json()["code"] == "not_ambassador"

    def test_commissions_listing(self, client, service, pro_user, auth_headers):
        from skillstudio.referral.ledger import commission_ledger

        ambassador, _ = service.apply(pro_user)
        commission_ledger.accrue(ambassador.id, 1000)

        response = client.get("/api/v1/ambassador/commissions", headers=auth_headers(pro_user))

        [entry] = response.json()["commissions"]
        assert entry["amount_cents"] == 1000
        assert entry["status"] == "pending"

    @pytest.mark.parametrize("limit", [0, -1, 500])
    def test_commissions_limit_out_of_range(self, client, service, pro_user, auth_headers, limit):
        service.apply(pro_user)

        response = client.get(
            "/api/v1/ambassador/commissions", params={"limit": limit}, headers=auth_headers(pro_user)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


class TestDebugRoute:
    def test_not_mounted_by_default(self, client, pro_user, auth_headers):
        response = client.post("/api/v1/ambassador/debug-advance", headers=auth_headers(pro_user))

        assert response.status_code == 404

    def test_mounted_when_enabled(self, monkeypatch, service, pro_user, auth_headers):
        from skillstudio.api.main import create_app
        from skillstudio.api.v1.ambassador import get_ambassador_service

        monkeypatch.setattr(settings, "enable_debug_routes", True)
        app = create_app()
        app.dependency_overrides[get_ambassador_service] = lambda: service
        client = TestClient(app)
        service.apply(pro_user)

        response = client.post("/api/v1/ambassador/debug-advance", headers=auth_headers(pro_user))

        assert response.json() == {"success": True, "step": 2}

    def test_never_mounted_in_production(self, monkeypatch):
        monkeypatch.setattr(settings, "enable_debug_routes", True)
        monkeypatch.setattr(settings, "env", "production")

        assert settings.debug_routes_enabled is False


class TestReferralAttribution:
    def test_ref_param_sets_cookie(self, client):
        response = client.get("/health", params={"ref": "ABC123"})

        assert response.status_code == 200
        assert client.cookies.get("ref_code") == "ABC123"
        assert "httponly" not in response.headers["set-cookie"].lower()

    def test_register_with_cookie_attributes_and_consumes_marker(self, client, service, pro_user):
        ambassador, _ = service.apply(pro_user)
        client.get("/health", params={"ref": ambassador.referral_code})

        response = client.post("/api/v1/auth/register", json={
            "email": "rita@example.com",
            "password": "correct-horse-battery",
            "name": "Rita",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["referral_attributed"] is True
        assert body["access_token"]
        assert "ref_code" not in client.cookies

        [referral] = _referrals()
        assert referral.ambassador_id == ambassador.id
        assert referral.referred_user_id == body["user"]["id"]

    def test_register_with_unknown_code_is_silent(self, client):
        client.get("/health", params={"ref": "ABC123"})

        response = client.post("/api/v1/auth/register", json={
            "email": "rita@example.com",
            "password": "correct-horse-battery",
        })

        assert response.status_code == 201
        assert response.json()["referral_attributed"] is False
        assert _referrals() == []

    def test_register_with_code_in_body(self, client, service, pro_user):
        ambassador, _ = service.apply(pro_user)

        response = client.post("/api/v1/auth/register", json={
            "email": "rita@example.com",
            "password": "correct-horse-battery",
            "referral_code": ambassador.referral_code,
        })

        assert response.json()["referral_attributed"] is True

    def test_duplicate_email_is_rejected(self, client):
        payload = {"email": "rita@example.com", "password": "correct-horse-battery"}
        client.post("/api/v1/auth/register", json=payload)

        response = client.post("/api/v1/auth/register", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "email_taken"

    def test_login_exchanges_marker(self, client, service, pro_user):
        ambassador, _ = service.apply(pro_user)
        client.post("/api/v1/auth/register", json={
            "email": "rita@example.com",
            "password": "correct-horse-battery",
        })
        client.get("/health", params={"ref": ambassador.referral_code})

        response = client.post("/api/v1/auth/login", json={
            "email": "rita@example.com",
            "password": "correct-horse-battery",
        })

        assert response.status_code == 200
        assert response.json()["referral_attributed"] is True
        assert len(_referrals()) == 1

    def test_login_with_wrong_password(self, client):
        client.post("/api/v1/auth/register", json={
            "email": "rita@example.com",
            "password": "correct-horse-battery",
        })

        response = client.post("/api/v1/auth/login", json={
            "email": "rita@example.com",
            "password": "wrong-password-here",
        })

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_credentials"

    def test_track_referral_without_marker(self, client, make_user, auth_headers):
        user = make_user()

        response = client.post("/api/v1/ambassador/track-referral", headers=auth_headers(user))

        assert response.json() == {"success": True, "attributed": False, "reason": "no_marker"}

    def test_track_referral_twice_is_idempotent(self, client, service, pro_user, make_user, auth_headers):
        ambassador, _ = service.apply(pro_user)
        user = make_user()
        headers = auth_headers(user)

        client.get("/health", params={"ref": ambassador.referral_code})
        first = client.post("/api/v1/ambassador/track-referral", headers=headers).json()
        second = client.post(
            "/api/v1/ambassador/track-referral",
            json={"referral_code": ambassador.referral_code},
            headers=headers,
        ).json()

        assert first["attributed"] is True
        assert second == {"success": True, "attributed": False, "reason": "already_attributed"}
        assert len(_referrals()) == 1

    def test_me(self, client, pro_user, auth_headers):
        response = client.get("/api/v1/auth/me", headers=auth_headers(pro_user))

        assert response.json()["email"] == pro_user.email
        assert response.json()["plan"] == "premium"


class TestStripeWebhook:
    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        import skillstudio.api.v1.webhooks as webhooks

        monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
        monkeypatch.setattr(webhooks, "verify_webhook_signature", lambda payload, sig: None)

    def _post(self, client, event: dict):
        return client.post(
            "/api/v1/webhooks/stripe",
            content=json.dumps(event),
            headers={"stripe-signature": "t=1,v1=test", "content-type": "application/json"},
        )

    def test_checkout_accrues_commission_once(self, client, service, pro_user, make_user):
        ambassador, _ = service.apply(pro_user)
        with db.session() as session:
            session.query(Ambassador).filter(Ambassador.id == ambassador.id).update(
                {Ambassador.stripe_account_id: "acct_linked"}, synchronize_session=False
            )
        referred = make_user()
        with db.session() as session:
            session.query(UserAccount).filter(UserAccount.id == referred.id).update(
                {UserAccount.stripe_customer_id: "cus_1"}, synchronize_session=False
            )
            session.add(Referral(ambassador_id=ambassador.id, referred_user_id=referred.id))

        event = {
            "id": "evt_checkout",
            "type": "checkout.session.completed",
            "data": {"object": {"mode": "subscription", "customer": "cus_1", "amount_total": 100}},
        }

        first = self._post(client, event)
        second = self._post(client, event)

        assert first.json() == {"received": True}
        assert second.json() == {"received": True, "duplicate": True}
        with db.session() as session:
            assert session.query(Commission).count() == 1

    def test_unhandled_event(self, client):
        response = self._post(client, {"id": "evt_r", "type": "charge.refunded", "data": {"object": {}}})

        assert response.json() == {"received": True}

    def test_invalid_signature(self, client, monkeypatch):
        import skillstudio.api.v1.webhooks as webhooks

        def reject(payload, sig):
            raise ValueError("Invalid webhook signature")

        monkeypatch.setattr(webhooks, "verify_webhook_signature", reject)

        response = self._post(client, {"id": "evt", "type": "x", "data": {"object": {}}})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid webhook signature"

    def test_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", None)

        response = self._post(client, {"id": "evt", "type": "x", "data": {"object": {}}})

        assert response.status_code == 503


def test_require_admin(make_user):
    from skillstudio.auth.middleware import require_admin
    from skillstudio.errors import PermissionDenied

    with db.session() as session:
        admin = UserAccount(email="ops@example.com", plan=PlanTier.ADMIN, is_admin=True, is_active=True)
        session.add(admin)

    assert require_admin(admin) is admin
    with pytest.raises(PermissionDenied) as exc_info:
        require_admin(make_user())
    assert exc_info.value.code == "admin_required"


class TestAdminOverview:
    @pytest.fixture
    def admin(self):
        with db.session() as session:
            user = UserAccount(email="ops@example.com", plan=PlanTier.ADMIN, is_admin=True, is_active=True)
            session.add(user)
            session.flush()
            session.refresh(user)
        return user

    def test_counts_ambassadors(self, client, service, admin, pro_user, auth_headers):
        service.apply(pro_user)

        response = client.get("/api/v1/admin/ambassadors/overview", headers=auth_headers(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["total_ambassadors"] == 1
        assert body["by_step"]["applied"] == 1

    def test_non_admin_is_forbidden(self, client, pro_user, auth_headers):
        response = client.get("/api/v1/admin/ambassadors/overview", headers=auth_headers(pro_user))

        assert response.status_code == 403
        assert response.json()["code"] == "admin_required"

    def test_anonymous_is_unauthorized(self, client):
        response = client.get("/api/v1/admin/ambassadors/overview")

        assert response.status_code == 401
