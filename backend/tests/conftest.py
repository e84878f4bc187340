# backend/tests/conftest.py
import os
from collections.abc import Callable

# Settings are read at import time, so point everything at test values first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["SITE_URL"] = "https://studio.test"
os.environ.pop("AMBASSADOR_WEBHOOK_URL", None)
os.environ.pop("STRIPE_SECRET_KEY", None)

import pytest
from fastapi.testclient import TestClient

from skillstudio.auth.local import LocalAuthService
from skillstudio.auth.models import PlanTier, UserAccount
from skillstudio.errors import UpstreamError
from skillstudio.payments.stripe_service import PayoutAccount
from skillstudio.referral.ambassador import AmbassadorService
from skillstudio.referral.models import Ambassador
from skillstudio.storage.db import db


class FakePayoutProcessor:
    """In-memory stand-in for Stripe Connect."""

    def __init__(self):
        self.accounts: dict[str, bool] = {}
        self.fail_create_with: str | None = None
        self.refuse_login_links = False
        self.onboarding_links: list[tuple[str, str, str]] = []
        # Runs after an account is created, before the caller stores it
        self.on_create: Callable[[str], None] | None = None

    def verify(self, account_id: str) -> None:
        self.accounts[account_id] = True

    def create_sub_account(self, owner_email: str) -> str:
        if self.fail_create_with:
            raise UpstreamError(self.fail_create_with)
        account_id = f"acct_test_{len(self.accounts) + 1}"
        self.accounts[account_id] = False
        if self.on_create:
            self.on_create(account_id)
        return account_id

    def retrieve_account(self, account_id: str) -> PayoutAccount:
        return PayoutAccount(id=account_id, verified=self.accounts.get(account_id, False))

    def create_onboarding_link(self, account_id: str, return_url: str, refresh_url: str) -> str:
        self.onboarding_links.append((account_id, return_url, refresh_url))
        return f"https://connect.test/onboarding/{account_id}"

    def create_dashboard_login_link(self, account_id: str) -> str:
        if self.refuse_login_links:
            raise UpstreamError("Login links are not supported for this account")
        return f"https://connect.test/dashboard/{account_id}"


@pytest.fixture(autouse=True)
def database():
    """Fresh in-memory schema for every test."""
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def processor() -> FakePayoutProcessor:
    return FakePayoutProcessor()


@pytest.fixture
def service(processor) -> AmbassadorService:
    return AmbassadorService(processor=processor)


@pytest.fixture
def make_user():
    """Insert a user directly (no bcrypt round trip)."""
    counter = {"n": 0}

    def _make(email: str | None = None, plan: PlanTier = PlanTier.FREE, name: str | None = None) -> UserAccount:
        counter["n"] += 1
        with db.session() as session:
            user = UserAccount(
                email=email or f"user{counter['n']}@example.com",
                name=name,
                plan=plan,
                is_active=True,
            )
            session.add(user)
            session.flush()
            session.refresh(user)
        return user

    return _make


@pytest.fixture
def pro_user(make_user) -> UserAccount:
    return make_user(email="ambassador@example.com", plan=PlanTier.PREMIUM, name="Amy Ambassador")


@pytest.fixture
def ambassador_row():
    """Read an ambassador straight from the table."""

    def _get(user_id: int) -> Ambassador | None:
        with db.session() as session:
            return session.query(Ambassador).filter(Ambassador.user_id == user_id).first()

    return _get


@pytest.fixture
def auth_headers():
    auth = LocalAuthService()

    def _headers(user: UserAccount) -> dict[str, str]:
        return {"Authorization": f"Bearer {auth.create_access_token(user)}"}

    return _headers


@pytest.fixture
def app(service):
    from skillstudio.api.main import create_app
    from skillstudio.api.v1.ambassador import get_ambassador_service

    application = create_app()
    application.dependency_overrides[get_ambassador_service] = lambda: service
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
