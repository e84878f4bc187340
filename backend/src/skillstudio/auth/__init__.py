"""Authentication: local accounts, JWT bearer tokens, plan tiers."""

from skillstudio.auth.models import PlanTier, User, UserAccount
from skillstudio.auth.local import LocalAuthService
from skillstudio.auth.middleware import get_current_user, require_admin, require_auth

__all__ = [
    "PlanTier",
    "User",
    "UserAccount",
    "LocalAuthService",
    "get_current_user",
    "require_admin",
    "require_auth",
]
