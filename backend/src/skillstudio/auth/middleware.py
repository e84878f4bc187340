"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from skillstudio.auth.local import LocalAuthService
from skillstudio.auth.models import UserAccount
from skillstudio.errors import PermissionDenied, Unauthorized
from skillstudio.logging_config import get_logger

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Auth service instance
auth_service = LocalAuthService()


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> UserAccount | None:
    """Get current authenticated user.

    Args:
        request: FastAPI request
        credentials: Bearer token

    Returns:
        User account or None if not authenticated
    """
    if not credentials:
        return None

    user = auth_service.get_user_from_token(credentials.credentials)

    if user:
        request.state.user = user

    return user


def require_auth(user: UserAccount | None = Depends(get_current_user)) -> UserAccount:
    """Require authentication.

    Raises:
        Unauthorized: no credential, or it did not resolve to an active user
    """
    if not user:
        raise Unauthorized()
    return user


def require_admin(user: UserAccount = Depends(require_auth)) -> UserAccount:
    """Require admin privileges.

    Raises:
        PermissionDenied: user is not an admin
    """
    if not user.is_admin:
        raise PermissionDenied("Admin access required", code="admin_required")
    return user
