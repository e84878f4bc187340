"""Authentication API v1 endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response, status

from skillstudio.api.rate_limit import limiter
from skillstudio.auth.local import LocalAuthService
from skillstudio.auth.middleware import require_auth
from skillstudio.auth.models import TokenResponse, User, UserAccount, UserCreate, UserLogin
from skillstudio.errors import Unauthorized
from skillstudio.logging_config import get_logger
from skillstudio.referral.attribution import exchange_marker
from skillstudio.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Services
auth_service = LocalAuthService()


def _token_response(user: UserAccount, referral_attributed: bool) -> TokenResponse:
    return TokenResponse(
        access_token=auth_service.create_access_token(user),
        token_type="bearer",
        expires_in=settings.jwt_expire_hours * 3600,
        user=User.model_validate(user),
        referral_attributed=referral_attributed,
    )


# ==================== ENDPOINTS ====================


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    body: UserCreate,
):
    """Register a new user account.

    A referral code in the body, or the ``ref_code`` cookie left by a
    referral link, attributes the new user to that ambassador.
    """
    user = auth_service.create_user(
        email=body.email,
        password=body.password,
        name=body.name,
    )

    result = exchange_marker(
        request,
        response,
        background_tasks,
        user_id=user.id,
        code=body.referral_code,
    )

    logger.info(
        "user_registered",
        user_id=user.id,
        referred_by=result.ambassador_id if result.attributed else None,
    )

    return _token_response(user, result.attributed)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    body: UserLogin,
):
    """Log in with email and password.

    A pending referral marker is exchanged here as well, so a visitor who
    clicked a link before signing in on this device is still attributed.
    """
    user = auth_service.authenticate(body.email, body.password)
    if not user:
        logger.warning("login_failed", email=body.email)
        raise Unauthorized("Invalid email or password", code="invalid_credentials")

    result = exchange_marker(request, response, background_tasks, user_id=user.id)

    return _token_response(user, result.attributed)


@router.get("/me", response_model=User)
async def get_me(user: UserAccount = Depends(require_auth)):
    """Get current user."""
    return User.model_validate(user)
