"""Ambassador program API v1 endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from pydantic import BaseModel, Field

from skillstudio.api.rate_limit import limiter
from skillstudio.auth.middleware import require_admin, require_auth
from skillstudio.auth.models import UserAccount
from skillstudio.logging_config import get_logger
from skillstudio.referral.ambassador import AmbassadorService, ambassador_service
from skillstudio.referral.attribution import exchange_marker
from skillstudio.referral.ledger import commission_ledger

logger = get_logger(__name__)

router = APIRouter(prefix="/ambassador", tags=["ambassador"])

# Mounted only when debug routes are enabled outside production
debug_router = APIRouter(prefix="/ambassador", tags=["ambassador-debug"])

admin_router = APIRouter(prefix="/admin/ambassadors", tags=["admin"])


def get_ambassador_service() -> AmbassadorService:
    """Service dependency (overridden in tests with a fake payout processor)."""
    return ambassador_service


# ==================== MODELS ====================


class VerifyPostsRequest(BaseModel):
    """Proof-of-work post links."""
    links: list[str] = Field(default_factory=list, max_length=20)


class TrackReferralRequest(BaseModel):
    """Optional explicit code; the ``ref_code`` cookie is used otherwise."""
    referral_code: str | None = Field(default=None, max_length=32)


# ==================== ONBOARDING ====================


@router.post("/apply")
@limiter.limit("10/minute")
async def apply(
    request: Request,
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Join the ambassador program (Pro members only).

    Applying twice returns the existing profile unchanged.
    """
    ambassador, created = service.apply(user)
    return {
        "success": True,
        "created": created,
        "ambassador": ambassador.to_dict(),
    }


@router.post("/verify-posts")
async def verify_posts(
    body: VerifyPostsRequest,
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Submit social proof links (at least three)."""
    ambassador = service.submit_social_proof(user, body.links)
    return {
        "success": True,
        "step": ambassador.onboarding_step,
        "social_posts_completed": ambassador.social_posts_completed,
    }


@router.post("/complete-training")
async def complete_training(
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Mark the training as viewed."""
    ambassador = service.complete_training(user)
    return {"success": True, "step": ambassador.onboarding_step}


@router.post("/connect")
async def connect_payout(
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Start or resume Stripe Connect onboarding.

    Returns the Connect dashboard instead once Stripe reports the account
    verified.
    """
    link = service.begin_payout_onboarding(user)
    return {"success": True, "url": link.url, "status": link.status}


@router.post("/disconnect")
async def disconnect_payout(
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Unlink the payout account."""
    ambassador = service.disconnect_payout(user)
    return {"success": True, "step": ambassador.onboarding_step}


# ==================== DASHBOARD ====================


@router.get("/stats")
async def get_stats(
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Dashboard stats.

    Backfills a missing referral code and re-checks payout verification
    before answering.
    """
    stats = service.get_stats(user)
    return {"success": True, **stats}


@router.get("/commissions")
async def list_commissions(
    limit: int = Query(50, ge=1, le=200),
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Most recent commission entries."""
    ambassador = service.require_for_user(user.id)
    commissions = commission_ledger.list_for_ambassador(ambassador.id, limit=limit)

    return {
        "success": True,
        "commissions": [
            {
                "id": c.id,
                "amount_cents": c.amount,
                "status": c.status.value,
                "kind": c.kind.value,
                "created_at": c.created_at.isoformat() if c.created_at else None,
                "paid_at": c.paid_at.isoformat() if c.paid_at else None,
            }
            for c in commissions
        ],
    }


# ==================== ATTRIBUTION ====================


@router.post("/track-referral")
async def track_referral(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    body: TrackReferralRequest | None = None,
    user: UserAccount = Depends(require_auth),
):
    """Turn the visitor's referral marker into a referral.

    Called by the frontend after sign-in. Without a marker this is a no-op;
    with one, the cookie is consumed whether or not the code was valid.
    """
    result = exchange_marker(
        request,
        response,
        background_tasks,
        user_id=user.id,
        code=body.referral_code if body else None,
    )
    return {"success": True, "attributed": result.attributed, "reason": result.reason}


# ==================== DEBUG ====================


@debug_router.post("/debug-advance")
async def debug_advance(
    user: UserAccount = Depends(require_auth),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Bump the onboarding step by one, skipping every check. Testing only."""
    ambassador = service.debug_advance(user.id)
    return {"success": True, "step": ambassador.onboarding_step}


# ==================== ADMIN ====================


@admin_router.get("/overview")
async def program_overview(
    admin: UserAccount = Depends(require_admin),
    service: AmbassadorService = Depends(get_ambassador_service),
):
    """Ambassador counts for the admin analytics dashboard."""
    return {"success": True, **service.program_overview()}
