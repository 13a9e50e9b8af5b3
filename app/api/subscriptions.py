"""API endpoints for subscription tiers."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import AuthContext, require_admin
from app.core.logging import get_logger
from app.core.schemas_subscriptions import TierCreate, TierUpdate
from app.db import subscriptions

logger = get_logger(__name__)

router = APIRouter()


@router.get("/tiers")
async def list_tiers(
    include_hidden: bool = Query(False),
) -> dict:
    """Active tiers, ordered for display. Hidden tiers only on request."""
    try:
        return {"tiers": subscriptions.list_tiers(include_hidden=include_hidden)}

    except Exception:
        logger.exception("Failed to list subscription tiers")
        raise HTTPException(status_code=500, detail="Failed to list tiers")


@router.get("/tiers/{tier_id}")
async def get_tier(tier_id: UUID) -> dict:
    try:
        tier = subscriptions.get_tier(tier_id)
        if not tier:
            raise HTTPException(status_code=404, detail="Tier not found")
        return tier

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get tier {tier_id}")
        raise HTTPException(status_code=500, detail="Failed to get tier")


@router.post("/tiers", status_code=201)
async def create_tier(body: TierCreate, auth: AuthContext = Depends(require_admin)) -> dict:
    try:
        return subscriptions.create_tier(body.model_dump())

    except Exception:
        logger.exception(f"Failed to create tier {body.name}")
        raise HTTPException(status_code=500, detail="Failed to create tier")


@router.patch("/tiers/{tier_id}")
async def update_tier(
    tier_id: UUID,
    body: TierUpdate,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")

    try:
        return subscriptions.update_tier(tier_id, updates)

    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception:
        logger.exception(f"Failed to update tier {tier_id}")
        raise HTTPException(status_code=500, detail="Failed to update tier")


@router.get("/api-key-limits/{tier_name}")
async def get_api_key_limit(tier_name: str) -> dict:
    """Hourly API request allowance for a tier (None means unlimited)."""
    try:
        return {"tier": tier_name, "requests_per_hour": subscriptions.api_key_rate_limit_for_tier(tier_name)}

    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
