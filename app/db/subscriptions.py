"""Subscription tier database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.core.rate_limiter import API_KEY_TIER_LIMITS
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def list_tiers(include_hidden: bool = False) -> list[dict[str, Any]]:
    """Active tiers in display order."""
    supabase = get_supabase()

    try:
        query = supabase.table("subscription_tiers").select("*").eq("is_active", True)
        if not include_hidden:
            query = query.eq("is_visible", True)
        response = query.order("sort_order").execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list subscription tiers: {e}")
        raise


def get_tier(tier_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("subscription_tiers").select("*").eq("id", str(tier_id)).execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get subscription tier {tier_id}: {e}")
        raise


def create_tier(tier: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("subscription_tiers").insert({**tier, "is_active": True}).execute()
        )
        if not response.data:
            raise ValueError("No data returned from create_tier")

        logger.info(f"Created subscription tier {tier.get('name')}")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to create subscription tier: {e}")
        raise


def update_tier(tier_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("subscription_tiers")
            .update({**updates, "updated_at": _utc_now_iso()})
            .eq("id", str(tier_id))
            .execute()
        )
        if not response.data:
            raise ValueError(f"Subscription tier not found: {tier_id}")

        logger.info(f"Updated subscription tier {tier_id}")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to update subscription tier {tier_id}: {e}")
        raise


def api_key_rate_limit_for_tier(tier_name: str) -> int | None:
    """Hourly API-key request allowance for a tier (None means unlimited)."""
    key = tier_name.lower()
    if key not in API_KEY_TIER_LIMITS:
        raise ValueError(f"Unknown tier: {tier_name}")
    return API_KEY_TIER_LIMITS[key]
