"""Staged knowledge base documents awaiting review."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def create_staged(
    title: str,
    content: str,
    category: str | None,
    comparison: dict[str, Any],
    source: str | None = None,
    uploaded_by: UUID | None = None,
) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_staging")
            .insert(
                {
                    "title": title,
                    "content": content,
                    "category": category,
                    "source": source,
                    "comparison_result": comparison,
                    "status": "pending",
                    "uploaded_by": str(uploaded_by) if uploaded_by else None,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from create_staged")

        staged = response.data[0]
        logger.info(f"Staged knowledge document {staged['id']} ({title})")
        return staged

    except Exception as e:
        logger.error(f"Failed to stage knowledge document: {e}")
        raise


def get_staged(staged_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table("kb_staging").select("*").eq("id", str(staged_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get staged document {staged_id}: {e}")
        raise


def list_staged(status: str | None = "pending") -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        query = supabase.table("kb_staging").select("*")
        if status:
            query = query.eq("status", status)
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list staged documents: {e}")
        raise


def set_review(
    staged_id: UUID,
    status: str,
    reviewed_by: UUID | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Mark a staged document approved or rejected."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_staging")
            .update(
                {
                    "status": status,
                    "reviewed_by": str(reviewed_by) if reviewed_by else None,
                    "reviewed_at": _utc_now_iso(),
                    "review_notes": notes,
                }
            )
            .eq("id", str(staged_id))
            .execute()
        )
        if not response.data:
            raise ValueError(f"Staged document not found: {staged_id}")

        logger.info(f"Staged document {staged_id} {status}")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to review staged document {staged_id}: {e}")
        raise
