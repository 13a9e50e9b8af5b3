"""Precedent (past case) database operations."""

from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def match_precedents(
    query_embedding: list[float],
    match_threshold: float,
    match_count: int,
) -> list[dict[str, Any]]:
    """
    Search precedents by vector similarity.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = supabase.rpc(
            "match_precedents",
            {
                "query_embedding": query_embedding,
                "match_threshold": match_threshold,
                "match_count": match_count,
            },
        ).execute()

        if not response.data:
            logger.info("No matching precedents found")
            return []

        return response.data

    except Exception as e:
        logger.error(f"Failed to search precedents: {e}")
        raise


def add_precedent(
    complaint_type: str,
    issue_category: str,
    outcome: str,
    embedding: list[float],
    resolution_time_days: int | None = None,
    compensation_amount: float | None = None,
    key_arguments: list[str] | None = None,
    effective_citations: list[str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("precedents")
            .insert(
                {
                    "complaint_type": complaint_type,
                    "issue_category": issue_category,
                    "outcome": outcome,
                    "resolution_time_days": resolution_time_days,
                    "compensation_amount": compensation_amount,
                    "key_arguments": key_arguments or [],
                    "effective_citations": effective_citations or [],
                    "metadata": metadata or {},
                    "embedding": embedding,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from add_precedent")

        precedent = response.data[0]
        logger.info(f"Added precedent {precedent['id']} ({complaint_type}/{issue_category})")
        return precedent

    except Exception as e:
        logger.error(f"Failed to add precedent: {e}")
        raise
