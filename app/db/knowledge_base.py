"""Knowledge base table, vector search RPCs and ingestion log."""

from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

LIST_COLUMNS = "id, title, category, source, document_type, created_at, updated_at"


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Vector / keyword search
# ============================================================================


def match_knowledge_base(
    query_embedding: list[float],
    match_threshold: float,
    match_count: int,
) -> list[dict[str, Any]]:
    """
    Search knowledge base entries by vector similarity.

    Args:
        query_embedding: Query embedding vector
        match_threshold: Minimum cosine similarity
        match_count: Number of results to return

    Returns:
        Matching entries with a ``similarity`` score

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = supabase.rpc(
            "match_knowledge_base",
            {
                "query_embedding": query_embedding,
                "match_threshold": match_threshold,
                "match_count": match_count,
            },
        ).execute()

        return response.data or []

    except Exception as e:
        logger.error(f"Failed to search knowledge base: {e}")
        raise


def match_knowledge_base_filtered(
    query_embedding: list[float],
    match_threshold: float,
    match_count: int,
    categories: list[str] | None = None,
    document_types: list[str] | None = None,
    include_superseded: bool = False,
) -> list[dict[str, Any]]:
    """Vector search restricted to categories and document types."""
    supabase = get_supabase()

    try:
        response = supabase.rpc(
            "match_knowledge_base_filtered",
            {
                "query_embedding": query_embedding,
                "match_threshold": match_threshold,
                "match_count": match_count,
                "category_filter": categories or None,
                "document_type_filter": document_types or None,
                "include_superseded": include_superseded,
            },
        ).execute()

        return response.data or []

    except Exception as e:
        logger.error(f"Failed filtered knowledge base search: {e}")
        raise


def keyword_search(query: str, limit: int) -> list[dict[str, Any]]:
    """Full-text search over ``content`` (websearch syntax)."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("knowledge_base")
            .select("id, title, content, category, source, metadata")
            .text_search("content", query, options={"type": "websearch", "config": "english"})
            .limit(limit)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed keyword search: {e}")
        raise


# ============================================================================
# Listing
# ============================================================================


def list_entries(
    category: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        query = supabase.table("knowledge_base").select(LIST_COLUMNS)
        if category:
            query = query.eq("category", category)
        response = (
            query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list knowledge base entries: {e}")
        raise


def get_entry(entry_id: str) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table("knowledge_base").select("*").eq("id", entry_id).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get knowledge base entry {entry_id}: {e}")
        raise


def get_categories() -> list[dict[str, Any]]:
    """Distinct categories with entry counts, alphabetical."""
    supabase = get_supabase()

    try:
        rows = supabase.table("knowledge_base").select("category").execute().data or []

    except Exception as e:
        logger.error(f"Failed to fetch knowledge base categories: {e}")
        raise

    counts: dict[str, int] = {}
    for row in rows:
        category = row.get("category")
        if category:
            counts[category] = counts.get(category, 0) + 1

    return [{"category": name, "count": counts[name]} for name in sorted(counts)]


def get_timeline(limit: int = 20) -> list[dict[str, Any]]:
    """Most recently added or updated entries."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("knowledge_base")
            .select(LIST_COLUMNS)
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to fetch knowledge base timeline: {e}")
        raise


# ============================================================================
# Writes
# ============================================================================


def add_entry(
    category: str,
    title: str,
    content: str,
    embedding: list[float],
    source: str | None = None,
    source_url: str | None = None,
    document_type: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Insert a knowledge base entry with its embedding.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("knowledge_base")
            .insert(
                {
                    "category": category,
                    "title": title,
                    "content": content,
                    "embedding": embedding,
                    "source": source,
                    "source_url": source_url,
                    "document_type": document_type,
                    "metadata": metadata or {},
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from add_entry")

        entry = response.data[0]
        logger.info(f"Added knowledge base entry {entry['id']} ({category}: {title})")
        return entry

    except Exception as e:
        logger.error(f"Failed to add knowledge base entry: {e}")
        raise


def find_manual_chunk(
    section_reference: str,
    manual_code: str,
    citation_format: str,
) -> dict[str, Any] | None:
    """Existing ingested chunk for a manual section part, if any."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("knowledge_base")
            .select("id, content")
            .eq("section_reference", section_reference)
            .eq("manual_code", manual_code)
            .eq("citation_format", citation_format)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to look up chunk {citation_format}: {e}")
        raise


def insert_manual_chunk(row: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = supabase.table("knowledge_base").insert(row).execute()
        if not response.data:
            raise ValueError("No data returned from insert_manual_chunk")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to insert chunk {row.get('citation_format')}: {e}")
        raise


def update_manual_chunk(entry_id: str, updates: dict[str, Any]) -> None:
    supabase = get_supabase()

    try:
        supabase.table("knowledge_base").update(
            {**updates, "updated_at": _utc_now_iso()}
        ).eq("id", entry_id).execute()

    except Exception as e:
        logger.error(f"Failed to update knowledge base entry {entry_id}: {e}")
        raise


def touch_last_checked(entry_id: str) -> None:
    supabase = get_supabase()

    try:
        supabase.table("knowledge_base").update({"last_checked_at": _utc_now_iso()}).eq(
            "id", entry_id
        ).execute()

    except Exception as e:
        logger.error(f"Failed to touch knowledge base entry {entry_id}: {e}")
        raise


def insert_ingestion_log(summary: dict[str, Any]) -> dict[str, Any] | None:
    """Record a manual ingestion run in knowledge_ingestion_log."""
    supabase = get_supabase()
    status = "partial" if summary.get("errors") else "completed"

    try:
        response = (
            supabase.table("knowledge_ingestion_log")
            .insert(
                {
                    "source": summary.get("manual_code"),
                    "status": status,
                    "sections_processed": summary.get("sections_processed", 0),
                    "chunks_created": summary.get("chunks_created", 0),
                    "chunks_added": summary.get("added", 0),
                    "chunks_updated": summary.get("updated", 0),
                    "chunks_unchanged": summary.get("unchanged", 0),
                    "errors": summary.get("errors", []),
                    "duration_ms": summary.get("duration_ms"),
                    "completed_at": _utc_now_iso(),
                }
            )
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to write ingestion log: {e}")
        raise
