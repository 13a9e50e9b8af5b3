"""Knowledge base chat conversations and messages."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

TITLE_MAX_CHARS = 50


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def conversation_title(first_message: str) -> str:
    """First message, cut to 47 chars plus an ellipsis when too long."""
    text = first_message.strip()
    if len(text) > TITLE_MAX_CHARS:
        return text[: TITLE_MAX_CHARS - 3] + "..."
    return text


def create_conversation(user_id: UUID, first_message: str) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_chat_conversations")
            .insert({"user_id": str(user_id), "title": conversation_title(first_message)})
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from create_conversation")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to create conversation: {e}")
        raise


def get_conversation(conversation_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_chat_conversations")
            .select("*")
            .eq("id", str(conversation_id))
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get conversation {conversation_id}: {e}")
        raise


def list_conversations(user_id: UUID, limit: int = 20) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_chat_conversations")
            .select("*")
            .eq("user_id", str(user_id))
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list conversations: {e}")
        raise


def add_message(
    conversation_id: UUID,
    role: str,
    content: str,
    sources: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Append a message and bump the conversation's updated_at."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_chat_messages")
            .insert(
                {
                    "conversation_id": str(conversation_id),
                    "role": role,
                    "content": content,
                    "sources": sources or [],
                }
            )
            .execute()
        )
        if not response.data:
            raise ValueError("No data returned from add_message")

        supabase.table("kb_chat_conversations").update({"updated_at": _utc_now_iso()}).eq(
            "id", str(conversation_id)
        ).execute()

        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to add chat message: {e}")
        raise


def list_messages(conversation_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("kb_chat_messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at")
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list chat messages: {e}")
        raise
