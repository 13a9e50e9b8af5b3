"""Generated letter database operations."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.db.complaints import add_timeline_event
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


class LetterStateError(ValueError):
    """Raised when a letter's state forbids the requested change."""


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def save_letter(
    complaint_id: UUID,
    letter_type: str,
    letter_content: str,
    notes: str | None = None,
    created_by: UUID | None = None,
) -> dict[str, Any]:
    """
    Insert a generated_letters row.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("generated_letters")
            .insert(
                {
                    "complaint_id": str(complaint_id),
                    "letter_type": letter_type,
                    "letter_content": letter_content,
                    "notes": notes,
                    "created_by": str(created_by) if created_by else None,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from save_letter")

        letter = response.data[0]
        logger.info(
            f"Saved {letter_type} letter ({len(letter_content)} chars)",
            extra={"complaint_id": str(complaint_id), "letter_id": letter["id"]},
        )
        return letter

    except Exception as e:
        logger.error(
            f"Failed to save letter: {e}", extra={"complaint_id": str(complaint_id)}
        )
        raise


def get_letter(letter_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("generated_letters").select("*").eq("id", str(letter_id)).execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get letter {letter_id}: {e}")
        raise


def _require_letter(letter_id: UUID) -> dict[str, Any]:
    letter = get_letter(letter_id)
    if not letter:
        raise ValueError(f"Letter not found: {letter_id}")
    return letter


def list_letters(complaint_id: UUID, active_only: bool = False) -> list[dict[str, Any]]:
    """
    Letters of a complaint, newest first.

    With active_only, letters that have been superseded are left out.
    """
    supabase = get_supabase()

    try:
        query = supabase.table("generated_letters").select("*").eq("complaint_id", str(complaint_id))
        if active_only:
            query = query.is_("superseded_by", "null")
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list letters for complaint {complaint_id}: {e}")
        raise


def _update_letter(letter_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("generated_letters").update(updates).eq("id", str(letter_id)).execute()
        )
        if not response.data:
            raise ValueError(f"Letter not found: {letter_id}")
        return response.data[0]

    except Exception as e:
        logger.error(
            f"Failed to update letter {letter_id}: {e}", extra={"letter_id": str(letter_id)}
        )
        raise


def lock_letter(letter_id: UUID) -> dict[str, Any]:
    """Lock a letter against further edits."""
    _require_letter(letter_id)
    return _update_letter(letter_id, {"locked_at": _utc_now_iso()})


def mark_as_sent(
    letter_id: UUID,
    sent_by: UUID,
    sent_method: str,
    hmrc_reference: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Record dispatch of a letter and add a letter_sent timeline event."""
    _require_letter(letter_id)

    updates: dict[str, Any] = {
        "sent_at": _utc_now_iso(),
        "sent_by": str(sent_by),
        "sent_method": sent_method,
    }
    if hmrc_reference is not None:
        updates["hmrc_reference"] = hmrc_reference
    if notes is not None:
        updates["notes"] = notes

    updated = _update_letter(letter_id, updates)

    letter_type = (updated.get("letter_type") or "letter").replace("_", " ")
    try:
        add_timeline_event(
            UUID(str(updated["complaint_id"])),
            {
                "type": "letter_sent",
                "summary": f"{letter_type} sent to HMRC via {sent_method}",
                "notes": notes,
            },
        )
    except Exception as e:
        logger.warning(
            f"Failed to add letter_sent timeline event: {e}",
            extra={"letter_id": str(letter_id)},
        )

    return updated


def update_content(
    letter_id: UUID,
    letter_content: str,
    notes: str | None = None,
) -> dict[str, Any]:
    """
    Replace a letter's content.

    Raises:
        LetterStateError: If the letter is locked
    """
    letter = _require_letter(letter_id)
    if letter.get("locked_at"):
        raise LetterStateError("Cannot edit a locked letter")

    updates: dict[str, Any] = {"letter_content": letter_content, "updated_at": _utc_now_iso()}
    if notes is not None:
        updates["notes"] = notes
    return _update_letter(letter_id, updates)


def delete_letter(letter_id: UUID) -> None:
    """
    Delete an unsent letter.

    Raises:
        LetterStateError: If the letter has been sent
    """
    letter = _require_letter(letter_id)
    if letter.get("sent_at"):
        raise LetterStateError("Cannot delete a sent letter")

    supabase = get_supabase()

    try:
        supabase.table("generated_letters").delete().eq("id", str(letter_id)).execute()
        logger.info(f"Deleted letter {letter_id}", extra={"letter_id": str(letter_id)})

    except Exception as e:
        logger.error(f"Failed to delete letter {letter_id}: {e}")
        raise
