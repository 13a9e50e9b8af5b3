"""Appeal grounds, penalty assessments and appeal precedents."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.core.schemas_appeals import AppealStatus
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

PRECEDENT_COLUMNS = "id, case_name, case_reference, tribunal_level, outcome, summary"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_row(table: str, row_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table(table).select("*").eq("id", str(row_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get {table} row {row_id}: {e}")
        raise


def _list_for_complaint(table: str, complaint_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table(table)
            .select("*")
            .eq("complaint_id", str(complaint_id))
            .order("created_at")
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list {table} for complaint {complaint_id}: {e}")
        raise


def _insert(table: str, row: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = supabase.table(table).insert({**row, "updated_at": _utc_now_iso()}).execute()
        if not response.data:
            raise ValueError(f"No data returned from {table} insert")

        logger.info(
            f"Added {table} row {response.data[0]['id']}",
            extra={"complaint_id": str(row.get("complaint_id"))},
        )
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to insert into {table}: {e}")
        raise


def _update(table: str, row_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    """
    Apply updates to a row.

    Raises:
        ValueError: If the row is not found
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table(table)
            .update({**updates, "updated_at": _utc_now_iso()})
            .eq("id", str(row_id))
            .execute()
        )
        if not response.data:
            raise ValueError(f"{table} row not found: {row_id}")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to update {table} row {row_id}: {e}")
        raise


# ============================================================================
# Appeal grounds
# ============================================================================


def get_ground(ground_id: UUID) -> dict[str, Any] | None:
    return _get_row("appeal_grounds", ground_id)


def list_grounds(complaint_id: UUID) -> list[dict[str, Any]]:
    """Grounds of appeal for a complaint, oldest first."""
    return _list_for_complaint("appeal_grounds", complaint_id)


def add_ground(
    complaint_id: UUID,
    ground_type: str,
    statute_reference: str,
    description: str,
    supporting_evidence: Any = None,
    strength_assessment: str | None = None,
) -> dict[str, Any]:
    return _insert(
        "appeal_grounds",
        {
            "complaint_id": str(complaint_id),
            "ground_type": ground_type,
            "statute_reference": statute_reference,
            "description": description,
            "supporting_evidence": supporting_evidence,
            "strength_assessment": strength_assessment,
        },
    )


def update_ground(ground_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    return _update("appeal_grounds", ground_id, updates)


def remove_ground(ground_id: UUID) -> None:
    supabase = get_supabase()

    try:
        supabase.table("appeal_grounds").delete().eq("id", str(ground_id)).execute()
        logger.info(f"Removed appeal ground {ground_id}")

    except Exception as e:
        logger.error(f"Failed to remove appeal ground {ground_id}: {e}")
        raise


# ============================================================================
# Penalty assessments
# ============================================================================


def get_penalty(penalty_id: UUID) -> dict[str, Any] | None:
    return _get_row("penalty_assessments", penalty_id)


def list_penalties(complaint_id: UUID) -> list[dict[str, Any]]:
    return _list_for_complaint("penalty_assessments", complaint_id)


def add_penalty(complaint_id: UUID, penalty: dict[str, Any]) -> dict[str, Any]:
    """Record a penalty under appeal; new assessments are pending."""
    return _insert(
        "penalty_assessments",
        {
            **penalty,
            "complaint_id": str(complaint_id),
            "appeal_status": AppealStatus.PENDING.value,
        },
    )


def update_penalty(penalty_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    return _update("penalty_assessments", penalty_id, updates)


def update_penalty_status(
    penalty_id: UUID,
    appeal_status: str,
    appeal_filed_date: str | None = None,
) -> dict[str, Any]:
    AppealStatus(appeal_status)
    updates: dict[str, Any] = {"appeal_status": appeal_status}
    if appeal_filed_date:
        updates["appeal_filed_date"] = appeal_filed_date
    return _update("penalty_assessments", penalty_id, updates)


# ============================================================================
# Appeal precedents
# ============================================================================


def search_appeal_precedents(
    query: str | None = None,
    penalty_type: str | None = None,
    ground_type: str | None = None,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """Tribunal decisions filtered by penalty and ground type, matched on summary text."""
    supabase = get_supabase()

    try:
        q = supabase.table("appeal_precedents").select(PRECEDENT_COLUMNS)
        if penalty_type:
            q = q.eq("penalty_type", penalty_type)
        if ground_type:
            q = q.eq("ground_type", ground_type)
        if query and query.strip():
            q = q.ilike("summary", f"%{query.strip()}%")
        response = q.limit(limit).execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to search appeal precedents: {e}")
        raise
