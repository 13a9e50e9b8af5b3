"""Complaint and case outcome database operations."""

import math
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.core.schemas_complaints import (
    SUCCESSFUL_OUTCOMES,
    ComplaintStatus,
    CorrespondenceDirection,
    OutcomeType,
)
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def create_complaint(
    organization_id: UUID,
    created_by: UUID,
    complaint_reference: str,
    complaint_type: str | None = None,
    hmrc_department: str | None = None,
    context: str | None = None,
) -> dict[str, Any]:
    """
    Create a complaint in the assessment stage.

    A non-empty context is recorded as the first timeline entry.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    timeline = []
    if context:
        timeline.append({"date": _utc_now_iso(), "type": "context_provided", "summary": context})

    try:
        response = (
            supabase.table("complaints")
            .insert(
                {
                    "organization_id": str(organization_id),
                    "created_by": str(created_by),
                    "complaint_reference": complaint_reference,
                    "complaint_type": complaint_type,
                    "hmrc_department": hmrc_department,
                    "status": ComplaintStatus.ASSESSMENT.value,
                    "timeline": timeline,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from create_complaint")

        complaint = response.data[0]
        logger.info(
            f"Created complaint {complaint['id']} ({complaint_reference})",
            extra={"complaint_id": complaint["id"]},
        )
        return complaint

    except Exception as e:
        logger.error(f"Failed to create complaint: {e}")
        raise


def get_complaint(complaint_id: UUID) -> dict[str, Any] | None:
    """Get a complaint by id, or None."""
    supabase = get_supabase()

    try:
        response = supabase.table("complaints").select("*").eq("id", str(complaint_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get complaint {complaint_id}: {e}")
        raise


def list_complaints(
    organization_id: UUID | None,
    status: str | None = None,
) -> list[dict[str, Any]]:
    """
    List an organization's complaints, newest first.

    Returns an empty list when no organization is given.
    """
    if not organization_id:
        logger.warning("Complaint listing attempted without an organization")
        return []

    supabase = get_supabase()

    try:
        query = supabase.table("complaints").select("*").eq("organization_id", str(organization_id))
        if status:
            query = query.eq("status", status)
        response = query.order("created_at", desc=True).execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list complaints for org {organization_id}: {e}")
        raise


def _update_complaint(complaint_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()
    updates = {**updates, "updated_at": _utc_now_iso()}

    try:
        response = (
            supabase.table("complaints").update(updates).eq("id", str(complaint_id)).execute()
        )
        if not response.data:
            raise ValueError(f"Complaint not found: {complaint_id}")
        return response.data[0]

    except Exception as e:
        logger.error(
            f"Failed to update complaint {complaint_id}: {e}",
            extra={"complaint_id": str(complaint_id)},
        )
        raise


def add_timeline_event(complaint_id: UUID, event: dict[str, Any]) -> dict[str, Any]:
    """
    Append an event to the complaint's timeline.

    The event gets the current time as ``date`` when it carries none.
    """
    complaint = get_complaint(complaint_id)
    if not complaint:
        raise ValueError(f"Complaint not found: {complaint_id}")

    entry = {k: v for k, v in event.items() if v is not None}
    entry.setdefault("date", _utc_now_iso())

    timeline = list(complaint.get("timeline") or [])
    timeline.append(entry)
    return _update_complaint(complaint_id, {"timeline": timeline})


def update_status(
    complaint_id: UUID,
    status: str,
    notes: str | None = None,
) -> dict[str, Any]:
    """Change status and record a status_change timeline event."""
    complaint = get_complaint(complaint_id)
    if not complaint:
        raise ValueError(f"Complaint not found: {complaint_id}")

    previous = complaint.get("status")
    timeline = list(complaint.get("timeline") or [])
    timeline.append(
        {
            "date": _utc_now_iso(),
            "type": "status_change",
            "summary": f"Status changed from {previous} to {status}",
            **({"notes": notes} if notes else {}),
        }
    )

    updated = _update_complaint(complaint_id, {"status": status, "timeline": timeline})
    logger.info(
        f"Complaint status {previous} → {status}",
        extra={"complaint_id": str(complaint_id)},
    )
    return updated


def update_reference(complaint_id: UUID, reference: str) -> dict[str, Any]:
    return _update_complaint(complaint_id, {"complaint_reference": reference})


def assign_complaint(complaint_id: UUID, assigned_to: UUID | None) -> dict[str, Any]:
    logger.info(
        f"Assigning complaint to {assigned_to or 'unassigned'}",
        extra={"complaint_id": str(complaint_id)},
    )
    return _update_complaint(
        complaint_id, {"assigned_to": str(assigned_to) if assigned_to else None}
    )


def save_analysis(complaint_id: UUID, analysis: dict[str, Any]) -> dict[str, Any]:
    """Store the latest analysis on the complaint."""
    return _update_complaint(
        complaint_id, {"analysis": analysis, "analyzed_at": _utc_now_iso()}
    )


def delete_complaint(complaint_id: UUID) -> None:
    """Delete a complaint with its documents, time logs and letters."""
    supabase = get_supabase()
    cid = str(complaint_id)

    try:
        for table in ("documents", "time_logs", "generated_letters"):
            supabase.table(table).delete().eq("complaint_id", cid).execute()
        supabase.table("complaints").delete().eq("id", cid).execute()

        logger.info(f"Deleted complaint {cid}", extra={"complaint_id": cid})

    except Exception as e:
        logger.error(f"Failed to delete complaint {cid}: {e}", extra={"complaint_id": cid})
        raise


# ============================================================================
# Correspondence and escalation
# ============================================================================

RESPONSE_DEADLINE_DAYS = 28
ESCALATION_OVERDUE_COUNT = 2
ATTENTION_WINDOW_DAYS = 7


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def track_correspondence(
    complaint_id: UUID,
    direction: str,
    summary: str,
    document_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Record correspondence on the timeline and check escalation triggers.

    Letters sent to HMRC get a response deadline 28 days out.
    """
    CorrespondenceDirection(direction)

    now = datetime.now(timezone.utc)
    event: dict[str, Any] = {"date": now.isoformat(), "type": direction, "summary": summary}
    if document_id:
        event["document_id"] = str(document_id)
    if direction == CorrespondenceDirection.SENT.value:
        event["response_deadline"] = (now + timedelta(days=RESPONSE_DEADLINE_DAYS)).isoformat()

    updated = add_timeline_event(complaint_id, event)
    if check_escalation_triggers(complaint_id):
        updated = get_complaint(complaint_id) or updated
    return updated


def overdue_sent_events(timeline: list[dict[str, Any]], now: datetime) -> list[dict[str, Any]]:
    return [
        event
        for event in timeline
        if event.get("type") == CorrespondenceDirection.SENT.value
        and event.get("response_deadline")
        and _parse_iso(event["response_deadline"]) < now
    ]


def check_escalation_triggers(complaint_id: UUID) -> bool:
    """Escalate a complaint with two or more overdue HMRC responses. Returns True if escalated."""
    try:
        complaint = get_complaint(complaint_id)
        if not complaint or complaint.get("status") == ComplaintStatus.ESCALATED.value:
            return False

        now = datetime.now(timezone.utc)
        timeline = list(complaint.get("timeline") or [])
        overdue = overdue_sent_events(timeline, now)
        if len(overdue) < ESCALATION_OVERDUE_COUNT:
            return False

        timeline.append(
            {
                "date": now.isoformat(),
                "type": CorrespondenceDirection.INTERNAL.value,
                "summary": "Complaint automatically escalated due to overdue responses",
            }
        )
        _update_complaint(
            complaint_id, {"status": ComplaintStatus.ESCALATED.value, "timeline": timeline}
        )
        logger.info(
            f"Escalated complaint after {len(overdue)} overdue responses",
            extra={"complaint_id": str(complaint_id)},
        )
        return True

    except Exception as e:
        logger.error(
            f"Failed to check escalation triggers: {e}", extra={"complaint_id": str(complaint_id)}
        )
        return False


def list_complaints_needing_attention(organization_id: UUID | None) -> list[dict[str, Any]]:
    """Active or escalated complaints with an HMRC response due within 7 days."""
    if not organization_id:
        return []

    supabase = get_supabase()

    try:
        complaints = (
            supabase.table("complaints")
            .select("*")
            .eq("organization_id", str(organization_id))
            .in_("status", [ComplaintStatus.ACTIVE.value, ComplaintStatus.ESCALATED.value])
            .execute()
        ).data or []

    except Exception as e:
        logger.error(f"Failed to list complaints needing attention: {e}")
        raise

    now = datetime.now(timezone.utc)

    def _due_soon(event: dict[str, Any]) -> bool:
        deadline = event.get("response_deadline")
        if not deadline:
            return False
        days_left = math.ceil((_parse_iso(deadline) - now).total_seconds() / 86400)
        return 0 <= days_left <= ATTENTION_WINDOW_DAYS

    return [c for c in complaints if any(_due_soon(e) for e in c.get("timeline") or [])]


# ============================================================================
# Case outcomes
# ============================================================================


def close_with_outcome(
    complaint_id: UUID,
    outcome_type: str,
    recorded_by: UUID | None = None,
    compensation_received: float | None = None,
    tax_position_corrected: float | None = None,
    penalties_cancelled: float | None = None,
    interest_refunded: float | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Close a complaint and record its outcome for reporting."""
    OutcomeType(outcome_type)

    complaint = get_complaint(complaint_id)
    if not complaint:
        raise ValueError(f"Complaint not found: {complaint_id}")

    supabase = get_supabase()

    try:
        response = (
            supabase.table("case_outcomes")
            .insert(
                {
                    "complaint_id": str(complaint_id),
                    "organization_id": complaint.get("organization_id"),
                    "complaint_type": complaint.get("complaint_type"),
                    "hmrc_department": complaint.get("hmrc_department"),
                    "outcome_type": outcome_type,
                    "is_successful": outcome_type in SUCCESSFUL_OUTCOMES,
                    "learning_extracted": False,
                    "compensation_received": compensation_received,
                    "tax_position_corrected": tax_position_corrected,
                    "penalties_cancelled": penalties_cancelled,
                    "interest_refunded": interest_refunded,
                    "notes": notes,
                    "recorded_by": str(recorded_by) if recorded_by else None,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from close_with_outcome")

    except Exception as e:
        logger.error(
            f"Failed to record outcome: {e}", extra={"complaint_id": str(complaint_id)}
        )
        raise

    outcome = response.data[0]

    try:
        _update_complaint(complaint_id, {"status": ComplaintStatus.CLOSED.value})
    except Exception:
        # Complaint stays open, so the outcome row goes too
        supabase.table("case_outcomes").delete().eq("id", outcome["id"]).execute()
        raise

    logger.info(
        f"Closed complaint with outcome {outcome_type}",
        extra={"complaint_id": str(complaint_id)},
    )
    return outcome


def get_outcome_stats(organization_id: UUID | None = None) -> dict[str, Any]:
    """Outcome counts per type, total compensation and success rate (%)."""
    supabase = get_supabase()

    try:
        query = supabase.table("case_outcomes").select("outcome_type, compensation_received")
        if organization_id:
            query = query.eq("organization_id", str(organization_id))
        rows = query.execute().data or []

    except Exception as e:
        logger.error(f"Failed to fetch outcome stats: {e}")
        raise

    by_type: dict[str, int] = {}
    total_compensation = 0.0
    for row in rows:
        outcome = row.get("outcome_type")
        by_type[outcome] = by_type.get(outcome, 0) + 1
        total_compensation += float(row.get("compensation_received") or 0)

    total = len(rows)
    successful = sum(1 for row in rows if row.get("outcome_type") in SUCCESSFUL_OUTCOMES)

    return {
        "total": total,
        "successful": successful,
        "success_rate": round(successful / total * 100) if total else 0,
        "by_type": by_type,
        "total_compensation": round(total_compensation, 2),
    }


def get_outcome(outcome_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table("case_outcomes").select("*").eq("id", str(outcome_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get outcome {outcome_id}: {e}")
        raise


def update_outcome(outcome_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("case_outcomes").update(updates).eq("id", str(outcome_id)).execute()
        )
        if not response.data:
            raise ValueError(f"Outcome not found: {outcome_id}")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to update outcome {outcome_id}: {e}")
        raise


def list_pending_outcomes(limit: int = 10) -> list[dict[str, Any]]:
    """Outcomes whose learnings have not been extracted yet, oldest first."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("case_outcomes")
            .select("*")
            .eq("learning_extracted", False)
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list pending outcomes: {e}")
        raise


def list_learned_outcomes(
    complaint_type: str | None = None,
    hmrc_department: str | None = None,
) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        query = supabase.table("case_outcomes").select("*").eq("learning_extracted", True)
        if complaint_type:
            query = query.eq("complaint_type", complaint_type)
        if hmrc_department:
            query = query.eq("hmrc_department", hmrc_department)
        return query.execute().data or []

    except Exception as e:
        logger.error(f"Failed to list outcomes with learnings: {e}")
        raise
