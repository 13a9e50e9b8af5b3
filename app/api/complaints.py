"""API endpoints for complaints, their timelines and outcomes."""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import AuthContext, ensure_org_access, require_admin, require_auth
from app.core.logging import get_logger
from app.core.schemas_complaints import (
    CaseOutcomeCreate,
    ComplaintAssign,
    ComplaintCreate,
    ComplaintReferenceUpdate,
    ComplaintStatus,
    ComplaintStatusUpdate,
    CorrespondenceCreate,
    LearningStats,
    OutcomeStats,
    TimelineEvent,
)
from app.core.schemas_jobs import JobType
from app.db import audit_log
from app.db import complaints as complaints_db
from app.db.job_queue import enqueue
from app.services.outcome_learning import get_learning_stats

logger = get_logger(__name__)

router = APIRouter()

LEARNING_JOB_PRIORITY = 3


def require_complaint_access(complaint_id: UUID, auth: AuthContext) -> dict[str, Any]:
    """Load a complaint, raising 404 if missing and 403 if in another organization."""
    complaint = complaints_db.get_complaint(complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    ensure_org_access(auth, complaint.get("organization_id"))
    return complaint


@router.post("", status_code=201)
async def create_complaint(
    body: ComplaintCreate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Create a complaint in the assessment stage."""
    ensure_org_access(auth, body.organization_id)

    try:
        complaint = complaints_db.create_complaint(
            organization_id=body.organization_id,
            created_by=auth.user_id,
            complaint_reference=body.client_reference,
            complaint_type=body.complaint_type,
            hmrc_department=body.hmrc_department,
            context=body.context,
        )

    except Exception:
        logger.exception("Failed to create complaint")
        raise HTTPException(status_code=500, detail="Failed to create complaint")

    audit_log.data_create(
        auth.user_id,
        body.organization_id,
        "complaint",
        complaint["id"],
        {"complaint_reference": complaint.get("complaint_reference")},
    )
    return complaint


@router.get("")
async def list_complaints(
    status: Optional[ComplaintStatus] = Query(None),
    organization_id: Optional[UUID] = Query(None, description="Admins only"),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """List complaints of the caller's organization."""
    org_id = organization_id if (organization_id and auth.is_admin) else auth.organization_id

    try:
        complaints = complaints_db.list_complaints(org_id, status.value if status else None)
        return {"complaints": complaints, "count": len(complaints)}

    except Exception:
        logger.exception("Failed to list complaints")
        raise HTTPException(status_code=500, detail="Failed to list complaints")


@router.get("/outcomes/stats", response_model=OutcomeStats)
async def get_outcome_stats(auth: AuthContext = Depends(require_auth)) -> dict:
    """Outcome statistics for the caller's organization (all organizations for admins)."""
    if not auth.is_admin and not auth.organization_id:
        return OutcomeStats().model_dump()

    try:
        org_id = None if auth.is_admin else auth.organization_id
        return complaints_db.get_outcome_stats(org_id)

    except Exception:
        logger.exception("Failed to get outcome stats")
        raise HTTPException(status_code=500, detail="Failed to get outcome stats")


@router.get("/outcomes/learnings", response_model=LearningStats)
async def get_outcome_learnings(
    complaint_type: Optional[str] = Query(None),
    hmrc_department: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Aggregated learnings from analysed outcomes."""
    try:
        return get_learning_stats(complaint_type, hmrc_department)

    except Exception:
        logger.exception("Failed to get learning stats")
        raise HTTPException(status_code=500, detail="Failed to get learning stats")


@router.post("/outcomes/process-pending", status_code=202)
async def process_pending_outcomes(
    limit: int = Query(10, ge=1, le=100),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Queue learning extraction for outcomes not analysed yet."""
    try:
        pending = complaints_db.list_pending_outcomes(limit)
        jobs = [
            enqueue(
                JobType.EXTRACT_OUTCOME_LEARNINGS.value,
                {"outcome_id": str(outcome["id"])},
                priority=LEARNING_JOB_PRIORITY,
            )
            for outcome in pending
        ]
        return {"queued": len(jobs), "job_ids": [job["id"] for job in jobs]}

    except Exception:
        logger.exception("Failed to queue pending outcomes")
        raise HTTPException(status_code=500, detail="Failed to queue pending outcomes")


@router.get("/needing-attention")
async def list_needing_attention(auth: AuthContext = Depends(require_auth)) -> dict:
    """Complaints whose HMRC response is due within a week."""
    try:
        complaints = complaints_db.list_complaints_needing_attention(auth.organization_id)
        return {"complaints": complaints, "count": len(complaints)}

    except Exception:
        logger.exception("Failed to list complaints needing attention")
        raise HTTPException(status_code=500, detail="Failed to list complaints needing attention")


@router.get("/{complaint_id}")
async def get_complaint(complaint_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        return require_complaint_access(complaint_id, auth)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to get complaint")


@router.patch("/{complaint_id}/status")
async def update_status(
    complaint_id: UUID,
    body: ComplaintStatusUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Change status; records a status_change timeline event."""
    try:
        require_complaint_access(complaint_id, auth)
        return complaints_db.update_status(complaint_id, body.status.value, body.notes)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to update status of complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to update complaint status")


@router.patch("/{complaint_id}/reference")
async def update_reference(
    complaint_id: UUID,
    body: ComplaintReferenceUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        return complaints_db.update_reference(complaint_id, body.reference)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to update reference of complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to update complaint reference")


@router.patch("/{complaint_id}/assign")
async def assign_complaint(
    complaint_id: UUID,
    body: ComplaintAssign,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        return complaints_db.assign_complaint(complaint_id, body.assigned_to)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to assign complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to assign complaint")


@router.post("/{complaint_id}/timeline")
async def add_timeline_event(
    complaint_id: UUID,
    body: TimelineEvent,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        return complaints_db.add_timeline_event(complaint_id, body.model_dump())

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to add timeline event to complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to add timeline event")


@router.post("/{complaint_id}/correspondence")
async def track_correspondence(
    complaint_id: UUID,
    body: CorrespondenceCreate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Record a letter sent or received; may escalate overdue complaints."""
    try:
        require_complaint_access(complaint_id, auth)
        return complaints_db.track_correspondence(
            complaint_id, body.direction.value, body.summary, body.document_id
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to track correspondence for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to track correspondence")


@router.post("/{complaint_id}/outcome", status_code=201)
async def close_with_outcome(
    complaint_id: UUID,
    body: CaseOutcomeCreate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Record the outcome, close the complaint and queue learning extraction."""
    try:
        require_complaint_access(complaint_id, auth)
        outcome = complaints_db.close_with_outcome(
            complaint_id,
            body.outcome_type.value,
            recorded_by=auth.user_id,
            compensation_received=body.compensation_received,
            tax_position_corrected=body.tax_position_corrected,
            penalties_cancelled=body.penalties_cancelled,
            interest_refunded=body.interest_refunded,
            notes=body.notes,
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to close complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to record outcome")

    try:
        enqueue(
            JobType.EXTRACT_OUTCOME_LEARNINGS.value,
            {"outcome_id": str(outcome["id"])},
            priority=LEARNING_JOB_PRIORITY,
        )
    except Exception:
        logger.exception(f"Failed to queue learning extraction for outcome {outcome['id']}")

    return outcome


@router.delete("/{complaint_id}", status_code=204)
async def delete_complaint(complaint_id: UUID, auth: AuthContext = Depends(require_auth)) -> None:
    """Delete a complaint with its documents, time logs and letters."""
    try:
        complaint = require_complaint_access(complaint_id, auth)
        complaints_db.delete_complaint(complaint_id)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to delete complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to delete complaint")

    audit_log.data_delete(auth.user_id, complaint.get("organization_id"), "complaint", complaint_id)
