"""API endpoints for penalty appeals: grounds, assessments and precedents."""

from typing import Any, Callable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.complaints import require_complaint_access
from app.core.auth import AuthContext, require_auth
from app.core.logging import get_logger
from app.core.schemas_appeals import (
    AppealGroundCreate,
    AppealGroundUpdate,
    GroundType,
    PenaltyCreate,
    PenaltyStatusUpdate,
    PenaltyType,
    PenaltyUpdate,
)
from app.db import appeals as appeals_db

logger = get_logger(__name__)

router = APIRouter()


def _require_row(
    loader: Callable[[UUID], Optional[dict[str, Any]]],
    row_id: UUID,
    auth: AuthContext,
    label: str,
) -> dict[str, Any]:
    row = loader(row_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    require_complaint_access(row["complaint_id"], auth)
    return row


# ============================================================================
# Appeal grounds
# ============================================================================


@router.get("/grounds/complaint/{complaint_id}")
async def list_grounds(complaint_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        grounds = appeals_db.list_grounds(complaint_id)
        return {"grounds": grounds, "count": len(grounds)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to list appeal grounds for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to list appeal grounds")


@router.post("/grounds", status_code=201)
async def add_ground(body: AppealGroundCreate, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        require_complaint_access(body.complaint_id, auth)
        return appeals_db.add_ground(
            complaint_id=body.complaint_id,
            ground_type=body.ground_type.value,
            statute_reference=body.statute_reference,
            description=body.description,
            supporting_evidence=body.supporting_evidence,
            strength_assessment=body.strength_assessment.value if body.strength_assessment else None,
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to add appeal ground to complaint {body.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to add appeal ground")


@router.patch("/grounds/{ground_id}")
async def update_ground(
    ground_id: UUID,
    body: AppealGroundUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Update only the fields given."""
    try:
        _require_row(appeals_db.get_ground, ground_id, auth, "Appeal ground")
        return appeals_db.update_ground(ground_id, body.model_dump(mode="json", exclude_unset=True))

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to update appeal ground {ground_id}")
        raise HTTPException(status_code=500, detail="Failed to update appeal ground")


@router.delete("/grounds/{ground_id}", status_code=204)
async def remove_ground(ground_id: UUID, auth: AuthContext = Depends(require_auth)) -> None:
    try:
        _require_row(appeals_db.get_ground, ground_id, auth, "Appeal ground")
        appeals_db.remove_ground(ground_id)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to remove appeal ground {ground_id}")
        raise HTTPException(status_code=500, detail="Failed to remove appeal ground")


# ============================================================================
# Penalty assessments
# ============================================================================


@router.get("/penalties/complaint/{complaint_id}")
async def list_penalties(complaint_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        penalties = appeals_db.list_penalties(complaint_id)
        return {"penalties": penalties, "count": len(penalties)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to list penalties for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to list penalties")


@router.post("/penalties", status_code=201)
async def add_penalty(body: PenaltyCreate, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        require_complaint_access(body.complaint_id, auth)
        return appeals_db.add_penalty(
            body.complaint_id, body.model_dump(mode="json", exclude={"complaint_id"})
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to add penalty to complaint {body.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to add penalty")


@router.patch("/penalties/{penalty_id}")
async def update_penalty(
    penalty_id: UUID,
    body: PenaltyUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        _require_row(appeals_db.get_penalty, penalty_id, auth, "Penalty")
        return appeals_db.update_penalty(
            penalty_id, body.model_dump(mode="json", exclude_unset=True)
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to update penalty {penalty_id}")
        raise HTTPException(status_code=500, detail="Failed to update penalty")


@router.patch("/penalties/{penalty_id}/status")
async def update_penalty_status(
    penalty_id: UUID,
    body: PenaltyStatusUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        _require_row(appeals_db.get_penalty, penalty_id, auth, "Penalty")
        return appeals_db.update_penalty_status(
            penalty_id,
            body.appeal_status.value,
            body.appeal_filed_date.isoformat() if body.appeal_filed_date else None,
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to update status of penalty {penalty_id}")
        raise HTTPException(status_code=500, detail="Failed to update penalty status")


# ============================================================================
# Appeal precedents
# ============================================================================


@router.get("/precedents")
async def search_precedents(
    query: Optional[str] = Query(None),
    penalty_type: Optional[PenaltyType] = Query(None),
    ground_type: Optional[GroundType] = Query(None),
    limit: int = Query(10, ge=1, le=50),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Tribunal decisions whose summary mentions the query."""
    try:
        precedents = appeals_db.search_appeal_precedents(
            query,
            penalty_type.value if penalty_type else None,
            ground_type.value if ground_type else None,
            limit,
        )
        return {"precedents": precedents, "count": len(precedents)}

    except Exception:
        logger.exception("Failed to search appeal precedents")
        raise HTTPException(status_code=500, detail="Failed to search appeal precedents")
