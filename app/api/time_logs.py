"""API endpoints for complaint time tracking."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.complaints import require_complaint_access
from app.core.auth import AuthContext, require_auth
from app.core.logging import get_logger
from app.core.schemas_time import ComplaintTimeSummary, TimeLogCreate, TimeLogUpdate
from app.core.time_calculations import format_time_hhmm
from app.db import time_logs

logger = get_logger(__name__)

router = APIRouter()


def _require_log(log_id: UUID, auth: AuthContext) -> dict:
    log = time_logs.get_time_log(log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Time log not found")
    require_complaint_access(log["complaint_id"], auth)
    return log


@router.get("/complaint/{complaint_id}", response_model=ComplaintTimeSummary)
async def get_complaint_time(
    complaint_id: UUID,
    charge_out_rate: Optional[float] = Query(None, gt=0),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Logged time for a complaint with its billable value."""
    try:
        require_complaint_access(complaint_id, auth)
        return time_logs.get_complaint_time(complaint_id, charge_out_rate)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get time for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to get complaint time")


@router.post("", status_code=201)
async def log_activity(body: TimeLogCreate, auth: AuthContext = Depends(require_auth)) -> dict:
    """Log an activity. Duration is rounded up to 12-minute units."""
    try:
        require_complaint_access(body.complaint_id, auth)
        log = time_logs.log_activity(
            body.complaint_id,
            body.activity,
            body.duration,
            notes=body.notes,
            automated=body.automated,
            user_id=auth.user_id,
        )
        return {**log, "formatted": format_time_hhmm(int(log.get("minutes_spent") or 0))}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to log time for complaint {body.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to log time")


@router.patch("/{log_id}")
async def update_activity(
    log_id: UUID,
    body: TimeLogUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        _require_log(log_id, auth)
        return time_logs.update_activity(log_id, duration=body.duration, activity=body.activity)

    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"Failed to update time log {log_id}")
        raise HTTPException(status_code=500, detail="Failed to update time log")


@router.delete("/{log_id}", status_code=204)
async def delete_activity(log_id: UUID, auth: AuthContext = Depends(require_auth)) -> None:
    try:
        _require_log(log_id, auth)
        time_logs.delete_activity(log_id)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to delete time log {log_id}")
        raise HTTPException(status_code=500, detail="Failed to delete time log")


@router.delete("/complaint/{complaint_id}/automated", status_code=204)
async def delete_activity_by_type(
    complaint_id: UUID,
    activity_type: str = Query(..., min_length=1),
    auth: AuthContext = Depends(require_auth),
) -> None:
    """Remove automated entries of one activity type."""
    try:
        require_complaint_access(complaint_id, auth)
        time_logs.delete_activity_by_type(complaint_id, activity_type)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to delete {activity_type} logs for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to delete time logs")
