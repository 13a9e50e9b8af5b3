"""API endpoints for background job status and management."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import AuthContext, require_admin, require_auth
from app.core.logging import get_logger
from app.core.schemas_jobs import JobEnqueueRequest, JobStatus, JobType, QueueStats
from app.db import job_queue

logger = get_logger(__name__)

router = APIRouter()


@router.post("", status_code=201)
async def enqueue_job(
    body: JobEnqueueRequest,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        return job_queue.enqueue(
            body.type.value,
            body.payload,
            priority=body.priority,
            max_attempts=body.max_attempts,
            scheduled_for=body.scheduled_for,
        )

    except Exception:
        logger.exception(f"Failed to enqueue {body.type.value} job")
        raise HTTPException(status_code=500, detail="Failed to enqueue job")


@router.get("/stats", response_model=QueueStats)
async def get_queue_stats(auth: AuthContext = Depends(require_auth)) -> dict:
    """Job counts per status."""
    try:
        return job_queue.get_queue_stats()

    except Exception:
        logger.exception("Failed to get queue stats")
        raise HTTPException(status_code=500, detail="Failed to retrieve queue stats")


@router.post("/cleanup")
async def cleanup_old_jobs(
    days: int = Query(7, ge=1, le=365),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Delete finished jobs older than the given number of days."""
    try:
        return {"deleted": job_queue.cleanup_old_jobs(days)}

    except Exception:
        logger.exception("Failed to clean up jobs")
        raise HTTPException(status_code=500, detail="Failed to clean up jobs")


@router.get("/{job_id}")
async def get_job_status(job_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    """
    Get job status and details by job ID.

    Raises:
        HTTPException 404: If job not found
        HTTPException 500: If database error
    """
    try:
        job = job_queue.get_job(job_id)

        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        return job

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get job {job_id}")
        raise HTTPException(status_code=500, detail="Failed to retrieve job status")


@router.get("")
async def list_jobs(
    status: Optional[JobStatus] = Query(None),
    job_type: Optional[JobType] = Query(None, alias="type"),
    limit: int = Query(50, description="Maximum number of jobs to return", ge=1, le=200),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        jobs = job_queue.list_jobs(
            status=status.value if status else None,
            job_type=job_type.value if job_type else None,
            limit=limit,
        )
        return {"jobs": jobs, "limit": limit, "count": len(jobs)}

    except Exception:
        logger.exception("Failed to list jobs")
        raise HTTPException(status_code=500, detail="Failed to retrieve jobs")


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    """Cancel a pending job. Jobs already running or finished cannot be cancelled."""
    try:
        if not job_queue.get_job(job_id):
            raise HTTPException(status_code=404, detail="Job not found")

        if not job_queue.cancel_job(job_id):
            raise HTTPException(status_code=409, detail="Only pending jobs can be cancelled")

        return {"job_id": str(job_id), "status": JobStatus.CANCELLED.value}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to cancel job {job_id}")
        raise HTTPException(status_code=500, detail="Failed to cancel job")
