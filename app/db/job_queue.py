"""Priority job queue stored in the job_queue table."""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.core.schemas_jobs import FINISHED_STATUSES, JobStatus, JobType
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _utc_now_iso() -> str:
    """Get current UTC time as ISO string."""
    return _utc_now().isoformat()


def enqueue(
    job_type: str,
    payload: dict[str, Any] | None = None,
    priority: int = 5,
    max_attempts: int = 3,
    scheduled_for: datetime | None = None,
) -> dict[str, Any]:
    """
    Add a pending job.

    Jobs without a schedule are due immediately.

    Raises:
        ValueError: If the job type is unknown
        Exception: If database operation fails
    """
    JobType(job_type)
    supabase = get_supabase()
    due = scheduled_for or _utc_now()

    try:
        response = (
            supabase.table("job_queue")
            .insert(
                {
                    "type": job_type,
                    "payload": payload or {},
                    "status": JobStatus.PENDING.value,
                    "priority": priority,
                    "attempts": 0,
                    "max_attempts": max_attempts,
                    "scheduled_for": due.isoformat(),
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from enqueue")

        job = response.data[0]
        logger.info(
            f"Enqueued {job_type} job {job['id']} (priority {priority})",
            extra={"job_id": job["id"]},
        )
        return job

    except Exception as e:
        logger.error(f"Failed to enqueue {job_type} job: {e}")
        raise


def dequeue() -> dict[str, Any] | None:
    """
    Claim the next due job.

    Highest priority first, then oldest. The claim only succeeds while the
    row is still pending, so two workers never take the same job.

    Returns:
        The claimed job, or None if nothing is due
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("job_queue")
            .select("*")
            .eq("status", JobStatus.PENDING.value)
            .lte("scheduled_for", _utc_now_iso())
            .order("priority", desc=True)
            .order("created_at")
            .limit(1)
            .execute()
        )
        if not response.data:
            return None

        job = response.data[0]
        claimed = (
            supabase.table("job_queue")
            .update(
                {
                    "status": JobStatus.PROCESSING.value,
                    "attempts": int(job.get("attempts") or 0) + 1,
                    "started_at": _utc_now_iso(),
                }
            )
            .eq("id", job["id"])
            .eq("status", JobStatus.PENDING.value)
            .execute()
        )
        if not claimed.data:
            logger.debug(f"Job {job['id']} was claimed by another worker")
            return None

        logger.info(f"Dequeued {job['type']} job {job['id']}", extra={"job_id": job["id"]})
        return claimed.data[0]

    except Exception as e:
        logger.error(f"Failed to dequeue job: {e}")
        raise


def complete_job(job_id: UUID, result: Any = None) -> None:
    supabase = get_supabase()

    try:
        supabase.table("job_queue").update(
            {
                "status": JobStatus.COMPLETED.value,
                "result": result,
                "completed_at": _utc_now_iso(),
            }
        ).eq("id", str(job_id)).execute()

        logger.info(f"Completed job {job_id}", extra={"job_id": str(job_id)})

    except Exception as e:
        logger.error(f"Failed to complete job: {e}", extra={"job_id": str(job_id)})
        raise


def fail_job(job_id: UUID, error_message: str) -> dict[str, Any]:
    """
    Record a failed attempt.

    A job with attempts left goes back to pending, scheduled
    2^attempts minutes from now. Otherwise it is marked failed.
    """
    job = get_job(job_id)
    if not job:
        raise ValueError(f"Job not found: {job_id}")

    attempts = int(job.get("attempts") or 0)
    max_attempts = int(job.get("max_attempts") or 3)

    if attempts < max_attempts:
        retry_at = _utc_now() + timedelta(minutes=2**attempts)
        updates = {
            "status": JobStatus.PENDING.value,
            "error": error_message,
            "scheduled_for": retry_at.isoformat(),
        }
    else:
        updates = {
            "status": JobStatus.FAILED.value,
            "error": error_message,
            "completed_at": _utc_now_iso(),
        }

    supabase = get_supabase()

    try:
        response = supabase.table("job_queue").update(updates).eq("id", str(job_id)).execute()
        logger.info(
            f"Job {job_id} attempt {attempts}/{max_attempts} failed: {error_message}",
            extra={"job_id": str(job_id)},
        )
        return response.data[0] if response.data else {**job, **updates}

    except Exception as e:
        logger.error(f"Failed to fail job: {e}", extra={"job_id": str(job_id)})
        raise


def cancel_job(job_id: UUID) -> bool:
    """Cancel a pending job. Returns False if the job is not pending."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("job_queue")
            .update({"status": JobStatus.CANCELLED.value, "completed_at": _utc_now_iso()})
            .eq("id", str(job_id))
            .eq("status", JobStatus.PENDING.value)
            .execute()
        )
        cancelled = bool(response.data)
        if cancelled:
            logger.info(f"Cancelled job {job_id}", extra={"job_id": str(job_id)})
        return cancelled

    except Exception as e:
        logger.error(f"Failed to cancel job: {e}", extra={"job_id": str(job_id)})
        raise


def get_job(job_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table("job_queue").select("*").eq("id", str(job_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get job {job_id}: {e}")
        raise


def list_jobs(
    status: str | None = None,
    job_type: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        query = supabase.table("job_queue").select("*")
        if status:
            query = query.eq("status", status)
        if job_type:
            query = query.eq("type", job_type)
        response = query.order("created_at", desc=True).limit(limit).execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list jobs: {e}")
        raise


def get_queue_stats() -> dict[str, int]:
    """Job counts per status."""
    supabase = get_supabase()

    try:
        rows = supabase.table("job_queue").select("status").execute().data or []

    except Exception as e:
        logger.error(f"Failed to fetch queue stats: {e}")
        raise

    stats = {status.value: 0 for status in JobStatus}
    for row in rows:
        status = row.get("status")
        if status in stats:
            stats[status] += 1
    return stats


def cleanup_old_jobs(days: int = 7) -> int:
    """Delete finished jobs older than ``days``. Returns the number removed."""
    cutoff = (_utc_now() - timedelta(days=days)).isoformat()
    supabase = get_supabase()

    try:
        response = (
            supabase.table("job_queue")
            .delete()
            .in_("status", FINISHED_STATUSES)
            .lt("created_at", cutoff)
            .execute()
        )
        removed = len(response.data or [])
        logger.info(f"Cleaned up {removed} jobs older than {days} days")
        return removed

    except Exception as e:
        logger.error(f"Failed to clean up jobs: {e}")
        raise
