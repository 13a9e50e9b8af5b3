"""Background worker that drains the job queue."""

import asyncio
import mimetypes
from typing import Any, Awaitable, Callable
from uuid import UUID

from app.core.config import get_settings
from app.core.embeddings import embed_text
from app.core.file_text import build_processed_data, extract_text_from_upload
from app.core.logging import get_logger
from app.core.schemas_jobs import JobType
from app.db import job_queue
from app.db.documents import download_file, get_document, update_processed_data
from app.db.knowledge_base import get_entry, update_manual_chunk

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], Awaitable[Any]]


# ============================================================================
# Built-in handlers
# ============================================================================


async def handle_document_ocr(payload: dict[str, Any]) -> dict[str, Any]:
    """Re-extract a stored document's text and refresh its processed data."""
    document_id = UUID(str(payload["document_id"]))
    document = await asyncio.to_thread(get_document, document_id)
    if not document:
        raise ValueError(f"Document not found: {document_id}")

    raw_bytes = await asyncio.to_thread(download_file, document["file_path"])
    filename = document.get("filename") or document["file_path"]
    content_type, _ = mimetypes.guess_type(filename)

    result = await asyncio.to_thread(extract_text_from_upload, filename, content_type, raw_bytes)
    await asyncio.to_thread(update_processed_data, document_id, build_processed_data(result))

    return {
        "document_id": str(document_id),
        "characters": len(result.text),
        "ocr_pages": result.ocr_pages,
    }


async def handle_embedding_generation(payload: dict[str, Any]) -> dict[str, Any]:
    """Regenerate the embedding of a knowledge base entry."""
    entry_id = str(payload["entry_id"])
    entry = await asyncio.to_thread(get_entry, entry_id)
    if not entry:
        raise ValueError(f"Knowledge base entry not found: {entry_id}")

    embedding = await asyncio.to_thread(
        embed_text, f"{entry.get('title') or ''}\n\n{entry.get('content') or ''}"
    )
    await asyncio.to_thread(update_manual_chunk, entry_id, {"embedding": embedding})
    return {"entry_id": entry_id, "dimensions": len(embedding)}


async def handle_sync_knowledge_base(payload: dict[str, Any]) -> list[dict[str, Any]]:
    from app.services.knowledge_ingestion import ingest_all_manuals

    return await ingest_all_manuals(payload.get("codes"))


async def handle_analyze_complaint(payload: dict[str, Any]) -> dict[str, Any]:
    from app.graphs.analyze_complaint_graph import run_complaint_analysis

    result = await run_complaint_analysis(
        UUID(str(payload["document_id"])), payload.get("additional_context")
    )
    return {
        "complaint_id": str(result["complaint_id"]),
        "analysis": result["analysis"].model_dump(),
        "time_logged_minutes": result["time_logged_minutes"],
    }


async def handle_extract_outcome_learnings(payload: dict[str, Any]) -> dict[str, Any]:
    from app.services.outcome_learning import extract_outcome_learnings

    outcome_id = UUID(str(payload["outcome_id"]))
    updated = await asyncio.to_thread(extract_outcome_learnings, outcome_id)
    if updated is None:
        return {"outcome_id": str(outcome_id), "skipped": True}
    return {
        "outcome_id": str(outcome_id),
        "precedent_id": updated.get("precedent_id"),
        "issue_categories": updated.get("issue_categories") or [],
    }


DEFAULT_HANDLERS: dict[str, JobHandler] = {
    JobType.DOCUMENT_OCR.value: handle_document_ocr,
    JobType.EMBEDDING_GENERATION.value: handle_embedding_generation,
    JobType.SYNC_KNOWLEDGE_BASE.value: handle_sync_knowledge_base,
    JobType.ANALYZE_COMPLAINT.value: handle_analyze_complaint,
    JobType.EXTRACT_OUTCOME_LEARNINGS.value: handle_extract_outcome_learnings,
}


# ============================================================================
# Worker loop
# ============================================================================


async def _record_outcome(job_id: str, error: str | None = None, result: Any = None) -> None:
    """Write the job's final state, logging instead of raising when the write fails."""
    try:
        if error is not None:
            await asyncio.to_thread(job_queue.fail_job, job_id, error)
        else:
            await asyncio.to_thread(job_queue.complete_job, job_id, result)
    except Exception:
        logger.exception(f"Failed to record outcome of job {job_id}", extra={"job_id": job_id})


async def run_job(job: dict[str, Any], handlers: dict[str, JobHandler]) -> None:
    """Run one claimed job and record its outcome."""
    job_id = job["id"]
    handler = handlers.get(job["type"])

    if handler is None:
        logger.error(f"No handler for job type {job['type']}", extra={"job_id": job_id})
        await _record_outcome(job_id, error=f"No handler for job type: {job['type']}")
        return

    logger.info(
        f"Running {job['type']} job {job_id} (attempt {job.get('attempts')})",
        extra={"job_id": job_id},
    )

    try:
        result = await handler(job.get("payload") or {})
    except Exception as e:
        logger.exception(f"Job {job_id} failed")
        await _record_outcome(job_id, error=str(e))
        return

    await _record_outcome(job_id, result=result)


def _log_task_exception(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"[job_worker] Job task crashed: {exc!r}", exc_info=exc)


async def process_jobs(
    handlers: dict[str, JobHandler] | None = None,
    poll_interval: float | None = None,
    max_concurrent: int | None = None,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Long-running coroutine that claims and runs due jobs.

    At most ``max_concurrent`` jobs run at once. The queue is polled every
    ``poll_interval`` seconds while idle, until ``stop_event`` is set.
    """
    settings = get_settings()
    handlers = handlers if handlers is not None else DEFAULT_HANDLERS
    poll_interval = poll_interval if poll_interval is not None else settings.JOB_POLL_INTERVAL_SECONDS
    max_concurrent = max_concurrent or settings.JOB_MAX_CONCURRENT

    semaphore = asyncio.Semaphore(max_concurrent)
    running: set[asyncio.Task] = set()

    async def _run(job: dict[str, Any]) -> None:
        try:
            await run_job(job, handlers)
        finally:
            semaphore.release()

    logger.info(
        f"[job_worker] Starting job worker (max {max_concurrent} concurrent)",
        extra={"handlers": sorted(handlers)},
    )

    while not (stop_event and stop_event.is_set()):
        await semaphore.acquire()
        try:
            job = await asyncio.to_thread(job_queue.dequeue)
        except Exception:
            logger.exception("[job_worker] Failed to dequeue job")
            job = None

        if job is None:
            semaphore.release()
            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(poll_interval)
            continue

        task = asyncio.create_task(_run(job))
        running.add(task)
        task.add_done_callback(running.discard)
        task.add_done_callback(_log_task_exception)

    if running:
        await asyncio.gather(*running, return_exceptions=True)
    logger.info("[job_worker] Job worker stopped")
