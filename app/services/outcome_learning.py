"""Learning extraction from closed complaints.

Each recorded outcome is analysed once: the final letter (anonymised) and the
stored analysis go to the model, the learnings are written back onto the
``case_outcomes`` row with an embedding, and successful cases become new
precedents for future searches.
"""

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.chains.outcome_learnings import extract_learnings
from app.core.embeddings import embed_text
from app.core.logging import get_logger
from app.core.privacy import anonymize_pii
from app.core.schemas_complaints import SUCCESSFUL_OUTCOMES, LearningStats, OutcomeLearnings
from app.core.vector_search import clear_search_cache
from app.db import complaints, letters, precedents

logger = get_logger(__name__)

PENDING_BATCH_PAUSE_SECONDS = 2.0
MAX_PRECEDENT_ARGUMENTS = 10


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _days_between(start: str | None, end: str | None) -> int | None:
    if not start or not end:
        return None
    started = datetime.fromisoformat(start.replace("Z", "+00:00"))
    ended = datetime.fromisoformat(end.replace("Z", "+00:00"))
    return max((ended - started).days, 0)


def build_embedding_text(
    complaint: dict[str, Any],
    outcome_type: str,
    learnings: OutcomeLearnings,
) -> str:
    return "\n".join(
        [
            f"Complaint Type: {complaint.get('complaint_type') or 'General'}",
            f"Department: {complaint.get('hmrc_department') or 'Unknown'}",
            f"Outcome: {outcome_type}",
            f"Key Learnings: {learnings.key_learnings}",
            f"Effective Arguments: {', '.join(learnings.effective_arguments)}",
            f"Issue Categories: {', '.join(learnings.issue_categories)}",
        ]
    )


def _latest_letter_text(complaint_id: UUID) -> str:
    active = letters.list_letters(complaint_id, active_only=True)
    return (active[0].get("letter_content") or "") if active else ""


def _add_precedent(
    outcome: dict[str, Any],
    complaint: dict[str, Any],
    learnings: OutcomeLearnings,
    embedding: list[float],
) -> str | None:
    try:
        precedent = precedents.add_precedent(
            complaint_type=complaint.get("complaint_type") or "General",
            issue_category=(learnings.issue_categories or ["Unspecified"])[0],
            outcome=outcome["outcome_type"],
            embedding=embedding,
            resolution_time_days=outcome.get("days_to_resolution"),
            compensation_amount=outcome.get("compensation_received"),
            key_arguments=learnings.effective_arguments[:MAX_PRECEDENT_ARGUMENTS],
            effective_citations=learnings.key_citations[:MAX_PRECEDENT_ARGUMENTS],
            metadata={
                "source": "case_outcome",
                "outcome_id": str(outcome["id"]),
                "learnings": learnings.key_learnings,
                "recommendations": learnings.recommendations_for_similar,
                "hmrc_department": complaint.get("hmrc_department"),
                "letter_quality_score": learnings.letter_quality_score,
                "argument_strength_score": learnings.argument_strength_score,
                "analyzed_at": _utc_now_iso(),
            },
        )
    except Exception as e:
        logger.error(
            f"Failed to add precedent for outcome {outcome['id']}: {e}",
            extra={"outcome_id": str(outcome["id"])},
        )
        return None

    complaints.update_outcome(
        outcome["id"], {"added_to_precedents": True, "precedent_id": precedent["id"]}
    )
    clear_search_cache()
    return precedent["id"]


def extract_outcome_learnings(outcome_id: UUID) -> dict[str, Any] | None:
    """
    Extract and store learnings for one outcome.

    Returns the updated outcome row, or None when the outcome is missing
    or was already analysed.

    Raises:
        Exception: If loading the complaint, embedding or the outcome update fails
    """
    outcome = complaints.get_outcome(outcome_id)
    if not outcome:
        logger.warning(f"Outcome not found for learning extraction: {outcome_id}")
        return None
    if outcome.get("learning_extracted"):
        logger.info(f"Learnings already extracted for outcome {outcome_id}")
        return None

    complaint_id = UUID(str(outcome["complaint_id"]))
    complaint = complaints.get_complaint(complaint_id) or {}
    outcome_type = outcome["outcome_type"]
    is_successful = outcome_type in SUCCESSFUL_OUTCOMES

    logger.info(
        f"Extracting learnings for outcome {outcome_id} ({outcome_type})",
        extra={"outcome_id": str(outcome_id), "complaint_id": str(complaint_id)},
    )

    days_to_resolution = _days_between(complaint.get("created_at"), outcome.get("created_at"))
    letter = anonymize_pii(_latest_letter_text(complaint_id))
    learnings = extract_learnings(letter, complaint.get("analysis"), outcome_type, is_successful)
    embedding = embed_text(build_embedding_text(complaint, outcome_type, learnings))

    updated = complaints.update_outcome(
        outcome_id,
        {
            **learnings.model_dump(),
            "embedding": embedding,
            "days_to_resolution": days_to_resolution,
            "learning_extracted": True,
            "analyzed_at": _utc_now_iso(),
        },
    )

    if is_successful:
        precedent_id = _add_precedent(updated, complaint, learnings, embedding)
        if precedent_id:
            updated = {**updated, "added_to_precedents": True, "precedent_id": precedent_id}

    logger.info(f"Learning extraction complete for outcome {outcome_id}")
    return updated


async def process_pending_outcomes(
    limit: int = 10,
    pause_seconds: float = PENDING_BATCH_PAUSE_SECONDS,
) -> dict[str, int]:
    """Extract learnings for up to ``limit`` outcomes still waiting, one at a time."""
    pending = await asyncio.to_thread(complaints.list_pending_outcomes, limit)
    processed = errors = 0

    for index, outcome in enumerate(pending):
        if index and pause_seconds:
            await asyncio.sleep(pause_seconds)
        try:
            await asyncio.to_thread(extract_outcome_learnings, outcome["id"])
            processed += 1
        except Exception:
            errors += 1
            logger.exception(f"Failed to process outcome {outcome['id']}")

    logger.info(f"Processed {processed} pending outcomes ({errors} errors)")
    return {"processed": processed, "errors": errors}


def get_learning_stats(
    complaint_type: str | None = None,
    hmrc_department: str | None = None,
) -> dict[str, Any]:
    outcomes = complaints.list_learned_outcomes(complaint_type, hmrc_department)
    if not outcomes:
        return LearningStats().model_dump()

    total = len(outcomes)
    successful = sum(1 for o in outcomes if o.get("outcome_type") in SUCCESSFUL_OUTCOMES)
    arguments = Counter(arg for o in outcomes for arg in o.get("effective_arguments") or [])

    return LearningStats(
        total_cases=total,
        success_rate=round(successful / total * 100, 1),
        avg_resolution_days=round(
            sum(o.get("days_to_resolution") or 0 for o in outcomes) / total, 1
        ),
        avg_compensation=round(
            sum(float(o.get("compensation_received") or 0) for o in outcomes) / total, 2
        ),
        top_effective_arguments=[arg for arg, _ in arguments.most_common(5)],
    ).model_dump()
