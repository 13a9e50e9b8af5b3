"""API endpoints for letter generation and the letter lifecycle."""

import asyncio
import json
from typing import Any, AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from app.api.complaints import require_complaint_access
from app.chains.follow_up_letter import (
    FollowUpContext,
    compute_follow_up_timing,
    determine_follow_up_type,
    generate_follow_up_letter,
    saved_letter_type,
)
from app.chains.letter_pipeline import LetterGenerationError, generate_complaint_letter
from app.core.auth import AuthContext, require_auth
from app.core.llm import LLMError
from app.core.logging import get_logger
from app.core.rate_limiter import rate_limit
from app.core.schemas_letters import (
    GenerateComplaintLetterRequest,
    GenerateComplaintLetterResponse,
    GenerateFollowUpRequest,
    GenerateFollowUpResponse,
    LetterContentUpdate,
    LetterMarkSent,
    LetterSave,
    LetterType,
)
from app.core.time_calculations import ACTIVITY_TYPES, calculate_letter_time_for_text
from app.db import audit_log
from app.db import letters as letters_db
from app.db.time_logs import log_time

logger = get_logger(__name__)

router = APIRouter()


def _require_letter(letter_id: UUID, auth: AuthContext) -> dict[str, Any]:
    letter = letters_db.get_letter(letter_id)
    if not letter:
        raise HTTPException(status_code=404, detail="Letter not found")
    require_complaint_access(letter["complaint_id"], auth)
    return letter


def _pipeline_kwargs(request: GenerateComplaintLetterRequest, complaint: dict) -> dict[str, Any]:
    return {
        "analysis": request.analysis,
        "client_reference": complaint.get("complaint_reference") or "Client",
        "hmrc_department": complaint.get("hmrc_department") or "HMRC",
        "practice_letterhead": request.practice_letterhead,
        "charge_out_rate": request.charge_out_rate,
        "user_name": request.user_name,
        "user_title": request.user_title,
        "user_email": request.user_email,
        "user_phone": request.user_phone,
        "additional_context": request.additional_context,
    }


def _save_generated_letter(
    complaint_id: UUID,
    letter: str,
    auth: AuthContext,
) -> tuple[str | None, int | None]:
    """Auto-save as initial_complaint and log letter time. Both are best-effort."""
    letter_id = None
    try:
        saved = letters_db.save_letter(
            complaint_id, LetterType.INITIAL_COMPLAINT.value, letter, created_by=auth.user_id
        )
        letter_id = saved["id"]
    except Exception as e:
        logger.warning(f"Failed to auto-save letter for complaint {complaint_id}: {e}")

    minutes = None
    estimate = calculate_letter_time_for_text(letter)
    try:
        log_time(
            complaint_id,
            ACTIVITY_TYPES["LETTER_GENERATION"],
            estimate["minutes"],
            automated=True,
            notes=estimate["description"],
            user_id=auth.user_id,
        )
        minutes = estimate["minutes"]
    except Exception as e:
        logger.warning(f"Failed to log letter time for complaint {complaint_id}: {e}")

    return letter_id, minutes


# ============================================================================
# Generation
# ============================================================================


@router.post(
    "/generate",
    response_model=GenerateComplaintLetterResponse,
    dependencies=[Depends(rate_limit("letters.generate"))],
)
async def generate_letter(
    request: GenerateComplaintLetterRequest,
    auth: AuthContext = Depends(require_auth),
) -> GenerateComplaintLetterResponse:
    """Run the three-stage pipeline and auto-save the result."""
    try:
        complaint = require_complaint_access(request.complaint_id, auth)
        letter = await generate_complaint_letter(**_pipeline_kwargs(request, complaint))
        letter_id, minutes = _save_generated_letter(request.complaint_id, letter, auth)

        return GenerateComplaintLetterResponse(
            letter=letter, letter_id=letter_id, time_logged_minutes=minutes
        )

    except HTTPException:
        raise
    except LetterGenerationError:
        logger.exception(f"Letter generation failed for complaint {request.complaint_id}")
        raise HTTPException(status_code=502, detail="Letter generation failed")
    except Exception:
        logger.exception(f"Failed to generate letter for complaint {request.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to generate letter")


@router.post(
    "/generate/stream",
    dependencies=[Depends(rate_limit("letters.generate"))],
)
async def generate_letter_stream(
    request: GenerateComplaintLetterRequest,
    http_request: Request,
    auth: AuthContext = Depends(require_auth),
) -> StreamingResponse:
    """
    Run the pipeline, streaming progress as Server-Sent Events.

    Events: progress (stage, percent, message), complete (letter, letter_id,
    time_logged_minutes) or error (message). Generation is cancelled if the
    client disconnects.
    """
    try:
        complaint = require_complaint_access(request.complaint_id, auth)
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to start letter stream for complaint {request.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to generate letter")

    async def generate() -> AsyncGenerator[str, None]:
        queue: asyncio.Queue = asyncio.Queue()

        def on_progress(stage: str, percent: int, message: str) -> None:
            queue.put_nowait({"type": "progress", "stage": stage, "percent": percent, "message": message})

        task = asyncio.create_task(
            generate_complaint_letter(**_pipeline_kwargs(request, complaint), on_progress=on_progress)
        )

        try:
            while not task.done() or not queue.empty():
                if await http_request.is_disconnected():
                    logger.info(
                        f"Client disconnected from letter stream for complaint {request.complaint_id}"
                    )
                    return
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                yield f"data: {json.dumps(event)}\n\n"

            try:
                letter = task.result()
            except LetterGenerationError as e:
                logger.error(f"Streamed letter generation failed: {e}")
                yield f"data: {json.dumps({'type': 'error', 'message': 'Letter generation failed'})}\n\n"
                return

            letter_id, minutes = await asyncio.to_thread(
                _save_generated_letter, request.complaint_id, letter, auth
            )
            complete = {
                "type": "complete",
                "letter": letter,
                "letter_id": str(letter_id) if letter_id else None,
                "time_logged_minutes": minutes,
            }
            yield f"data: {json.dumps(complete)}\n\n"

        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/follow-up", response_model=GenerateFollowUpResponse)
async def generate_follow_up(
    request: GenerateFollowUpRequest,
    auth: AuthContext = Depends(require_auth),
) -> GenerateFollowUpResponse:
    """Generate a follow-up letter in an ongoing complaint and save it."""
    try:
        complaint = require_complaint_access(request.complaint_id, auth)

        follow_up_type = request.follow_up_type or determine_follow_up_type(
            has_response=bool(request.hmrc_response_date),
            response_date=request.hmrc_response_date,
            original_date=request.original_letter_date,
            indicated_closed=request.hmrc_indicated_closed,
            substantive=request.response_was_substantive,
        )
        days_since_original, days_overdue = compute_follow_up_timing(
            request.original_letter_date, request.hmrc_response_date
        )

        ctx = FollowUpContext(
            type=follow_up_type,
            original_letter_date=request.original_letter_date,
            days_since_original=days_since_original,
            client_reference=complaint.get("complaint_reference") or "Client",
            hmrc_department=complaint.get("hmrc_department") or "HMRC",
            original_letter_ref=request.original_letter_ref,
            hmrc_response_date=request.hmrc_response_date,
            hmrc_response_summary=request.hmrc_response_summary,
            days_overdue=days_overdue,
            unaddressed_points=request.unaddressed_points,
            additional_context=request.additional_context,
            practice_letterhead=request.practice_letterhead,
            charge_out_rate=request.charge_out_rate,
            user_name=request.user_name,
            user_title=request.user_title,
            user_email=request.user_email,
            user_phone=request.user_phone,
        )
        letter = await generate_follow_up_letter(ctx)

        letter_id = None
        try:
            saved = letters_db.save_letter(
                request.complaint_id,
                saved_letter_type(follow_up_type).value,
                letter,
                notes=f"Follow-up: {follow_up_type.value}",
                created_by=auth.user_id,
            )
            letter_id = saved["id"]
        except Exception as e:
            logger.warning(f"Failed to save follow-up letter: {e}")

        return GenerateFollowUpResponse(
            letter=letter,
            follow_up_type=follow_up_type,
            days_since_original=days_since_original,
            days_overdue=days_overdue,
            letter_id=letter_id,
        )

    except HTTPException:
        raise
    except LLMError:
        logger.exception(f"Model provider failed on follow-up for complaint {request.complaint_id}")
        raise HTTPException(status_code=502, detail="Letter model unavailable")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception(f"Failed to generate follow-up for complaint {request.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to generate follow-up letter")


# ============================================================================
# Lifecycle
# ============================================================================


@router.post("", status_code=201)
async def save_letter(body: LetterSave, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        require_complaint_access(body.complaint_id, auth)
        return letters_db.save_letter(
            body.complaint_id,
            body.letter_type.value,
            body.letter_content,
            notes=body.notes,
            created_by=auth.user_id,
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to save letter for complaint {body.complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to save letter")


@router.get("/complaint/{complaint_id}")
async def list_letters(
    complaint_id: UUID,
    active_only: bool = Query(False, description="Only letters not superseded"),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        require_complaint_access(complaint_id, auth)
        letters = letters_db.list_letters(complaint_id, active_only=active_only)
        return {"letters": letters, "count": len(letters)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to list letters for complaint {complaint_id}")
        raise HTTPException(status_code=500, detail="Failed to list letters")


@router.get("/{letter_id}")
async def get_letter(letter_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        return _require_letter(letter_id, auth)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get letter {letter_id}")
        raise HTTPException(status_code=500, detail="Failed to get letter")


@router.post("/{letter_id}/lock")
async def lock_letter(letter_id: UUID, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        _require_letter(letter_id, auth)
        return letters_db.lock_letter(letter_id)

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to lock letter {letter_id}")
        raise HTTPException(status_code=500, detail="Failed to lock letter")


@router.post("/{letter_id}/sent")
async def mark_as_sent(
    letter_id: UUID,
    body: LetterMarkSent,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        _require_letter(letter_id, auth)
        letter = letters_db.mark_as_sent(
            letter_id,
            auth.user_id,
            body.sent_method.value,
            hmrc_reference=body.hmrc_reference,
            notes=body.notes,
        )

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to mark letter {letter_id} as sent")
        raise HTTPException(status_code=500, detail="Failed to mark letter as sent")

    audit_log.data_update(
        auth.user_id,
        auth.organization_id,
        "letter",
        letter_id,
        {"sent_method": body.sent_method.value, "hmrc_reference": body.hmrc_reference},
    )
    return letter


@router.patch("/{letter_id}")
async def update_content(
    letter_id: UUID,
    body: LetterContentUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        _require_letter(letter_id, auth)
        return letters_db.update_content(letter_id, body.letter_content, body.notes)

    except HTTPException:
        raise
    except letters_db.LetterStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception(f"Failed to update letter {letter_id}")
        raise HTTPException(status_code=500, detail="Failed to update letter")


@router.delete("/{letter_id}", status_code=204)
async def delete_letter(letter_id: UUID, auth: AuthContext = Depends(require_auth)) -> None:
    try:
        _require_letter(letter_id, auth)
        letters_db.delete_letter(letter_id)

    except HTTPException:
        raise
    except letters_db.LetterStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception(f"Failed to delete letter {letter_id}")
        raise HTTPException(status_code=500, detail="Failed to delete letter")

    audit_log.data_delete(auth.user_id, auth.organization_id, "letter", letter_id)
