"""API endpoints for the knowledge base, precedents, staging and chat."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from app.chains.compare_knowledge import generate_comparison_summary
from app.chains.knowledge_chat import chat_with_knowledge_base
from app.core.auth import AuthContext, require_admin, require_auth
from app.core.llm import LLMError
from app.core.logging import get_logger
from app.core.manual_chunking import get_manual_config
from app.core.rate_limiter import rate_limit
from app.core.schemas_knowledge import (
    HybridSearchRequest,
    KnowledgeChatRequest,
    KnowledgeChatResponse,
    KnowledgeEntryCreate,
    KnowledgeSearchRequest,
    PrecedentCreate,
    StagedApproval,
    StagedRejection,
)
from app.core.schemas_jobs import JobType
from app.core.vector_search import hybrid_search, search_knowledge_base_smart, search_precedents
from app.db import conversations, kb_staging, knowledge_base
from app.db.job_queue import enqueue
from app.services import knowledge_ingestion

logger = get_logger(__name__)

router = APIRouter()


# ============================================================================
# Search and browse
# ============================================================================


@router.post("/search")
async def search(
    request: KnowledgeSearchRequest,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Smart search: category-filtered when the query names categories, else multi-angle."""
    try:
        results = await search_knowledge_base_smart(
            request.query, threshold=request.threshold, match_count=request.limit
        )
        return {"results": results, "count": len(results)}

    except Exception:
        logger.exception("Knowledge base search failed")
        raise HTTPException(status_code=500, detail="Search failed")


@router.post("/search/hybrid")
async def search_hybrid(
    request: HybridSearchRequest,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        results = await hybrid_search(
            request.query,
            match_count=request.limit,
            vector_weight=request.vector_weight,
            keyword_weight=request.keyword_weight,
        )
        return {"results": results, "count": len(results)}

    except Exception:
        logger.exception("Hybrid search failed")
        raise HTTPException(status_code=500, detail="Search failed")


@router.get("")
async def list_entries(
    category: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        entries = knowledge_base.list_entries(category, limit=limit, offset=offset)
        return {"entries": entries, "limit": limit, "offset": offset, "count": len(entries)}

    except Exception:
        logger.exception("Failed to list knowledge base entries")
        raise HTTPException(status_code=500, detail="Failed to list entries")


@router.get("/categories")
async def get_categories(auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        return {"categories": knowledge_base.get_categories()}

    except Exception:
        logger.exception("Failed to get categories")
        raise HTTPException(status_code=500, detail="Failed to get categories")


@router.get("/timeline")
async def get_timeline(
    limit: int = Query(20, ge=1, le=100),
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Recently added or updated entries."""
    try:
        return {"entries": knowledge_base.get_timeline(limit)}

    except Exception:
        logger.exception("Failed to get knowledge base timeline")
        raise HTTPException(status_code=500, detail="Failed to get timeline")


@router.post("", status_code=201)
async def add_entry(
    body: KnowledgeEntryCreate,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        return knowledge_ingestion.add_knowledge_entry(body)

    except Exception:
        logger.exception("Failed to add knowledge base entry")
        raise HTTPException(status_code=500, detail="Failed to add entry")


@router.post("/ingest", status_code=202)
async def queue_manual_ingestion(
    codes: Optional[list[str]] = Query(None, description="Manual codes, default all"),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Queue a sync_knowledge_base job that crawls and ingests HMRC manuals."""
    unknown = [c for c in codes or [] if not get_manual_config(c.upper())]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown manual codes: {', '.join(unknown)}")

    try:
        job = enqueue(
            JobType.SYNC_KNOWLEDGE_BASE.value,
            {"codes": [c.upper() for c in codes] if codes else None},
            priority=3,
        )
        return {"job_id": job["id"], "status": job["status"]}

    except Exception:
        logger.exception("Failed to queue manual ingestion")
        raise HTTPException(status_code=500, detail="Failed to queue ingestion")


# ============================================================================
# Precedents
# ============================================================================


@router.post("/precedents/search")
async def search_precedent_cases(
    request: KnowledgeSearchRequest,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        results = await search_precedents(
            request.query, threshold=request.threshold, match_count=request.limit
        )
        return {"results": results, "count": len(results)}

    except Exception:
        logger.exception("Precedent search failed")
        raise HTTPException(status_code=500, detail="Search failed")


@router.post("/precedents", status_code=201)
async def add_precedent(
    body: PrecedentCreate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        return knowledge_ingestion.add_precedent_case(body)

    except Exception:
        logger.exception("Failed to add precedent")
        raise HTTPException(status_code=500, detail="Failed to add precedent")


# ============================================================================
# Staging
# ============================================================================


@router.post(
    "/upload",
    status_code=201,
    dependencies=[Depends(rate_limit("knowledge.upload"))],
)
async def upload_for_comparison(
    file: UploadFile = File(...),
    category: Optional[str] = Form(None),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Compare a document against the knowledge base and stage it for review."""
    try:
        raw_bytes = await file.read()
        result = await knowledge_ingestion.upload_for_comparison(
            file.filename or "upload",
            file.content_type,
            raw_bytes,
            category=category,
            uploaded_by=auth.user_id,
        )
        comparison = result["comparison"]
        return {
            "staged": result["staged"],
            "comparison": comparison.model_dump(mode="json"),
            "summary": generate_comparison_summary(comparison),
        }

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Failed to stage knowledge base upload")
        raise HTTPException(status_code=500, detail="Failed to process upload")


@router.get("/staging")
async def list_staged(
    status: Optional[str] = Query("pending"),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        staged = kb_staging.list_staged(status)
        return {"staged": staged, "count": len(staged)}

    except Exception:
        logger.exception("Failed to list staged documents")
        raise HTTPException(status_code=500, detail="Failed to list staged documents")


@router.post("/staging/{staged_id}/approve")
async def approve_staged(
    staged_id: UUID,
    body: StagedApproval,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        return knowledge_ingestion.approve_staged(
            staged_id, auth.user_id, category=body.category, title=body.title
        )

    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception(f"Failed to approve staged document {staged_id}")
        raise HTTPException(status_code=500, detail="Failed to approve document")


@router.post("/staging/{staged_id}/reject")
async def reject_staged(
    staged_id: UUID,
    body: StagedRejection,
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        return knowledge_ingestion.reject_staged(staged_id, auth.user_id, body.notes)

    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception:
        logger.exception(f"Failed to reject staged document {staged_id}")
        raise HTTPException(status_code=500, detail="Failed to reject document")


# ============================================================================
# Chat
# ============================================================================


@router.post("/chat", response_model=KnowledgeChatResponse)
async def chat(
    request: KnowledgeChatRequest,
    auth: AuthContext = Depends(require_auth),
) -> KnowledgeChatResponse:
    """Answer a question from the knowledge base and persist the exchange."""
    try:
        conversation_id = request.conversation_id
        if conversation_id:
            conversation = conversations.get_conversation(conversation_id)
            if not conversation or str(conversation.get("user_id")) != str(auth.user_id):
                raise HTTPException(status_code=404, detail="Conversation not found")
        else:
            conversation_id = conversations.create_conversation(auth.user_id, request.message)["id"]

        result = await chat_with_knowledge_base(
            request.message, [m.model_dump() for m in request.history]
        )

        try:
            conversations.add_message(conversation_id, "user", request.message)
            conversations.add_message(
                conversation_id, "assistant", result["answer"], result["sources"]
            )
        except Exception as e:
            logger.warning(f"Failed to persist chat messages: {e}")

        return KnowledgeChatResponse(
            answer=result["answer"], sources=result["sources"], conversation_id=conversation_id
        )

    except HTTPException:
        raise
    except LLMError:
        logger.exception("Knowledge chat model call failed")
        raise HTTPException(status_code=502, detail="Chat model unavailable")
    except Exception:
        logger.exception("Knowledge chat failed")
        raise HTTPException(status_code=500, detail="Chat failed")


@router.get("/chat/conversations")
async def list_conversations(auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        return {"conversations": conversations.list_conversations(auth.user_id)}

    except Exception:
        logger.exception("Failed to list conversations")
        raise HTTPException(status_code=500, detail="Failed to list conversations")


@router.get("/chat/conversations/{conversation_id}")
async def get_conversation(
    conversation_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    try:
        conversation = conversations.get_conversation(conversation_id)
        if not conversation or str(conversation.get("user_id")) != str(auth.user_id):
            raise HTTPException(status_code=404, detail="Conversation not found")
        return {**conversation, "messages": conversations.list_messages(conversation_id)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get conversation {conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to get conversation")


@router.get("/{entry_id}")
async def get_entry(entry_id: str, auth: AuthContext = Depends(require_auth)) -> dict:
    try:
        entry = knowledge_base.get_entry(entry_id)
        if not entry:
            raise HTTPException(status_code=404, detail="Entry not found")
        return entry

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get knowledge base entry {entry_id}")
        raise HTTPException(status_code=500, detail="Failed to get entry")
