"""Complaint analysis LangGraph workflow.

load_case -> search_knowledge -> prepare_context -> call_llm -> persist
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from langgraph.graph import END, StateGraph

from app.chains.analyze_complaint import analyze_complaint
from app.chains.analyze_document import (
    analyze_documents,
    combine_document_analyses,
    should_use_structured_analysis,
)
from app.core.context_budget import prepare_analysis_context, prepare_compact_guidance
from app.core.logging import get_logger
from app.core.privacy import sanitize_for_llm
from app.core.schemas_analysis import ComplaintAnalysis
from app.core.time_calculations import ACTIVITY_TYPES, calculate_analysis_time
from app.core.vector_search import search_knowledge_base_multi_angle, search_precedents
from app.db.complaints import get_complaint, save_analysis
from app.db.documents import get_document, list_documents
from app.db.time_logs import log_time

logger = get_logger(__name__)

MAX_STEPS = 8
GUIDANCE_THRESHOLD = 0.7
GUIDANCE_COUNT = 10
PRECEDENT_THRESHOLD = 0.7
PRECEDENT_COUNT = 5
NO_CONTEXT = "No additional context provided"


class CaseNotFoundError(LookupError):
    """The document or its complaint does not exist."""


@dataclass
class AnalyzeComplaintState:
    """State for the complaint analysis graph."""

    # Input fields
    document_id: UUID
    additional_context: str | None = None

    # Processing state
    step_count: int = 0
    complaint_id: UUID | None = None
    documents: list[dict[str, Any]] = field(default_factory=list)
    complaint_context: str = ""
    guidance: list[dict[str, Any]] = field(default_factory=list)
    precedents: list[dict[str, Any]] = field(default_factory=list)
    document_data: str = ""
    analysis: ComplaintAnalysis | None = None

    # Outputs
    time_logged_minutes: int | None = None
    structured: bool = False


def _check_max_steps(state: AnalyzeComplaintState) -> AnalyzeComplaintState:
    """Check and increment step count, raise if exceeded."""
    state.step_count += 1
    if state.step_count > MAX_STEPS:
        raise RuntimeError(f"Exceeded max steps ({MAX_STEPS})")
    return state


def build_complaint_context(complaint: dict[str, Any], additional_context: str | None) -> str:
    """First timeline summary, else complaint_context, plus any re-analysis notes."""
    timeline = complaint.get("timeline") or []
    base = None
    if timeline and isinstance(timeline[0], dict):
        base = timeline[0].get("summary")
    base = base or complaint.get("complaint_context") or NO_CONTEXT

    if additional_context:
        return f"{base}\n\nADDITIONAL CONTEXT FOR RE-ANALYSIS:\n{additional_context}"
    return base


async def load_case(state: AnalyzeComplaintState) -> dict[str, Any]:
    """Load the document, its complaint and every document on the complaint."""
    state = _check_max_steps(state)

    document = await asyncio.to_thread(get_document, state.document_id)
    if not document:
        raise CaseNotFoundError(f"Document {state.document_id} not found")

    complaint_id = document.get("complaint_id")
    complaint = await asyncio.to_thread(get_complaint, complaint_id) if complaint_id else None
    if not complaint:
        raise CaseNotFoundError(f"Complaint for document {state.document_id} not found")

    documents = await asyncio.to_thread(list_documents, complaint_id)

    logger.info(
        f"Loaded complaint {complaint_id} with {len(documents)} documents",
        extra={"document_id": str(state.document_id), "complaint_id": str(complaint_id)},
    )

    return {
        "complaint_id": UUID(str(complaint_id)),
        "documents": documents,
        "complaint_context": build_complaint_context(complaint, state.additional_context),
        "step_count": state.step_count,
    }


async def search_knowledge(state: AnalyzeComplaintState) -> dict[str, Any]:
    """Run guidance and precedent searches concurrently."""
    state = _check_max_steps(state)

    guidance, precedents = await asyncio.gather(
        search_knowledge_base_multi_angle(
            state.complaint_context, threshold=GUIDANCE_THRESHOLD, match_count=GUIDANCE_COUNT
        ),
        search_precedents(
            state.complaint_context, threshold=PRECEDENT_THRESHOLD, match_count=PRECEDENT_COUNT
        ),
    )

    logger.info(
        f"Found {len(guidance)} guidance entries and {len(precedents)} precedents",
        extra={"complaint_id": str(state.complaint_id)},
    )

    return {"guidance": guidance, "precedents": precedents, "step_count": state.step_count}


async def prepare_context(state: AnalyzeComplaintState) -> dict[str, Any]:
    """Budget the context, switching to per-document extraction for large cases."""
    state = _check_max_steps(state)

    structured = should_use_structured_analysis(state.documents)
    if structured:
        logger.info(
            "Documents exceed single-prompt budget, using structured analysis",
            extra={"complaint_id": str(state.complaint_id)},
        )
        analyses = await asyncio.to_thread(analyze_documents, state.documents)
        context = combine_document_analyses(analyses, state.complaint_context)
    else:
        context = prepare_analysis_context(
            state.complaint_context, state.documents, state.guidance, state.precedents
        )

    return {
        "document_data": sanitize_for_llm(context),
        "structured": structured,
        "step_count": state.step_count,
    }


async def call_llm(state: AnalyzeComplaintState) -> dict[str, Any]:
    """Run the complaint analysis chain with compact guidance and precedents."""
    state = _check_max_steps(state)

    compact = prepare_compact_guidance(state.guidance, state.precedents)
    analysis = await asyncio.to_thread(
        analyze_complaint,
        state.document_data,
        compact["guidance"],
        compact["precedents"],
    )

    return {"analysis": analysis, "step_count": state.step_count}


async def persist(state: AnalyzeComplaintState) -> dict[str, Any]:
    """Store the analysis and log automatic analysis time."""
    state = _check_max_steps(state)

    if not state.analysis or not state.complaint_id:
        raise ValueError("No analysis to persist")

    await asyncio.to_thread(save_analysis, state.complaint_id, state.analysis.model_dump())

    time_logged = None
    estimate = calculate_analysis_time(len(state.documents))
    try:
        await asyncio.to_thread(
            log_time,
            state.complaint_id,
            ACTIVITY_TYPES["INITIAL_ANALYSIS"],
            estimate["minutes"],
            True,
            estimate["description"],
        )
        time_logged = estimate["minutes"]
    except Exception as e:
        logger.warning(f"Failed to log analysis time for {state.complaint_id}: {e}")

    return {"time_logged_minutes": time_logged, "step_count": state.step_count}


def _build_graph() -> StateGraph:
    """Build the complaint analysis graph."""
    graph = StateGraph(AnalyzeComplaintState)

    graph.add_node("load_case", load_case)
    graph.add_node("search_knowledge", search_knowledge)
    graph.add_node("prepare_context", prepare_context)
    graph.add_node("call_llm", call_llm)
    graph.add_node("persist", persist)

    graph.set_entry_point("load_case")
    graph.add_edge("load_case", "search_knowledge")
    graph.add_edge("search_knowledge", "prepare_context")
    graph.add_edge("prepare_context", "call_llm")
    graph.add_edge("call_llm", "persist")
    graph.add_edge("persist", END)

    return graph


async def run_complaint_analysis(
    document_id: UUID,
    additional_context: str | None = None,
) -> dict[str, Any]:
    """
    Analyse the complaint a document belongs to.

    Args:
        document_id: Any document on the complaint
        additional_context: Extra notes for a re-analysis

    Returns:
        Dict with complaint_id, analysis, guidance_count, precedent_count,
        time_logged_minutes and context

    Raises:
        CaseNotFoundError: If the document or complaint is missing
        LLMError: If the model call fails
        ValueError: If model output cannot be validated
    """
    logger.info(
        f"Starting complaint analysis for document {document_id}",
        extra={"document_id": str(document_id), "reanalysis": bool(additional_context)},
    )

    initial_state = AnalyzeComplaintState(
        document_id=document_id,
        additional_context=additional_context,
    )

    compiled = _build_graph().compile()
    final_state = await compiled.ainvoke(initial_state)

    analysis = final_state.get("analysis")
    if not analysis:
        raise ValueError("Graph completed without analysis")

    logger.info(
        f"Completed complaint analysis for {final_state['complaint_id']}",
        extra={"document_id": str(document_id)},
    )

    return {
        "complaint_id": final_state["complaint_id"],
        "analysis": analysis,
        "guidance_count": len(final_state.get("guidance") or []),
        "precedent_count": len(final_state.get("precedents") or []),
        "time_logged_minutes": final_state.get("time_logged_minutes"),
        "context": {
            "documents": len(final_state.get("documents") or []),
            "structured_analysis": final_state.get("structured", False),
            "reanalysis": bool(additional_context),
        },
    }
