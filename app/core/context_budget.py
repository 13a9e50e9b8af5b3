"""Token budgeting for analysis prompts."""

from dataclasses import dataclass
from typing import Any

from app.core.llm import estimate_tokens
from app.core.logging import get_logger

logger = get_logger(__name__)

TRUNCATION_MARKER = "\n\n... [Content truncated due to length] ..."


@dataclass(frozen=True)
class ContextBudget:
    total: int = 150_000
    documents: int = 60_000
    knowledge: int = 40_000
    precedents: int = 20_000
    system_prompt: int = 20_000
    output: int = 10_000


DEFAULT_BUDGET = ContextBudget()


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text to roughly max_tokens, leaving a marker when anything was dropped."""
    text = text or ""
    if estimate_tokens(text) <= max_tokens:
        return text
    max_chars = max(max_tokens * 4 - 100, 0)
    return text[:max_chars] + TRUNCATION_MARKER


def summarize_document(processed_data: dict[str, Any]) -> str:
    """Render a document's extracted data as labelled sections."""
    sections = []
    for key, label in (
        ("dates", "KEY DATES"),
        ("amounts", "AMOUNTS"),
        ("references", "REFERENCES"),
        ("issues", "ISSUES IDENTIFIED"),
    ):
        values = processed_data.get(key) or []
        if values:
            sections.append(f"{label}:\n" + "\n".join(str(v) for v in values))

    if processed_data.get("text"):
        sections.append(f"DOCUMENT TEXT:\n{truncate_to_tokens(processed_data['text'], 5000)}")

    return "\n\n".join(sections)


def _format_precedent(prec: dict[str, Any]) -> str:
    return (
        f"PRECEDENT: {prec.get('complaint_type')} - {prec.get('issue_category')}\n"
        f"Outcome: {prec.get('outcome')}\n"
        f"Resolution Time: {prec.get('resolution_time_days')} days\n"
        f"Compensation: £{prec.get('compensation_amount')}\n"
        f"Key Arguments: {'; '.join(prec.get('key_arguments') or [])}\n"
        f"Citations: {'; '.join(prec.get('effective_citations') or [])}"
    )


def prepare_analysis_context(
    complaint_context: str,
    documents: list[dict[str, Any]],
    guidance: list[dict[str, Any]],
    precedents: list[dict[str, Any]],
    budget: ContextBudget = DEFAULT_BUDGET,
) -> str:
    """
    Assemble the analysis prompt context within the token budget.

    Each part is truncated to its own allowance, then the whole is capped at
    the total budget.
    """
    doc_summaries = [
        f"--- DOCUMENT: {doc.get('filename') or 'Unknown'} ---\n"
        f"{summarize_document(doc.get('processed_data') or {})}"
        for doc in documents
    ]
    documents_ctx = truncate_to_tokens("\n\n".join(doc_summaries), budget.documents)

    knowledge_parts = [
        f"[{kb.get('category')}] {kb.get('title')}:\n{truncate_to_tokens(kb.get('content') or '', 3000)}"
        for kb in guidance[:10]
    ]
    knowledge_ctx = truncate_to_tokens(
        "\n\n--- NEXT GUIDANCE ---\n\n".join(knowledge_parts), budget.knowledge
    )

    precedents_ctx = truncate_to_tokens(
        "\n\n--- NEXT PRECEDENT ---\n\n".join(_format_precedent(p) for p in precedents[:5]),
        budget.precedents,
    )

    final_context = (
        f"COMPLAINT CONTEXT:\n{truncate_to_tokens(complaint_context, 5000)}\n\n"
        f"ALL DOCUMENTS ({len(documents)} total):\n{documents_ctx}\n\n"
        f"RELEVANT HMRC GUIDANCE ({len(guidance)} results, showing top 10):\n{knowledge_ctx}\n\n"
        f"SIMILAR PRECEDENT CASES ({len(precedents)} results, showing top 5):\n{precedents_ctx}"
    ).strip()

    total_tokens = estimate_tokens(final_context)
    logger.info(
        f"Analysis context: {total_tokens} tokens ({round(total_tokens / budget.total * 100)}% of budget)",
        extra={"documents": len(documents), "guidance": len(guidance), "precedents": len(precedents)},
    )

    if total_tokens > budget.total:
        logger.warning("Analysis context exceeds budget, applying final truncation")
        return truncate_to_tokens(final_context, budget.total)
    return final_context


def prepare_compact_guidance(
    guidance: list[dict[str, Any]],
    precedents: list[dict[str, Any]],
) -> dict[str, list[dict[str, Any]]]:
    """Top 5 guidance and top 3 precedents as compact dicts for prompts."""
    return {
        "guidance": [
            {
                "category": kb.get("category"),
                "title": kb.get("title"),
                "key_points": truncate_to_tokens(kb.get("content") or "", 1000),
            }
            for kb in guidance[:5]
        ],
        "precedents": [
            {
                "type": p.get("complaint_type"),
                "outcome": p.get("outcome"),
                "compensation": p.get("compensation_amount"),
                "key_arguments": (p.get("key_arguments") or [])[:3],
                "citations": (p.get("effective_citations") or [])[:3],
            }
            for p in precedents[:3]
        ],
    }
