"""LLM chain comparing a candidate document against the knowledge base."""

import json
from typing import Any

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.llm import LLMError, call_openrouter, parse_llm_json
from app.core.logging import get_logger
from app.core.schemas_knowledge import (
    ComparisonAction,
    ComparisonRecommendation,
    KnowledgeComparison,
    NewInformationItem,
    OverlapItem,
)

logger = get_logger(__name__)

MIN_DOCUMENT_CHARS = 50
MAX_DOCUMENT_CHARS = 10000
DUPLICATE_PREVIEW_CHARS = 500
SIMILAR_CHUNK_LIMIT = 5

# ruff: noqa: E501
SYSTEM_PROMPT = "You are an expert knowledge base curator. Return ONLY valid JSON, no markdown formatting, no explanations outside the JSON."

COMPARISON_PROMPT = """You are curating a knowledge base of HMRC complaints guidance. Decide how a newly uploaded document relates to what is already stored.

NEW DOCUMENT:
{document}

POTENTIALLY SIMILAR EXISTING ENTRIES:
{duplicates}

RELATED EXCERPTS ALREADY IN THE KNOWLEDGE BASE:
{chunks}

Classify the document:

1. DUPLICATES (similarity above 90%): near-identical existing entries. Recommend skip, replace or merge.
2. OVERLAPS (similarity 60-90%): partial overlap. List the overlapping sections. Recommend merge, add_separately or update_existing.
3. NEW_INFORMATION: topics, updated guidance or case studies not yet covered. Rate importance high/medium/low.
4. GAPS_FILLED: missing sections or more recent detail for existing entries.
5. CONFLICTS: contradicting dates, amounts, procedures or superseded guidance.
6. RECOMMENDATIONS: one overall action: add, merge, replace, skip or review_required.

Return JSON with exactly this shape:

{{
  "duplicates": [{{"kb_id": "uuid", "title": "string", "similarity": 0.95, "recommendation": "skip|replace|merge", "reason": "string"}}],
  "overlaps": [{{"kb_id": "uuid", "title": "string", "similarity": 0.75, "overlap_percentage": 40, "overlap_sections": ["CRG4025"], "recommendation": "merge|add_separately|update_existing", "reason": "string"}}],
  "new_information": [{{"category": "CRG", "topic": "string", "content": "string", "confidence": 0.9, "importance": "high|medium|low"}}],
  "gaps_filled": [{{"existing_kb_id": "uuid", "gap_description": "string", "fills_gap": true, "impact": "high|medium|low"}}],
  "conflicts": [{{"kb_id": "uuid", "conflict_type": "string", "description": "string", "severity": "high|medium|low", "resolution_needed": true}}],
  "recommendations": {{"action": "add|merge|replace|skip|review_required", "confidence": 0.85, "reason": "string", "suggested_category": "CRG", "suggested_title": "string", "merge_targets": ["uuid"]}}
}}

Be conservative. When unsure, recommend "review_required"."""

FIX_SCHEMA_PROMPT = """The previous output was invalid. Here is the error:

{error}

Please fix the output to match the required JSON schema exactly. Output ONLY valid JSON, no explanation."""


def _format_duplicates(potential_duplicates: list[dict[str, Any]]) -> str:
    blocks = []
    for dup in potential_duplicates:
        if not dup or not (dup.get("content") or dup.get("title")):
            continue
        content = dup.get("content") or ""
        preview = content[:DUPLICATE_PREVIEW_CHARS] if content else "[No content available]"
        similarity = float(dup.get("similarity") or 0) * 100
        blocks.append(
            f"[Existing Entry: {dup.get('title') or 'Untitled'}]\n"
            f"ID: {dup.get('id')}\n"
            f"Category: {dup.get('category') or 'Uncategorized'}\n"
            f"Similarity: {similarity:.1f}%\n"
            f"Content Preview: {preview}..."
        )
    return "\n\n".join(blocks) or "No similar documents found."


def _format_chunks(similar_chunks: list[dict[str, Any]]) -> str:
    lines = [
        f"- {chunk.get('title') or 'Untitled'}: {(chunk.get('content') or '')[:300]}"
        for chunk in similar_chunks[:SIMILAR_CHUNK_LIMIT]
    ]
    return "\n".join(lines) or "None."


def build_comparison_prompt(
    document_text: str,
    similar_chunks: list[dict[str, Any]],
    potential_duplicates: list[dict[str, Any]],
) -> str:
    document = document_text[:MAX_DOCUMENT_CHARS]
    if len(document_text) > MAX_DOCUMENT_CHARS:
        document += " ...[truncated]"

    return COMPARISON_PROMPT.format(
        document=document,
        duplicates=_format_duplicates(potential_duplicates),
        chunks=_format_chunks(similar_chunks),
    )


def short_document_comparison(document_text: str) -> KnowledgeComparison:
    """Result for documents too short to compare."""
    return KnowledgeComparison(
        new_information=[
            NewInformationItem(
                category="CHG",
                topic="Uploaded document",
                content=document_text or "[Empty document]",
                confidence=0.5,
                importance="medium",
            )
        ],
        recommendations=ComparisonRecommendation(
            action=ComparisonAction.ADD,
            confidence=0.8,
            reason="First document in knowledge base - adding for review",
        ),
    )


def fallback_comparison(
    document_text: str,
    potential_duplicates: list[dict[str, Any]],
) -> KnowledgeComparison:
    """Manual-review result used whenever the model comparison fails."""
    overlaps = []
    for dup in potential_duplicates:
        similarity = min(max(float(dup.get("similarity") or 0), 0.0), 1.0)
        overlaps.append(
            OverlapItem(
                kb_id=str(dup.get("id") or ""),
                title=dup.get("title") or "Untitled",
                similarity=similarity,
                overlap_percentage=round(similarity * 100),
                recommendation="add_separately",
                reason="AI comparison unavailable, manual review recommended",
            )
        )

    return KnowledgeComparison(
        overlaps=overlaps,
        new_information=[
            NewInformationItem(
                category="unknown",
                topic="Uploaded document",
                content=document_text[:200],
                confidence=0.5,
                importance="medium",
            )
        ],
        recommendations=ComparisonRecommendation(
            action=ComparisonAction.REVIEW_REQUIRED,
            confidence=0.5,
            reason="AI comparison failed, manual review required before adding to knowledge base",
        ),
    )


def _run_comparison(user_prompt: str) -> KnowledgeComparison:
    """Model call with one fix-to-schema retry."""
    model = get_settings().COMPARISON_MODEL
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]

    raw_output = call_openrouter(messages, model, temperature=0.3, max_tokens=4000)
    try:
        return parse_llm_json(raw_output, KnowledgeComparison)
    except (json.JSONDecodeError, ValidationError) as e:
        error_msg = str(e)
        logger.warning(f"Comparison output failed validation: {error_msg}")

    retry_messages = messages + [
        {"role": "assistant", "content": raw_output},
        {"role": "user", "content": FIX_SCHEMA_PROMPT.format(error=error_msg)},
    ]
    retry_output = call_openrouter(retry_messages, model, temperature=0.3, max_tokens=4000)
    try:
        return parse_llm_json(retry_output, KnowledgeComparison)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Comparison retry also failed validation: {e}")
        raise ValueError("Model output could not be validated to schema") from e


def compare_document_to_knowledge_base(
    document_text: str,
    similar_chunks: list[dict[str, Any]],
    potential_duplicates: list[dict[str, Any]],
) -> KnowledgeComparison:
    """
    Compare a document against existing entries.

    Never raises: short documents and failed comparisons get safe defaults.
    """
    logger.info(
        f"Comparing document ({len(document_text or '')} chars) against knowledge base",
        extra={"potential_duplicates": len(potential_duplicates)},
    )

    if not document_text or len(document_text) < MIN_DOCUMENT_CHARS:
        logger.info("Document too short, skipping AI comparison")
        return short_document_comparison(document_text or "")

    try:
        prompt = build_comparison_prompt(document_text, similar_chunks, potential_duplicates)
        comparison = _run_comparison(prompt)
    except (LLMError, ValueError) as e:
        logger.error(f"Knowledge comparison failed: {e}")
        return fallback_comparison(document_text, potential_duplicates)

    logger.info(
        f"Comparison complete: {comparison.recommendations.action.value} "
        f"({comparison.recommendations.confidence:.0%})",
        extra={
            "duplicates": len(comparison.duplicates),
            "overlaps": len(comparison.overlaps),
            "new_information": len(comparison.new_information),
            "conflicts": len(comparison.conflicts),
        },
    )
    return comparison


def generate_comparison_summary(comparison: KnowledgeComparison) -> str:
    """Markdown report of a comparison for reviewers."""
    rec = comparison.recommendations
    lines = [
        "# Knowledge Base Comparison Report\n",
        f"## Overall Recommendation: {rec.action.value.upper()}",
        f"Confidence: {rec.confidence * 100:.0f}%",
        f"Reason: {rec.reason}\n",
    ]

    if comparison.duplicates:
        lines.append("## Duplicates Detected")
        for dup in comparison.duplicates:
            lines.append(f"- **{dup.title}** ({dup.similarity * 100:.1f}% similar)")
            lines.append(f"  → {dup.recommendation}: {dup.reason}")
        lines.append("")

    if comparison.overlaps:
        lines.append("## Overlaps Found")
        for overlap in comparison.overlaps:
            lines.append(f"- **{overlap.title}** ({overlap.overlap_percentage}% overlap)")
            lines.append(f"  Sections: {', '.join(overlap.overlap_sections)}")
            lines.append(f"  → {overlap.recommendation}: {overlap.reason}")
        lines.append("")

    if comparison.new_information:
        lines.append("## New Information")
        for info in comparison.new_information:
            lines.append(f"- **[{info.importance.upper()}] {info.topic}** ({info.category})")
            lines.append(f"  {info.content}")
            lines.append(f"  Confidence: {info.confidence * 100:.0f}%")
        lines.append("")

    if comparison.gaps_filled:
        lines.append("## Gaps Filled")
        for gap in comparison.gaps_filled:
            lines.append(f"- **[{gap.impact.upper()}] {gap.gap_description}**")
            lines.append(f"  Fills gap: {'Yes' if gap.fills_gap else 'No'}")
        lines.append("")

    if comparison.conflicts:
        lines.append("## Conflicts Detected")
        for conflict in comparison.conflicts:
            lines.append(f"- **[{conflict.severity.upper()}] {conflict.conflict_type}**")
            lines.append(f"  {conflict.description}")
            lines.append(f"  Resolution needed: {'Yes' if conflict.resolution_needed else 'No'}")
        lines.append("")

    return "\n".join(lines)
