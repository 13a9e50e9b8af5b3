"""Tests for comparing uploads against the knowledge base."""

import json
from unittest.mock import patch

from app.chains.compare_knowledge import (
    build_comparison_prompt,
    compare_document_to_knowledge_base,
    generate_comparison_summary,
)
from app.core.llm import LLMError
from app.core.schemas_knowledge import ComparisonAction

DOCUMENT = "CRG4025 sets out how HMRC should remedy unreasonable delays. " * 3

DUPLICATES = [{"id": "kb-1", "title": "CRG4025", "content": "Delay guidance", "similarity": 0.93}]

VALID_OUTPUT = json.dumps(
    {
        "duplicates": [
            {
                "kb_id": "kb-1",
                "title": "CRG4025",
                "similarity": 0.93,
                "recommendation": "skip",
                "reason": "Same guidance",
            }
        ],
        "recommendations": {"action": "skip", "confidence": 0.9, "reason": "Already stored"},
    }
)


def test_short_document_skips_model() -> None:
    with patch("app.chains.compare_knowledge.call_openrouter") as mock_call:
        result = compare_document_to_knowledge_base("tiny", [], [])

    mock_call.assert_not_called()
    assert result.recommendations.action == ComparisonAction.ADD


def test_valid_output() -> None:
    with patch("app.chains.compare_knowledge.call_openrouter", return_value=VALID_OUTPUT):
        result = compare_document_to_knowledge_base(DOCUMENT, [], DUPLICATES)

    assert result.recommendations.action == ComparisonAction.SKIP
    assert result.duplicates[0].kb_id == "kb-1"


def test_retry_fixes_schema() -> None:
    with patch(
        "app.chains.compare_knowledge.call_openrouter",
        side_effect=["not json", f"```json\n{VALID_OUTPUT}\n```"],
    ) as mock_call:
        result = compare_document_to_knowledge_base(DOCUMENT, [], DUPLICATES)

    assert mock_call.call_count == 2
    retry_messages = mock_call.call_args_list[1].args[0]
    assert retry_messages[-2] == {"role": "assistant", "content": "not json"}
    assert result.recommendations.action == ComparisonAction.SKIP


def test_invalid_twice_falls_back_to_review() -> None:
    with patch("app.chains.compare_knowledge.call_openrouter", side_effect=["{}", "{}"]):
        result = compare_document_to_knowledge_base(DOCUMENT, [], DUPLICATES)

    assert result.recommendations.action == ComparisonAction.REVIEW_REQUIRED
    assert result.overlaps[0].overlap_percentage == 93


def test_provider_error_falls_back() -> None:
    with patch(
        "app.chains.compare_knowledge.call_openrouter", side_effect=LLMError("503 from provider")
    ):
        result = compare_document_to_knowledge_base(DOCUMENT, [], [])

    assert result.recommendations.action == ComparisonAction.REVIEW_REQUIRED


def test_prompt_truncates_long_documents() -> None:
    prompt = build_comparison_prompt("x" * 12000, [{"title": "T", "content": "c"}], [])

    assert "...[truncated]" in prompt
    assert "No similar documents found." in prompt
    assert "- T: c" in prompt


def test_summary_report() -> None:
    with patch("app.chains.compare_knowledge.call_openrouter", return_value=VALID_OUTPUT):
        comparison = compare_document_to_knowledge_base(DOCUMENT, [], DUPLICATES)

    summary = generate_comparison_summary(comparison)

    assert "## Overall Recommendation: SKIP" in summary
    assert "Confidence: 90%" in summary
    assert "- **CRG4025** (93.0% similar)" in summary
