"""Tests for analysis prompt budgeting."""

from app.core.context_budget import (
    TRUNCATION_MARKER,
    ContextBudget,
    prepare_analysis_context,
    prepare_compact_guidance,
    summarize_document,
    truncate_to_tokens,
)


def _guidance(n: int) -> list[dict]:
    return [
        {"category": "CRG", "title": f"Guidance {i}", "content": f"Content {i}"} for i in range(n)
    ]


def _precedents(n: int) -> list[dict]:
    return [
        {
            "complaint_type": "delay",
            "issue_category": "correspondence",
            "outcome": "upheld",
            "resolution_time_days": 40,
            "compensation_amount": 150,
            "key_arguments": ["a", "b", "c", "d"],
            "effective_citations": ["CRG4025", "CRG5225", "CRG6050", "Charter"],
        }
        for _ in range(n)
    ]


class TestTruncate:
    def test_short_text_untouched(self) -> None:
        assert truncate_to_tokens("short", 100) == "short"

    def test_long_text_truncated_with_marker(self) -> None:
        result = truncate_to_tokens("a" * 10_000, 1000)

        assert result.endswith(TRUNCATION_MARKER)
        assert len(result) == 3900 + len(TRUNCATION_MARKER)


def test_summarize_document_sections() -> None:
    summary = summarize_document(
        {"dates": ["1 May 2024"], "amounts": ["£50.00"], "text": "Body text"}
    )

    assert "KEY DATES:\n1 May 2024" in summary
    assert "AMOUNTS:\n£50.00" in summary
    assert "DOCUMENT TEXT:\nBody text" in summary
    assert "REFERENCES" not in summary


def test_prepare_analysis_context() -> None:
    context = prepare_analysis_context(
        "Client waited eight months",
        [{"filename": "letter.pdf", "processed_data": {"text": "HMRC letter"}}],
        _guidance(12),
        _precedents(7),
    )

    assert context.startswith("COMPLAINT CONTEXT:\nClient waited eight months")
    assert "--- DOCUMENT: letter.pdf ---" in context
    assert "RELEVANT HMRC GUIDANCE (12 results, showing top 10)" in context
    assert "Guidance 9" in context
    assert "Guidance 10" not in context
    assert "SIMILAR PRECEDENT CASES (7 results, showing top 5)" in context


def test_prepare_analysis_context_respects_total_budget() -> None:
    budget = ContextBudget(total=500, documents=400, knowledge=400, precedents=400)
    context = prepare_analysis_context(
        "x" * 4000, [{"filename": "a", "processed_data": {"text": "y" * 8000}}], [], [], budget
    )

    assert context.endswith(TRUNCATION_MARKER)
    assert len(context) <= 500 * 4 + len(TRUNCATION_MARKER)


def test_prepare_compact_guidance() -> None:
    compact = prepare_compact_guidance(_guidance(8), _precedents(6))

    assert len(compact["guidance"]) == 5
    assert compact["guidance"][0] == {
        "category": "CRG",
        "title": "Guidance 0",
        "key_points": "Content 0",
    }
    assert len(compact["precedents"]) == 3
    assert compact["precedents"][0]["key_arguments"] == ["a", "b", "c"]
    assert compact["precedents"][0]["citations"] == ["CRG4025", "CRG5225", "CRG6050"]
