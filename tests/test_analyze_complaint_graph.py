"""Tests for the complaint analysis graph."""

from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest

from app.core.schemas_analysis import ComplaintAnalysis
from app.graphs.analyze_complaint_graph import (
    CaseNotFoundError,
    build_complaint_context,
    run_complaint_analysis,
)

ANALYSIS = ComplaintAnalysis(has_grounds=True, success_rate=75, reasoning="Delay beyond 15 days")
GUIDANCE = [{"id": "kb-1", "title": "CRG4025", "content": "Unreasonable delays", "similarity": 0.9}]


def test_context_prefers_first_timeline_summary() -> None:
    complaint = {
        "timeline": [{"type": "context_provided", "summary": "Penalty despite timely filing"}],
        "complaint_context": "older context",
    }
    context = build_complaint_context(complaint, "HMRC replied on 1 May")

    assert context.startswith("Penalty despite timely filing")
    assert context.endswith("ADDITIONAL CONTEXT FOR RE-ANALYSIS:\nHMRC replied on 1 May")


def test_context_without_timeline_or_notes() -> None:
    assert build_complaint_context({}, None) == "No additional context provided"


@pytest.mark.asyncio
async def test_full_run_persists_analysis_and_logs_time(db) -> None:
    (complaint,) = db.seed(
        "complaints",
        {"complaint_reference": "CLIENT-7", "status": "assessment", "timeline": [
            {"type": "context_provided", "summary": "Client waited nine months for a reply"}
        ]},
    )
    (document,) = db.seed(
        "documents",
        {
            "complaint_id": complaint["id"],
            "filename": "hmrc.pdf",
            "document_type": "hmrc_letter",
            "processed_data": {"text": "We received your letter on 1 January 2024."},
        },
    )

    with (
        patch(
            "app.graphs.analyze_complaint_graph.search_knowledge_base_multi_angle",
            new=AsyncMock(return_value=GUIDANCE),
        ),
        patch(
            "app.graphs.analyze_complaint_graph.search_precedents",
            new=AsyncMock(return_value=[]),
        ),
        patch(
            "app.graphs.analyze_complaint_graph.analyze_complaint", return_value=ANALYSIS
        ) as mock_analyze,
    ):
        result = await run_complaint_analysis(UUID(document["id"]))

    assert result["complaint_id"] == UUID(complaint["id"])
    assert result["analysis"] == ANALYSIS
    assert result["guidance_count"] == 1
    assert result["precedent_count"] == 0
    assert result["context"] == {"documents": 1, "structured_analysis": False, "reanalysis": False}

    document_data = mock_analyze.call_args.args[0]
    assert "Client waited nine months" in document_data

    stored = db.tables["complaints"][0]
    assert stored["analysis"]["success_rate"] == 75
    time_log = db.tables["time_logs"][0]
    assert time_log["activity_type"] == "Initial Analysis"
    assert result["time_logged_minutes"] == time_log["minutes_spent"]


@pytest.mark.asyncio
async def test_missing_document_raises_case_not_found(db) -> None:
    with pytest.raises(CaseNotFoundError):
        await run_complaint_analysis(uuid4())
