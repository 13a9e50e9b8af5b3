"""Tests for learning extraction from closed complaints."""

import json
from unittest.mock import patch
from uuid import uuid4

import pytest

from app.chains.outcome_learnings import build_learnings_prompt, parse_learnings
from app.core.llm import LLMError
from app.core.schemas_complaints import OutcomeLearnings
from app.db import complaints, letters
from app.services import outcome_learning

ORG_ID = uuid4()

LEARNINGS = {
    "effective_arguments": ["Delay exceeded the 15 working day service standard"],
    "ineffective_arguments": [],
    "key_citations": ["CRG4025"],
    "hmrc_weak_points": ["No acknowledgement of the original letter"],
    "hmrc_objections": [],
    "successful_rebuttals": [],
    "key_learnings": "Quote the service standard alongside the timeline",
    "recommendations_for_similar": "Lead with the delay in weeks",
    "letter_quality_score": 8.5,
    "argument_strength_score": 7.0,
    "evidence_quality_score": 8.0,
    "issue_categories": ["Delay", "Repayment"],
}


def _closed_outcome(outcome_type: str = "successful_full", compensation: float | None = 150.0) -> dict:
    complaint = complaints.create_complaint(
        ORG_ID, uuid4(), "LP-200", complaint_type="Delay", hmrc_department="Self Assessment"
    )
    letters.save_letter(
        complaint["id"], "initial_complaint", "Dear HMRC, Mr John Smith waited nine months."
    )
    return complaints.close_with_outcome(
        complaint["id"], outcome_type, compensation_received=compensation
    )


class TestParsing:
    def test_parses_json_inside_prose(self) -> None:
        learnings = parse_learnings(f"Here you go:\n{json.dumps(LEARNINGS)}\nThanks")

        assert learnings.key_citations == ["CRG4025"]
        assert learnings.letter_quality_score == 8.5

    def test_missing_and_null_fields_take_defaults(self) -> None:
        learnings = parse_learnings('{"key_learnings": null, "issue_categories": ["Delay"]}')

        assert learnings.key_learnings == "Analysis pending"
        assert learnings.argument_strength_score == 5
        assert learnings.issue_categories == ["Delay"]

    @pytest.mark.parametrize("raw", ["no json here", "{not valid}", '{"letter_quality_score": 14}'])
    def test_invalid_output(self, raw) -> None:
        with pytest.raises(ValueError):
            parse_learnings(raw)

    def test_prompt_truncates_letter(self) -> None:
        prompt = build_learnings_prompt("x" * 9000, {"summary": "delay"}, "unsuccessful", False)

        assert "x" * 8000 in prompt
        assert "x" * 8001 not in prompt
        assert "OUTCOME: unsuccessful (UNSUCCESSFUL)" in prompt


class TestExtraction:
    def test_successful_outcome_becomes_precedent(self, db) -> None:
        outcome = _closed_outcome()

        with patch(
            "app.chains.outcome_learnings.call_openrouter", return_value=json.dumps(LEARNINGS)
        ) as llm, patch("app.services.outcome_learning.embed_text", return_value=[0.1, 0.2]):
            updated = outcome_learning.extract_outcome_learnings(outcome["id"])

        prompt = llm.call_args.args[0][1]["content"]
        assert "[NAME_REMOVED]" in prompt
        assert "John Smith" not in prompt

        assert updated["learning_extracted"] is True
        assert updated["embedding"] == [0.1, 0.2]
        assert updated["days_to_resolution"] == 0
        assert updated["added_to_precedents"] is True

        (precedent,) = db.tables["precedents"]
        assert updated["precedent_id"] == precedent["id"]
        assert precedent["issue_category"] == "Delay"
        assert precedent["compensation_amount"] == 150.0
        assert precedent["metadata"]["outcome_id"] == str(outcome["id"])

    def test_unsuccessful_outcome_is_not_a_precedent(self, db) -> None:
        outcome = _closed_outcome("unsuccessful", None)

        with patch(
            "app.chains.outcome_learnings.call_openrouter", return_value=json.dumps(LEARNINGS)
        ), patch("app.services.outcome_learning.embed_text", return_value=[0.1]):
            updated = outcome_learning.extract_outcome_learnings(outcome["id"])

        assert updated["learning_extracted"] is True
        assert "precedents" not in db.tables

    def test_model_failure_stores_default_learnings(self, db) -> None:
        outcome = _closed_outcome("unsuccessful", None)

        with patch(
            "app.chains.outcome_learnings.call_openrouter", side_effect=LLMError("timeout")
        ), patch("app.services.outcome_learning.embed_text", return_value=[0.1]):
            updated = outcome_learning.extract_outcome_learnings(outcome["id"])

        assert updated["key_learnings"] == OutcomeLearnings().key_learnings
        assert updated["learning_extracted"] is True

    def test_already_extracted_outcome_is_skipped(self, db) -> None:
        outcome = _closed_outcome()
        complaints.update_outcome(outcome["id"], {"learning_extracted": True})

        with patch("app.chains.outcome_learnings.call_openrouter") as llm:
            assert outcome_learning.extract_outcome_learnings(outcome["id"]) is None

        llm.assert_not_called()

    def test_unknown_outcome(self, db) -> None:
        assert outcome_learning.extract_outcome_learnings(uuid4()) is None

    @pytest.mark.asyncio
    async def test_process_pending_counts_errors(self, db) -> None:
        first = _closed_outcome()
        second = _closed_outcome("unsuccessful", None)

        def _extract(outcome_id):
            if str(outcome_id) == str(second["id"]):
                raise RuntimeError("embedding service down")
            return {"id": outcome_id}

        with patch.object(outcome_learning, "extract_outcome_learnings", side_effect=_extract) as extract:
            result = await outcome_learning.process_pending_outcomes(limit=5, pause_seconds=0)

        assert result == {"processed": 1, "errors": 1}
        assert [c.args[0] for c in extract.call_args_list] == [first["id"], second["id"]]


class TestLearningStats:
    def test_empty(self, db) -> None:
        stats = outcome_learning.get_learning_stats()

        assert stats["total_cases"] == 0
        assert stats["top_effective_arguments"] == []

    def test_aggregates_learned_outcomes(self, db) -> None:
        db.seed(
            "case_outcomes",
            {
                "outcome_type": "successful_full",
                "complaint_type": "Delay",
                "learning_extracted": True,
                "days_to_resolution": 30,
                "compensation_received": 200.0,
                "effective_arguments": ["service standard", "timeline"],
            },
            {
                "outcome_type": "unsuccessful",
                "complaint_type": "Delay",
                "learning_extracted": True,
                "days_to_resolution": 60,
                "compensation_received": None,
                "effective_arguments": ["service standard"],
            },
            {
                "outcome_type": "successful_full",
                "complaint_type": "Penalty",
                "learning_extracted": True,
                "days_to_resolution": 10,
                "effective_arguments": [],
            },
            {"outcome_type": "successful_full", "complaint_type": "Delay", "learning_extracted": False},
        )

        stats = outcome_learning.get_learning_stats(complaint_type="Delay")

        assert stats["total_cases"] == 2
        assert stats["success_rate"] == 50.0
        assert stats["avg_resolution_days"] == 45.0
        assert stats["avg_compensation"] == 100.0
        assert stats["top_effective_arguments"] == ["service standard", "timeline"]
