"""Tests for complaint analysis with schema validation and one repair retry."""

import json
from unittest.mock import patch

import pytest

from app.chains.analyze_complaint import analyze_complaint

VALID_OUTPUT = {
    "has_grounds": True,
    "violations": [
        {"type": "Unreasonable delay", "description": "No reply for 9 months", "citation": "CRG4025"}
    ],
    "actions": ["Request compensation for professional costs"],
    "success_rate": 80,
    "reasoning": "Delay well beyond the 15 working day standard.",
}


def test_valid_first_response() -> None:
    with patch(
        "app.chains.analyze_complaint.call_openrouter", return_value=json.dumps(VALID_OUTPUT)
    ) as mock_call:
        result = analyze_complaint("case notes", "guidance text", "precedent text")

    assert result.has_grounds is True
    assert result.violations[0].citation == "CRG4025"
    assert mock_call.call_count == 1
    user_prompt = mock_call.call_args.args[0][1]["content"]
    assert "Relevant HMRC Guidance:\nguidance text" in user_prompt


def test_structured_context_is_serialised() -> None:
    guidance = [{"title": "CRG4025", "content": "Delay"}]
    with patch(
        "app.chains.analyze_complaint.call_openrouter", return_value=json.dumps(VALID_OUTPUT)
    ) as mock_call:
        analyze_complaint("case notes", guidance, [])

    user_prompt = mock_call.call_args.args[0][1]["content"]
    assert '"title": "CRG4025"' in user_prompt
    assert "Similar Precedents:\n[]" in user_prompt


def test_invalid_then_valid_retries_once() -> None:
    outputs = ['{"has_grounds": true, "success_rate": 140}', json.dumps(VALID_OUTPUT)]
    with patch(
        "app.chains.analyze_complaint.call_openrouter", side_effect=outputs
    ) as mock_call:
        result = analyze_complaint("case notes", "", "")

    assert result.success_rate == 80
    assert mock_call.call_count == 2
    retry_messages = mock_call.call_args_list[1].args[0]
    assert retry_messages[2] == {"role": "assistant", "content": outputs[0]}
    assert "previous output was invalid" in retry_messages[3]["content"]


def test_two_invalid_responses_raise() -> None:
    with patch(
        "app.chains.analyze_complaint.call_openrouter", side_effect=["not json", "still not json"]
    ):
        with pytest.raises(ValueError, match="could not be validated"):
            analyze_complaint("case notes", "", "")
