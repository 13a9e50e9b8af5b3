"""LLM chain extracting reusable learnings from a closed complaint."""

import json
import re
from typing import Any

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.llm import LLMError, call_openrouter
from app.core.logging import get_logger
from app.core.schemas_complaints import OutcomeLearnings

logger = get_logger(__name__)

MAX_LETTER_CHARS = 8000
MAX_ANALYSIS_CHARS = 4000

# ruff: noqa: E501
SYSTEM_PROMPT = "You are an expert at analyzing HMRC complaint outcomes to extract learnings. Always respond with valid JSON."

LEARNINGS_PROMPT = """Analyze this closed HMRC complaint case and extract learnings for future reference.

OUTCOME: {outcome_type} ({verdict})

LETTER (anonymised):
{letter}

ORIGINAL ANALYSIS:
{analysis}

Extract the following in JSON format:
{{
  "effective_arguments": ["argument that worked well"],
  "ineffective_arguments": ["argument that didn't help"],
  "key_citations": ["CHG section X", "CRG paragraph Y"],
  "hmrc_weak_points": ["where HMRC's position was weak"],
  "hmrc_objections": ["objections HMRC raised"],
  "successful_rebuttals": ["how objections were overcome"],
  "key_learnings": "Summary of what we learned from this case",
  "recommendations_for_similar": "For similar cases, we should...",
  "letter_quality_score": 8.5,
  "argument_strength_score": 7.0,
  "evidence_quality_score": 8.0,
  "issue_categories": ["Payment Allocation", "Time to Pay"]
}}

Focus on:
1. What made the difference in this case
2. Which arguments were most persuasive
3. How to handle similar cases in future
4. Patterns in HMRC's responses

Be specific and actionable. Score from 0-10 where 10 is excellent."""

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def build_learnings_prompt(
    anonymised_letter: str,
    analysis: dict[str, Any] | None,
    outcome_type: str,
    is_successful: bool,
) -> str:
    return LEARNINGS_PROMPT.format(
        outcome_type=outcome_type,
        verdict="SUCCESSFUL" if is_successful else "UNSUCCESSFUL",
        letter=anonymised_letter[:MAX_LETTER_CHARS],
        analysis=json.dumps(analysis or {}, indent=2, default=str)[:MAX_ANALYSIS_CHARS],
    )


def parse_learnings(raw_output: str) -> OutcomeLearnings:
    """
    Validate the first JSON object in the model output.

    Raises:
        ValueError: If no valid learnings object is present
    """
    match = _JSON_OBJECT_RE.search(raw_output or "")
    if not match:
        raise ValueError("No JSON object in model output")
    try:
        parsed = json.loads(match.group(0))
        return OutcomeLearnings.model_validate(
            {k: v for k, v in parsed.items() if v is not None}
        )
    except (json.JSONDecodeError, ValidationError, AttributeError) as e:
        raise ValueError(f"Invalid learnings output: {e}") from e


def extract_learnings(
    anonymised_letter: str,
    analysis: dict[str, Any] | None,
    outcome_type: str,
    is_successful: bool,
) -> OutcomeLearnings:
    """
    Ask the model what this case teaches.

    Never raises for model or parsing failures; default learnings are
    returned instead so the outcome can still be marked as analysed.
    """
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": build_learnings_prompt(
                anonymised_letter, analysis, outcome_type, is_successful
            ),
        },
    ]

    try:
        raw_output = call_openrouter(
            messages, get_settings().ANALYSIS_MODEL, temperature=0.3, max_tokens=2000
        )
        return parse_learnings(raw_output)
    except (LLMError, ValueError) as e:
        logger.error(f"Learning extraction failed, using defaults: {e}")
        return OutcomeLearnings()
