"""LLM chain assessing whether a complaint has grounds against HMRC."""

import json
from typing import Any

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.llm import call_openrouter, parse_llm_json
from app.core.logging import get_logger
from app.core.schemas_analysis import ComplaintAnalysis

logger = get_logger(__name__)

# ruff: noqa: E501
SYSTEM_PROMPT = """You are an expert in HMRC complaints procedures and the HMRC Charter, advising a UK accountancy practice.

Assess whether the client has valid grounds for a complaint against HMRC, using the document data, the relevant guidance and similar precedents supplied.

COMPLAINT ROUTE:
Tier 1 (the HMRC office that handled the matter) -> Tier 2 (independent internal review) -> Adjudicator's Office -> Parliamentary and Health Service Ombudsman.

KEY GUIDANCE:
- CRG4025: unreasonable delays and remedies
- CRG5225: professional fees and costs incurred by the client
- CRG6050-6075: compensation for worry and distress
- HMRC Charter commitments: Being Responsive, Getting Things Right, Making Things Easy, Treating You Fairly

ASSESS:
1. Every Charter or CRG breach the documents evidence, each with its citation
2. How many distinct HMRC system or process errors occurred
3. Whether there was a significant delay (beyond published timescales)
4. The concrete actions the practice should take next
5. A realistic success rate (0-100) based on the evidence and precedents

Return ONLY valid JSON with this shape:

{
  "has_grounds": true,
  "violations": [{"type": "Unreasonable delay", "description": "string", "citation": "CRG4025"}],
  "actions": ["string"],
  "success_rate": 75,
  "reasoning": "string",
  "system_errors_count": 2,
  "significant_delay": true
}"""

FIX_SCHEMA_PROMPT = """The previous output was invalid. Here is the error:

{error}

Please fix the output to match the required JSON schema exactly. Output ONLY valid JSON, no explanation."""


def build_user_prompt(
    document_data: str,
    relevant_guidance: str,
    similar_cases: str,
) -> str:
    return (
        f"Document Data:\n{document_data}\n\n"
        f"Relevant HMRC Guidance:\n{relevant_guidance}\n\n"
        f"Similar Precedents:\n{similar_cases}\n\n"
        "Provide your analysis:"
    )


def analyze_complaint(
    document_data: str,
    relevant_guidance: str | list[dict[str, Any]],
    similar_cases: str | list[dict[str, Any]],
) -> ComplaintAnalysis:
    """
    Analyse a complaint and validate the result against ComplaintAnalysis.

    Args:
        document_data: Sanitised case context (documents, timeline, notes)
        relevant_guidance: Guidance entries, as text or compact dicts
        similar_cases: Precedents, as text or compact dicts

    Returns:
        Validated ComplaintAnalysis

    Raises:
        LLMError: If the model call fails
        ValueError: If the output fails validation after one retry
    """
    settings = get_settings()
    model = settings.ANALYSIS_MODEL

    if not isinstance(relevant_guidance, str):
        relevant_guidance = json.dumps(relevant_guidance, indent=2, default=str)
    if not isinstance(similar_cases, str):
        similar_cases = json.dumps(similar_cases, indent=2, default=str)

    logger.info(
        f"Analyzing complaint with {model}",
        extra={"document_chars": len(document_data)},
    )

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(document_data, relevant_guidance, similar_cases)},
    ]

    raw_output = call_openrouter(messages, model, temperature=0.3, max_tokens=4000)

    try:
        analysis = parse_llm_json(raw_output, ComplaintAnalysis)
        logger.info(
            f"Complaint analysis: grounds={analysis.has_grounds}, success_rate={analysis.success_rate}",
            extra={"violations": len(analysis.violations)},
        )
        return analysis

    except (json.JSONDecodeError, ValidationError) as e:
        error_msg = str(e)
        logger.warning(f"First attempt failed validation: {error_msg}")

    retry_messages = messages + [
        {"role": "assistant", "content": raw_output},
        {"role": "user", "content": FIX_SCHEMA_PROMPT.format(error=error_msg)},
    ]
    retry_output = call_openrouter(retry_messages, model, temperature=0.3, max_tokens=4000)

    try:
        analysis = parse_llm_json(retry_output, ComplaintAnalysis)
        logger.info("Retry succeeded")
        return analysis

    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Retry also failed validation: {e}")
        raise ValueError("Model output could not be validated to schema") from e
