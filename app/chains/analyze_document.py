"""Per-document extraction for complaints with too much material for one prompt.

Large complaints are analysed document by document, then the extractions are
combined into one structured briefing for complaint analysis.
"""

import json
from typing import Any

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.llm import LLMError, call_openrouter, estimate_tokens, parse_llm_json
from app.core.logging import get_logger
from app.core.privacy import sanitize_for_llm
from app.core.schemas_analysis import DocumentAnalysis

logger = get_logger(__name__)

STRUCTURED_ANALYSIS_TOKEN_THRESHOLD = 100000
FALLBACK_SUMMARY_CHARS = 500

# ruff: noqa: E501
SYSTEM_PROMPT = """You are an expert at extracting structured information from HMRC correspondence and complaint documents.

Extract ALL relevant information in structured form. Be thorough and precise.
- Quote HMRC's exact words wherever they make promises, admissions or refusals
- Record every date with what happened on it
- Record every amount with what it relates to
- Record every reference number (UTR, case numbers, letter references)
- Note every Charter or CRG breach the document evidences

Return ONLY valid JSON with this shape:

{
  "dates": ["15 March 2024 - HMRC letter requesting information"],
  "amounts": ["£1,250.00 - late filing penalty"],
  "references": ["Case ref: ABC/123"],
  "correspondence": [{"date": "string", "sender": "string", "recipient": "string", "summary": "string"}],
  "issues": ["string"],
  "hmrc_quotes": ["exact quote"],
  "deadlines": ["string"],
  "charter_violations": ["Being Responsive - no reply for 6 months"],
  "summary": "2-3 sentence summary of the document"
}"""


def analyze_individual_document(
    text: str,
    document_type: str,
    filename: str,
) -> DocumentAnalysis:
    """
    Extract structured facts from one document.

    Falls back to empty fields plus a truncated summary of the model output
    when the output cannot be parsed.

    Raises:
        LLMError: If the model call itself fails
    """
    logger.info(f"Analyzing document {filename}", extra={"document_type": document_type})

    user_prompt = (
        f"Document: {filename}\n"
        f"Type: {document_type}\n\n"
        f"Content:\n{sanitize_for_llm(text)}\n\n"
        "Extract all structured information as JSON."
    )

    raw_output = call_openrouter(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ],
        get_settings().ANALYSIS_MODEL,
        temperature=0.3,
        max_tokens=4000,
    )

    try:
        analysis = parse_llm_json(raw_output, DocumentAnalysis)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Document analysis for {filename} was not valid JSON: {e}")
        return DocumentAnalysis(
            filename=filename,
            document_type=document_type,
            summary=raw_output[:FALLBACK_SUMMARY_CHARS],
        )

    analysis.filename = filename
    analysis.document_type = document_type
    return analysis


def analyze_documents(documents: list[dict[str, Any]]) -> list[DocumentAnalysis]:
    """Analyse each stored document, skipping ones whose model call fails."""
    analyses = []
    for doc in documents:
        processed = doc.get("processed_data") or {}
        try:
            analyses.append(
                analyze_individual_document(
                    processed.get("text") or "",
                    doc.get("document_type") or "unknown",
                    doc.get("filename") or "Unknown",
                )
            )
        except LLMError as e:
            logger.error(f"Skipping document {doc.get('filename')}: {e}")
    return analyses


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(i for i in items if i))


def combine_document_analyses(
    analyses: list[DocumentAnalysis],
    complaint_context: str,
) -> str:
    """Merge per-document extractions into one sectioned briefing."""
    sections = [f"COMPLAINT CONTEXT:\n{complaint_context}"]

    timeline = [
        f"- {d} [{a.filename}]" for a in analyses for d in a.dates
    ]
    if timeline:
        sections.append("CHRONOLOGICAL TIMELINE:\n" + "\n".join(timeline))

    amounts = [f"- {amt} [{a.filename}]" for a in analyses for amt in a.amounts]
    if amounts:
        sections.append("FINANCIAL DETAILS:\n" + "\n".join(amounts))

    references = _dedupe([r for a in analyses for r in a.references])
    if references:
        sections.append("REFERENCE NUMBERS:\n" + "\n".join(f"- {r}" for r in references))

    correspondence = [
        f"- {c.date or 'Undated'}: {c.sender or 'Unknown'} -> {c.recipient or 'Unknown'}: {c.summary}"
        for a in analyses
        for c in a.correspondence
    ]
    if correspondence:
        sections.append("CORRESPONDENCE HISTORY:\n" + "\n".join(correspondence))

    issues = _dedupe([i for a in analyses for i in a.issues])
    if issues:
        sections.append(
            "IDENTIFIED ISSUES:\n" + "\n".join(f"{n}. {i}" for n, i in enumerate(issues, 1))
        )

    quotes = [f'- "{q}" [{a.filename}]' for a in analyses for q in a.hmrc_quotes]
    if quotes:
        sections.append("HMRC'S EXACT WORDS:\n" + "\n".join(quotes))

    deadlines = [f"- {d}" for a in analyses for d in a.deadlines]
    if deadlines:
        sections.append("DEADLINES AND TIMEFRAMES:\n" + "\n".join(deadlines))

    violations = _dedupe([v for a in analyses for v in a.charter_violations])
    if violations:
        sections.append("CHARTER VIOLATIONS:\n" + "\n".join(f"- {v}" for v in violations))

    summaries = [f"[{a.filename}] ({a.document_type}): {a.summary}" for a in analyses]
    if summaries:
        sections.append("DOCUMENT SUMMARIES:\n" + "\n\n".join(summaries))

    return "\n\n".join(sections)


def should_use_structured_analysis(documents: list[dict[str, Any]]) -> bool:
    """True when the raw document text alone would exceed the token threshold."""
    total_tokens = sum(
        estimate_tokens((doc.get("processed_data") or {}).get("text") or "") for doc in documents
    )
    return total_tokens > STRUCTURED_ANALYSIS_TOKEN_THRESHOLD
