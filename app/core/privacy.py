"""PII stripping for text sent to LLM providers.

UK-specific identifiers (UTR, NINO, bank details, postcodes) plus generic
contact details are replaced with ``[X_REMOVED]`` placeholders.
"""

import json
import re
from typing import Any

# Order matters: longer digit runs are removed before shorter ones
PII_PATTERNS: list[tuple[str, str, re.Pattern]] = [
    ("UTR", "[UTR_REMOVED]", re.compile(r"\b\d{10}\b")),
    ("NINO", "[NINO_REMOVED]", re.compile(r"\b[A-Z]{2}\s?\d{6}\s?[A-Z]\b", re.IGNORECASE)),
    ("Account Number", "[ACCOUNT_REMOVED]", re.compile(r"\b\d{8}\b")),
    ("Sort Code", "[SORT_CODE_REMOVED]", re.compile(r"\b\d{2}[-\s]?\d{2}[-\s]?\d{2}\b")),
    (
        "Email",
        "[EMAIL_REMOVED]",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    ),
    ("Phone", "[PHONE_REMOVED]", re.compile(r"(?:\+44\s?|\b0)(?:\d\s?){9,10}\b")),
    (
        "Postcode",
        "[POSTCODE_REMOVED]",
        re.compile(r"\b[A-Z]{1,2}\d{1,2}\s?\d[A-Z]{2}\b", re.IGNORECASE),
    ),
    (
        "Name",
        "[NAME_REMOVED]",
        re.compile(r"\b(?:Mr|Mrs|Ms|Miss|Dr|Prof)\.?\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+){1,2}\b"),
    ),
    (
        "Address",
        "[ADDRESS_REMOVED]",
        re.compile(
            r"\b\d+\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\s+"
            r"(?:Street|Road|Avenue|Lane|Drive|Close|Way|Court|Place)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "Date of Birth",
        "[DOB_REMOVED]",
        re.compile(r"\b(?:\d{1,2}[-/]\d{1,2}[-/]\d{2,4}|\d{2,4}[-/]\d{1,2}[-/]\d{1,2})\b"),
    ),
]

HMRC_DEPARTMENTS = [
    "VAT",
    "Self Assessment",
    "PAYE",
    "Corporation Tax",
    "CIS",
    "Compliance",
    "Debt Management",
    "Adjudicator",
    "Tax Credits",
    "National Insurance",
]

_DATE_RE = re.compile(
    r"\b(?:\d{1,2}\s+(?:January|February|March|April|May|June|July|August|September|"
    r"October|November|December)\s+\d{4}|\d{1,2}/\d{1,2}/\d{4})\b",
    re.IGNORECASE,
)
_REFERENCE_RE = re.compile(r"\bRef(?:erence)?[\s:]*([\w\-/]+)\b", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"£\s?\d{1,3}(?:,\d{3})*(?:\.\d{2})?")


def anonymize_pii(text: str) -> str:
    """Replace every PII match with its placeholder."""
    if not text:
        return text

    anonymized = text
    for _, placeholder, pattern in PII_PATTERNS:
        anonymized = pattern.sub(placeholder, anonymized)
    return anonymized


def sanitize_for_llm(data: Any) -> str:
    """JSON-encode non-string data, then strip PII."""
    text = data if isinstance(data, str) else json.dumps(data, default=str)
    return anonymize_pii(text)


def detect_pii(text: str) -> list[str]:
    """Return the labels of PII types present in text."""
    return [label for label, _, pattern in PII_PATTERNS if pattern.search(text or "")]


def validate_no_pii(text: str) -> dict[str, Any]:
    detected = detect_pii(text)
    return {"valid": not detected, "detected": detected}


def extract_structured_data(text: str) -> dict[str, Any]:
    """
    Extract dates, references, amounts and department mentions from text.

    Extraction runs on the anonymised text, so the returned fields never hold
    PII. The anonymised text is returned under ``text``.
    """
    anonymized = anonymize_pii(text or "")
    return {
        "dates": _DATE_RE.findall(anonymized),
        "references": _REFERENCE_RE.findall(anonymized),
        "amounts": _AMOUNT_RE.findall(anonymized),
        "departments": [d for d in HMRC_DEPARTMENTS if d in anonymized],
        "text": anonymized,
    }
