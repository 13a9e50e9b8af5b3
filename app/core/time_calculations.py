"""Time benchmarks and billing arithmetic for complaint work.

All benchmarks are in minutes and sit on 12-minute (0.2 hour) units.
"""

import math

TIME_BENCHMARKS = {
    # Letters by page count
    "LETTER_HALF_PAGE": 36,
    "LETTER_1_PAGE": 48,
    "LETTER_1_5_PAGES": 60,
    "LETTER_2_PAGES": 84,
    "LETTER_2_5_PAGES": 120,
    "LETTER_3_PAGES": 156,
    "LETTER_REFINEMENT": 12,
    # Analysis
    "DOCUMENT_ANALYSIS_BASE": 36,
    "DOCUMENT_ANALYSIS_PER_DOC": 12,
    # File management
    "FILE_OPENING": 12,
    "FILE_CLOSING": 12,
    "FINAL_INVOICE": 12,
    # Client communication
    "CLIENT_CALL_SHORT": 12,
    "CLIENT_CALL_MEDIUM": 24,
    "CLIENT_CALL_LONG": 36,
    "CLIENT_EMAIL": 12,
    # Responses
    "HMRC_RESPONSE_REVIEW": 24,
    "FOLLOW_UP_LETTER": 24,
    # Escalation
    "TIER_2_ESCALATION": 36,
    "ADJUDICATOR_ESCALATION": 48,
    # Resolution
    "RESOLUTION_REVIEW": 24,
    "CLIENT_UPDATE": 12,
}

ACTIVITY_TYPES = {
    "INITIAL_ANALYSIS": "Initial Analysis",
    "LETTER_GENERATION": "Letter Generation",
    "LETTER_REFINEMENT": "Letter Refinement",
    "FILE_OPENING": "File Opening",
    "FILE_CLOSING": "File Closing",
    "FINAL_INVOICE": "Final Invoice Preparation",
    "CLIENT_CALL": "Client Phone Call",
    "CLIENT_EMAIL": "Client Email Correspondence",
    "CLIENT_MEETING": "Client Meeting",
    "CLIENT_UPDATE": "Client Progress Update",
    "FOLLOW_UP_LETTER": "Follow-up Letter",
    "TIER_2_ESCALATION": "Tier 2 Escalation",
    "ADJUDICATOR_ESCALATION": "Adjudicator Escalation",
    "RESOLUTION_REVIEW": "Resolution Review",
    "SETTLEMENT_NEGOTIATION": "Settlement Negotiation",
    "HMRC_RESPONSE_REVIEW": "HMRC Response Review",
}

NON_BILLABLE_ACTIVITIES = {ACTIVITY_TYPES["HMRC_RESPONSE_REVIEW"]}

WORDS_PER_PAGE = 500

# (max pages, benchmark key, description)
_LETTER_BUCKETS = [
    (0.5, "LETTER_HALF_PAGE", "Half-page letter"),
    (1.0, "LETTER_1_PAGE", "1-page letter"),
    (1.5, "LETTER_1_5_PAGES", "1.5-page letter"),
    (2.0, "LETTER_2_PAGES", "2-page letter"),
    (2.5, "LETTER_2_5_PAGES", "2.5-page letter"),
    (3.0, "LETTER_3_PAGES", "3-page letter"),
]


def round_to_12_minutes(minutes: float) -> int:
    """Round up to the next 12-minute unit."""
    return int(math.ceil(minutes / 12) * 12)


def estimate_letter_page_count(text: str) -> float:
    """Estimate pages at ~500 words per page, to the nearest half page (min 0.5)."""
    words = len((text or "").split())
    pages = math.floor(words / WORDS_PER_PAGE * 2 + 0.5) / 2
    return max(pages, 0.5)


def calculate_letter_time(page_count: float) -> dict:
    """
    Billable minutes for a letter of page_count pages.

    Beyond three pages each extra half page adds two units (24 minutes).
    """
    for max_pages, key, description in _LETTER_BUCKETS:
        if page_count <= max_pages:
            minutes = TIME_BENCHMARKS[key]
            break
    else:
        extra = math.ceil((page_count - 3) / 0.5) * 24
        minutes = TIME_BENCHMARKS["LETTER_3_PAGES"] + extra
        description = f"{page_count:g}-page letter (custom)"

    return {
        "pages": page_count,
        "minutes": round_to_12_minutes(minutes),
        "description": description,
    }


def calculate_letter_time_for_text(text: str) -> dict:
    return calculate_letter_time(estimate_letter_page_count(text))


def calculate_analysis_time(document_count: int) -> dict:
    count = max(document_count, 1)
    minutes = (
        TIME_BENCHMARKS["DOCUMENT_ANALYSIS_BASE"]
        + (count - 1) * TIME_BENCHMARKS["DOCUMENT_ANALYSIS_PER_DOC"]
    )
    return {
        "minutes": minutes,
        "description": f"Analysis of {count} document{'s' if count > 1 else ''}",
    }


def format_time_hhmm(minutes: int) -> str:
    """Format minutes as "1h 24m", "2h" or "36m"."""
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def minutes_to_decimal_hours(minutes: float) -> float:
    return round(minutes / 60, 2)


def calculate_billable_value(minutes: float, hourly_rate: float) -> float:
    return round(minutes / 60 * hourly_rate, 2)


def format_currency(amount: float) -> str:
    return f"£{amount:.2f}"


def is_billable_activity(activity_type: str) -> bool:
    """Reviewing HMRC's own responses is recorded but never billed."""
    return activity_type not in NON_BILLABLE_ACTIVITIES
