"""Three-stage complaint letter generation.

Stage 1 extracts a neutral fact sheet from the complaint analysis, stage 2
arranges the facts into the fixed thirteen-section letter layout, and stage 3
applies a tone calibrated to the strength of the case. Each stage is a
separate OpenRouter call with its own model, prompt and temperature.
"""

import json
import time
from datetime import date
from typing import Any, Callable, Optional

from app.core.config import get_settings
from app.core.llm import call_openrouter_async
from app.core.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[str, int, str], None]

DEFAULT_CHARGE_OUT_RATE = 185

STAGE1_TEMPERATURE = 0.2
STAGE1_MAX_TOKENS = 2500
STAGE2_TEMPERATURE = 0.2
STAGE2_MAX_TOKENS = 2500
STAGE3_TEMPERATURE = 0.3
STAGE3_MAX_TOKENS = 3500

HMRC_COMPLAINTS_ADDRESS = "HMRC Complaints Team\nHM Revenue & Customs\nBX9 1AA"


class LetterGenerationError(RuntimeError):
    """Raised when any stage of the letter pipeline fails."""


def _emit(on_progress: Optional[ProgressCallback], stage: str, percent: int, message: str) -> None:
    if on_progress is None:
        return
    try:
        on_progress(stage, percent, message)
    except Exception as e:
        logger.warning(f"Progress callback failed: {e}")


def format_letter_date(day: date) -> str:
    """e.g. 15 November 2025"""
    return f"{day.day} {day.strftime('%B %Y')}"


def determine_tone_level(analysis: dict[str, Any]) -> int:
    """
    Tone level for the case.

    3 when success rate > 85 and more than 2 system errors, 2 when the rate
    is 70-85 or there was a significant delay, 1 below 70, else 2.
    """
    success_rate = analysis.get("success_rate")
    system_errors = analysis.get("system_errors_count") or 0
    significant_delay = bool(analysis.get("significant_delay"))

    if success_rate is None:
        return 2
    if success_rate > 85 and system_errors > 2:
        return 3
    if 70 <= success_rate <= 85 or significant_delay:
        return 2
    if success_rate < 70:
        return 1
    return 2


# ============================================================================
# Prompts
# ============================================================================

# ruff: noqa: E501
STAGE1_SYSTEM_PROMPT = """You are a data extraction specialist preparing a fact sheet for an HMRC complaint letter.

FACTUAL INTEGRITY:
Extract only facts that are supported by the analysis. Never invent facts, exaggerate timelines or amounts, assume violations without evidence, or add advocacy. If the analysis says a point is weak, record that honestly.

Add no tone or style. Extract:

1. Timeline facts: exact dates, durations, gaps
2. Financial facts: amounts, hours, rates, calculations
3. Violation facts: specific CRG/Charter breaches with citations
4. Communication facts: what was sent, when, by whom, how
5. System failure facts: contradictions, lost correspondence, departmental issues
6. Impact facts: client distress, wasted time, mounting costs
7. Precedent facts: structure, key phrases and compensation from similar successful complaints
8. Escalation facts: inadequate Tier 1 response, need for Tier 2, Adjudicator referral, CHG408/CHG502 references, 15/40 working day timelines

TIER 1 RESPONSE DETAILS (when a previous complaint was made):
- date and reference of the Tier 1 response
- what it offered (apology only, acknowledgement, no action)
- what it failed to offer (compensation, professional costs, remedy)
- specific CHG breaches in how the complaint was handled

Format as a structured fact sheet with clear headed sections and bullet points. When escalation is mentioned, add a separate ESCALATION section. Be concise and do not repeat information."""

STAGE2_SYSTEM_PROMPT = """You are arranging facts into a formal HMRC complaint letter following UK professional standards.

PROFESSIONAL JUDGEMENT:
Only include violations clearly supported by the facts. Three strong violations are better than seven weak ones. Never stretch evidence to fit a CRG reference.

If the fact sheet contains precedent examples, follow their layout for the timeline, violations, costs and enclosures.

Use exactly this structure:

**1. LETTERHEAD**
{letterhead}
{today}

{hmrc_address}

**2. REFERENCE LINE**
Your Ref: [Tax matter type] - Client Reference: [CLIENT REF]

**3. SALUTATION**
Dear Sir/Madam

**4. SUBJECT LINE**
**FORMAL COMPLAINT: [Brief description] - [Duration] Delay, [Key issues]**

**5. OPENING PARAGRAPH**
We are writing to lodge a formal complaint regarding [core issue], followed by 2-3 factual sentences.

**6. CHRONOLOGICAL TIMELINE OF EVENTS**
**[Full date]:** [Event]. One entry per event, strictly chronological, every date bold.

**7. CHARTER VIOLATIONS AND CRG BREACHES**
Numbered, bold headers with the CRG reference first, e.g. **1. CRG4025 - Unreasonable Delay**, each followed by 2-3 sentences explaining the breach, quantifying it and stating its impact.
If the facts show a Tier 1 response that offered only an apology or no redress, add a dedicated violation: **[N]. CHG Complaint Handling Standards - Inadequate Tier 1 Response**, citing its reference and date and the missing CRG5225 costs and compensation.

**8. IMPACT ON OUR CLIENT AND PROFESSIONAL PRACTICE**
**Client financial impact:**, **Client distress:**, **Public purse impact:**

**9. PROFESSIONAL COSTS**
Per CRG5225, our client is entitled to reimbursement of professional fees directly attributable to HMRC's errors. Our standard charge-out rate is £{charge_out_rate} per hour. A detailed invoice will be submitted once this complaint is upheld.

**10. RESOLUTION REQUIRED**
A numbered list of 5-7 specific actions.
When escalating to Tier 2, follow the list with a paragraph stating that the matter requires escalation to Tier 2 per CHG408, why the Tier 1 response was inadequate, and that we exercise our right to Tier 2 review under CHG procedures.

**11. RESPONSE DEADLINE**
We require a substantive response within 15 working days of receipt, failing which we will escalate to Tier 2 and then the Adjudicator's Office.
For a Tier 2 escalation instead: a substantive response within 40 working days per CHG guidelines, failing which we will refer the matter to the Adjudicator's Office per CHG502.

**12. CLOSING**
We trust HMRC will treat this matter with the appropriate urgency.

Yours faithfully,

{user_name}
{user_title}
{firm_name}
Chartered Accountants
{contact_lines}

**13. ENCLOSURES**
Enc: Copies of:
- [Specific documents]

FORMATTING RULES:
- Full dates (16 February 2024) where known
- Organisational voice ("We", "Our firm"), never "I"
- Every section heading, timeline date, violation header and the FORMAL COMPLAINT line in **double asterisks**
- Use the real user details given ({user_name}, {user_title}); never placeholders such as [Name]
- "14-month", not "14+ month"

Organise the facts only. Do not add tone or emotion."""

STAGE3_SYSTEM_PROMPT = """You are rewriting a structured HMRC complaint letter in professional language calibrated to the strength of the case.

TONE LEVELS:

LEVEL 1 - MEASURED PROFESSIONAL (success rate below 70%)
Formal and factual. "This represents a failure to meet CRG standards." "We would appreciate a substantive response."

LEVEL 2 - FIRM PROFESSIONAL (success rate 70-85%, or a significant delay)
Direct, with clear disappointment. "This is unacceptable and falls significantly below HMRC's own standards." "We require a substantive response addressing each point."

LEVEL 3 - ROBUST PROFESSIONAL (success rate above 85% with more than two system errors)
The strongest professional language. "In our considerable experience, this represents one of the more serious service failures we have encountered." "The pattern of errors demonstrates systematic administrative failure."

Choose the level from the success rate, system errors and delay in the letter. If uncertain use Level 2.{tone_hint}

ALWAYS:
- Organisational voice ("We are writing", "Our firm"); never first-person singular
- No sarcasm, personal attacks, rhetorical questions or threats beyond the stated escalation path
- Express firmness through specific numbers, CRG citations and logical consequences

PRESERVE EXACTLY:
- The structure and every section
- All dates, numbers and facts
- Bold (**double asterisks**) on headings, dates, violation headers and the FORMAL COMPLAINT line
- The real user name ({user_name}) and title ({user_title}) in the closing

Rewrite the letter now."""


# ============================================================================
# Stages
# ============================================================================


async def stage1_extract_facts(
    analysis: dict[str, Any],
    client_reference: str,
    hmrc_department: str,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """Extract a neutral fact sheet from the complaint analysis."""
    settings = get_settings()
    _emit(on_progress, "stage1", 0, "Extracting key facts from analysis...")

    user_prompt = (
        "Extract all facts from this complaint analysis:\n\n"
        f"ANALYSIS:\n{json.dumps(analysis, indent=2, default=str)}\n\n"
        f"CLIENT REFERENCE: {client_reference}\n"
        f"HMRC DEPARTMENT: {hmrc_department}\n\n"
        "Extract a complete fact sheet now (include any precedent examples found):"
    )

    fact_sheet = await call_openrouter_async(
        [
            {"role": "system", "content": STAGE1_SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ],
        settings.ANALYSIS_MODEL,
        temperature=STAGE1_TEMPERATURE,
        max_tokens=STAGE1_MAX_TOKENS,
    )

    _emit(on_progress, "stage1", 100, "Facts extracted successfully")
    return fact_sheet


async def stage2_structure_letter(
    fact_sheet: str,
    practice_letterhead: Optional[str] = None,
    charge_out_rate: Optional[float] = None,
    user_name: Optional[str] = None,
    user_title: Optional[str] = None,
    user_email: Optional[str] = None,
    user_phone: Optional[str] = None,
    additional_context: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """Arrange the fact sheet into the thirteen-section letter layout."""
    settings = get_settings()
    _emit(on_progress, "stage2", 0, "Organizing facts into professional letter structure...")

    rate = charge_out_rate or DEFAULT_CHARGE_OUT_RATE
    letterhead = practice_letterhead or "[Firm Name]\n[Address]\n[Contact details]"
    firm_name = practice_letterhead.split("\n")[0] if practice_letterhead else "[Firm Name]"
    contact_lines = "\n".join(
        line
        for line in (
            f"Email: {user_email}" if user_email else "",
            f"Tel: {user_phone}" if user_phone else "",
        )
        if line
    )

    system_prompt = STAGE2_SYSTEM_PROMPT.format(
        letterhead=letterhead,
        today=format_letter_date(date.today()),
        hmrc_address=HMRC_COMPLAINTS_ADDRESS,
        charge_out_rate=f"{rate:g}",
        user_name=user_name or "[Name]",
        user_title=user_title or "[Title]",
        firm_name=firm_name,
        contact_lines=contact_lines,
    )

    parts = [f"Organize these facts into the professional complaint letter structure:\n\n{fact_sheet}"]
    parts.append(f"Charge-out rate: £{rate:g}/hour")
    if additional_context:
        parts.append(
            "ADDITIONAL INSTRUCTIONS FROM USER:\n"
            f"{additional_context}\n\n"
            "Incorporate these specific instructions into the letter where appropriate."
        )
    parts.append(
        "REAL USER DETAILS TO USE IN CLOSING:\n"
        f"- Name: {user_name or 'NOT PROVIDED - use placeholder'}\n"
        f"- Title: {user_title or 'NOT PROVIDED - use placeholder'}\n"
        f"- Email: {user_email or 'NOT PROVIDED - omit'}\n"
        f"- Phone: {user_phone or 'NOT PROVIDED - omit'}"
    )
    parts.append("Create the structured letter now (facts only, no tone yet).")

    structured = await call_openrouter_async(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": "\n\n".join(parts)},
        ],
        settings.STRUCTURE_MODEL,
        temperature=STAGE2_TEMPERATURE,
        max_tokens=STAGE2_MAX_TOKENS,
    )

    _emit(on_progress, "stage2", 100, "Letter structure complete")
    return structured


async def stage3_add_tone(
    structured_letter: str,
    user_name: Optional[str] = None,
    user_title: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    tone_level: Optional[int] = None,
) -> str:
    """Apply the calibrated professional tone."""
    settings = get_settings()
    _emit(on_progress, "stage3", 0, "Adding measured professional tone...")

    tone_hint = (
        f"\n\nThe case assessment suggests Level {tone_level}." if tone_level else ""
    )
    system_prompt = STAGE3_SYSTEM_PROMPT.format(
        tone_hint=tone_hint,
        user_name=user_name or "as given",
        user_title=user_title or "as given",
    )
    user_prompt = (
        f"Add professional, measured tone to this structured letter:\n\n{structured_letter}\n\n"
        "Keep every bold heading, date and violation header, and keep the real user "
        f'name "{user_name or ""}" and title "{user_title or ""}" exactly as provided.'
    )

    letter = await call_openrouter_async(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        settings.TONE_MODEL,
        temperature=STAGE3_TEMPERATURE,
        max_tokens=STAGE3_MAX_TOKENS,
    )

    _emit(on_progress, "stage3", 100, "Professional tone added")
    return letter


async def generate_complaint_letter(
    analysis: dict[str, Any],
    client_reference: str,
    hmrc_department: str,
    practice_letterhead: Optional[str] = None,
    charge_out_rate: Optional[float] = None,
    user_name: Optional[str] = None,
    user_title: Optional[str] = None,
    user_email: Optional[str] = None,
    user_phone: Optional[str] = None,
    additional_context: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> str:
    """
    Run all three stages.

    Progress is reported as ("overall", 20/50/80/100, message) plus each
    stage's own 0/100 events.

    Raises:
        LetterGenerationError: If any stage fails
    """
    start = time.monotonic()
    logger.info(
        f"Starting letter generation for {client_reference}",
        extra={"hmrc_department": hmrc_department, "has_context": bool(additional_context)},
    )

    try:
        _emit(on_progress, "overall", 20, "Extracting facts from analysis...")
        fact_sheet = await stage1_extract_facts(
            analysis, client_reference, hmrc_department, on_progress
        )
        logger.info(f"Stage 1 complete ({len(fact_sheet)} chars)")

        _emit(on_progress, "overall", 50, "Structuring letter...")
        structured = await stage2_structure_letter(
            fact_sheet,
            practice_letterhead,
            charge_out_rate,
            user_name,
            user_title,
            user_email,
            user_phone,
            additional_context,
            on_progress,
        )
        logger.info(f"Stage 2 complete ({len(structured)} chars)")

        _emit(on_progress, "overall", 80, "Adding professional tone...")
        letter = await stage3_add_tone(
            structured,
            user_name,
            user_title,
            on_progress,
            tone_level=determine_tone_level(analysis),
        )

    except Exception as e:
        logger.error(f"Letter generation failed: {e}")
        _emit(on_progress, "error", 0, f"Error: {e}")
        raise LetterGenerationError(f"Letter generation failed: {e}") from e

    duration = time.monotonic() - start
    logger.info(
        f"Letter generation complete ({duration:.1f}s, {len(letter)} chars)",
        extra={"duration_s": round(duration, 1)},
    )
    _emit(on_progress, "overall", 100, "Letter generation complete!")
    return letter
