"""Follow-up letters within an ongoing Tier 1 complaint dialogue.

Tier 1 continues until HMRC resolves the complaint or declares it closed.
Only a closed complaint that we still dispute is escalated to Tier 2.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from app.chains.letter_pipeline import format_letter_date
from app.core.config import get_settings
from app.core.llm import call_openrouter_async
from app.core.logging import get_logger
from app.core.schemas_letters import FollowUpType, LetterType

logger = get_logger(__name__)

# 15 working days is roughly 21 calendar days
RESPONSE_TARGET_DAYS = 21
DEFAULT_FOLLOW_UP_RATE = 250

FOLLOW_UP_DESCRIPTIONS = {
    FollowUpType.CHASE: "Progress check - no response received yet, within reasonable timeframe",
    FollowUpType.DELAYED_RESPONSE: "HMRC responded OUTSIDE their published timescales - this is an additional CRG breach",
    FollowUpType.INADEQUATE_RESPONSE: "HMRC sent a placeholder/holding response or partial reply - need substantive response",
    FollowUpType.REBUTTAL: "HMRC denied or disputed points incorrectly - need to counter with evidence",
    FollowUpType.TIER2_ESCALATION: "HMRC has indicated they consider the complaint closed but we remain unsatisfied - escalate to Tier 2",
}


@dataclass
class FollowUpContext:
    type: FollowUpType
    original_letter_date: str
    days_since_original: int
    client_reference: str
    hmrc_department: str
    original_letter_ref: Optional[str] = None
    hmrc_response_date: Optional[str] = None
    hmrc_response_summary: Optional[str] = None
    days_overdue: Optional[int] = None
    unaddressed_points: list[str] = field(default_factory=list)
    additional_context: Optional[str] = None
    practice_letterhead: Optional[str] = None
    charge_out_rate: Optional[float] = None
    user_name: Optional[str] = None
    user_title: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None


def describe_follow_up_type(follow_up_type: FollowUpType) -> str:
    return FOLLOW_UP_DESCRIPTIONS.get(follow_up_type, "Follow-up correspondence")


def _as_date(value: str | date) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def determine_follow_up_type(
    has_response: bool,
    response_date: str | date | None,
    original_date: str | date,
    indicated_closed: bool = False,
    substantive: bool = True,
) -> FollowUpType:
    """Pick the follow-up type from the state of HMRC's reply."""
    if indicated_closed:
        return FollowUpType.TIER2_ESCALATION

    if not has_response or not response_date:
        return FollowUpType.CHASE

    days_between = (_as_date(response_date) - _as_date(original_date)).days
    if days_between > RESPONSE_TARGET_DAYS:
        return FollowUpType.DELAYED_RESPONSE

    if not substantive:
        return FollowUpType.INADEQUATE_RESPONSE

    return FollowUpType.REBUTTAL


def compute_follow_up_timing(
    original_date: str | date,
    response_date: str | date | None = None,
    today: date | None = None,
) -> tuple[int, Optional[int]]:
    """(days since the original letter, days the response was overdue or None)."""
    original = _as_date(original_date)
    days_since_original = ((today or date.today()) - original).days

    days_overdue = None
    if response_date:
        days_between = (_as_date(response_date) - original).days
        if days_between > RESPONSE_TARGET_DAYS:
            days_overdue = days_between - RESPONSE_TARGET_DAYS

    return days_since_original, days_overdue


def saved_letter_type(follow_up_type: FollowUpType) -> LetterType:
    """Letter type a follow-up is stored under."""
    if follow_up_type == FollowUpType.TIER2_ESCALATION:
        return LetterType.TIER2_ESCALATION
    if follow_up_type == FollowUpType.REBUTTAL:
        return LetterType.REBUTTAL
    return LetterType.INITIAL_COMPLAINT


def _bullets(points: list[str], placeholder: str) -> str:
    if not points:
        return f"  - {placeholder}"
    return "\n".join(f"  - {p}" for p in points)


def _type_instructions(ctx: FollowUpContext) -> str:
    if ctx.type == FollowUpType.CHASE:
        return f"""CHASE LETTER:
- Politely enquire about progress
- Reference the original letter dated {ctx.original_letter_date}
- Note that {ctx.days_since_original} days have elapsed
- Request acknowledgement and an expected timeline
- Professional, not aggressive; do NOT mention Tier 2"""

    if ctx.type == FollowUpType.DELAYED_RESPONSE:
        return f"""DELAYED RESPONSE:
- HMRC responded on {ctx.hmrc_response_date}, {ctx.days_overdue} days beyond their 15 working day target
- The late response is itself a breach of CRG service standards; add it as a CRG4025/CRG6150 violation
- State: "Your response dated {ctx.hmrc_response_date} was received {ctx.days_overdue} days after our complaint letter of {ctx.original_letter_date}"
- Request substantive action within 10 working days
- Remain within Tier 1

HMRC RESPONSE SUMMARY:
{ctx.hmrc_response_summary or 'Placeholder/holding response received'}"""

    if ctx.type == FollowUpType.INADEQUATE_RESPONSE:
        return f"""INADEQUATE RESPONSE:
- HMRC sent a placeholder or partial response on {ctx.hmrc_response_date}
- It did not address the substantive issues; firmly request a full response
- Points still unaddressed:
{_bullets(ctx.unaddressed_points, '[Points to be addressed]')}
- Deadline of 10 working days
- Continued delay will be reflected in any professional costs claim
- Remain within Tier 1

HMRC RESPONSE SUMMARY:
{ctx.hmrc_response_summary or 'Inadequate response received'}"""

    if ctx.type == FollowUpType.REBUTTAL:
        return f"""REBUTTAL:
- HMRC disputed points in their response of {ctx.hmrc_response_date}
- Counter each assertion with evidence and citations
- Be specific about what is wrong; request reconsideration
- Remain within Tier 1

HMRC RESPONSE SUMMARY:
{ctx.hmrc_response_summary or 'Response denying complaint grounds'}

POINTS REQUIRING REBUTTAL:
{_bullets(ctx.unaddressed_points, '[Points to rebut]')}"""

    return f"""TIER 2 ESCALATION:
- HMRC considers the Tier 1 complaint closed and we remain unsatisfied
- Formally escalate to Tier 2 review citing CHG408 and CHG complaint handling procedures
- Give specific reasons the Tier 1 resolution is inadequate
- Request a Tier 2 response within 40 working days per CHG guidelines
- Mention referral to the Adjudicator's Office if Tier 2 is inadequate

HMRC'S CLOSING RESPONSE SUMMARY:
{ctx.hmrc_response_summary or 'HMRC considers complaint closed'}

REASONS FOR ESCALATION:
{_bullets(ctx.unaddressed_points, '[Reasons for escalation]')}"""


def build_system_prompt(ctx: FollowUpContext, today: date | None = None) -> str:
    letterhead = ctx.practice_letterhead or "[Firm Name]\n[Address]\n[Contact details]"
    rate = ctx.charge_out_rate or DEFAULT_FOLLOW_UP_RATE
    original_ref = f"\nORIGINAL LETTER REFERENCE: {ctx.original_letter_ref}" if ctx.original_letter_ref else ""

    return f"""You are writing a professional follow-up letter in an ongoing HMRC Tier 1 complaint dialogue.

Tier 1 is a dialogue that continues until resolution or impasse. Escalate to Tier 2 only when HMRC has said the complaint is closed and we remain unsatisfied.

FOLLOW-UP TYPE: {describe_follow_up_type(ctx.type)}
TODAY'S DATE: {format_letter_date(today or date.today())}

LETTERHEAD:
{letterhead}

CLIENT REFERENCE: {ctx.client_reference}
HMRC DEPARTMENT: {ctx.hmrc_department}{original_ref}

REAL USER DETAILS FOR CLOSING:
- Name: {ctx.user_name or 'NOT PROVIDED'}
- Title: {ctx.user_title or 'NOT PROVIDED'}
- Email: {ctx.user_email or 'NOT PROVIDED'}
- Phone: {ctx.user_phone or 'NOT PROVIDED'}

CHARGE-OUT RATE: £{rate:g}/hour

{_type_instructions(ctx)}

STRUCTURE:
1. Letterhead with today's date
2. Reference line including the original complaint reference
3. Dear Sir/Madam
4. Bold subject line identifying this as a FOLLOW-UP
5. Opening paragraph referencing the original letter, its date and current status
6. Body specific to the follow-up type
7. Required actions
8. Response deadline appropriate to the type
9. Closing with the real user details
10. Enclosures, if any

FORMATTING:
- **Double asterisks** on all section headings, dates and key text
- Organisational voice ("We", "Our firm")
- Firm but professional"""


async def generate_follow_up_letter(ctx: FollowUpContext) -> str:
    """Generate one follow-up letter with a single model call."""
    settings = get_settings()
    logger.info(
        f"Generating {ctx.type.value} follow-up letter",
        extra={"days_since_original": ctx.days_since_original},
    )

    lines = [
        "Generate the follow-up letter now.",
        "",
        "CONTEXT:",
        f"- Original letter sent: {ctx.original_letter_date}",
        f"- Days elapsed: {ctx.days_since_original}",
        f"- HMRC response received: {ctx.hmrc_response_date}"
        if ctx.hmrc_response_date
        else "- No HMRC response received yet",
    ]
    if ctx.days_overdue:
        lines.append(f"- Days overdue: {ctx.days_overdue}")
    if ctx.additional_context:
        lines.extend(["", f"ADDITIONAL CONTEXT FROM USER:\n{ctx.additional_context}"])
    lines.extend(
        [
            "",
            "This IS a Tier 2 escalation letter."
            if ctx.type == FollowUpType.TIER2_ESCALATION
            else "This is still within Tier 1. Do not threaten Tier 2.",
        ]
    )

    letter = await call_openrouter_async(
        [
            {"role": "system", "content": build_system_prompt(ctx)},
            {"role": "user", "content": "\n".join(lines)},
        ],
        settings.FOLLOW_UP_MODEL,
        temperature=0.3,
        max_tokens=3000,
    )

    logger.info(f"Follow-up letter generated ({len(letter)} chars)")
    return letter
