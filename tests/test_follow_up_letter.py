"""Tests for follow-up letter classification and prompting."""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from app.chains.follow_up_letter import (
    FollowUpContext,
    build_system_prompt,
    compute_follow_up_timing,
    determine_follow_up_type,
    generate_follow_up_letter,
    saved_letter_type,
)
from app.core.schemas_letters import FollowUpType, LetterType


class TestDetermineFollowUpType:
    def test_closed_complaint_escalates(self) -> None:
        result = determine_follow_up_type(True, "2025-01-05", "2025-01-01", indicated_closed=True)
        assert result == FollowUpType.TIER2_ESCALATION

    def test_no_response_is_chase(self) -> None:
        assert determine_follow_up_type(False, None, "2025-01-01") == FollowUpType.CHASE

    def test_late_response(self) -> None:
        result = determine_follow_up_type(True, "2025-02-15", "2025-01-01")
        assert result == FollowUpType.DELAYED_RESPONSE

    def test_timely_but_not_substantive(self) -> None:
        result = determine_follow_up_type(True, "2025-01-10", "2025-01-01", substantive=False)
        assert result == FollowUpType.INADEQUATE_RESPONSE

    def test_timely_substantive_is_rebuttal(self) -> None:
        assert determine_follow_up_type(True, "2025-01-10", "2025-01-01") == FollowUpType.REBUTTAL


def test_compute_follow_up_timing() -> None:
    days_since, overdue = compute_follow_up_timing(
        "2025-01-01", "2025-02-01", today=date(2025, 3, 1)
    )

    assert days_since == 59
    assert overdue == 10

    assert compute_follow_up_timing("2025-01-01", "2025-01-10", today=date(2025, 1, 20))[1] is None


@pytest.mark.parametrize(
    "follow_up_type,letter_type",
    [
        (FollowUpType.TIER2_ESCALATION, LetterType.TIER2_ESCALATION),
        (FollowUpType.REBUTTAL, LetterType.REBUTTAL),
        (FollowUpType.CHASE, LetterType.INITIAL_COMPLAINT),
    ],
)
def test_saved_letter_type(follow_up_type, letter_type) -> None:
    assert saved_letter_type(follow_up_type) == letter_type


def _ctx(follow_up_type: FollowUpType, **kwargs) -> FollowUpContext:
    return FollowUpContext(
        type=follow_up_type,
        original_letter_date="1 January 2025",
        days_since_original=40,
        client_reference="CLIENT-7",
        hmrc_department="VAT",
        **kwargs,
    )


def test_system_prompt_for_delayed_response() -> None:
    prompt = build_system_prompt(
        _ctx(FollowUpType.DELAYED_RESPONSE, hmrc_response_date="15 February 2025", days_overdue=24),
        today=date(2025, 3, 1),
    )

    assert "TODAY'S DATE: 1 March 2025" in prompt
    assert "24 days beyond their 15 working day target" in prompt
    assert "CHARGE-OUT RATE: £250/hour" in prompt


def test_system_prompt_lists_rebuttal_points() -> None:
    prompt = build_system_prompt(
        _ctx(FollowUpType.REBUTTAL, unaddressed_points=["Penalty was cancelled in 2023"])
    )

    assert "  - Penalty was cancelled in 2023" in prompt


@pytest.mark.asyncio
async def test_generate_follow_up_letter() -> None:
    mock_call = AsyncMock(return_value="Dear Sir/Madam ...")

    with patch("app.chains.follow_up_letter.call_openrouter_async", mock_call):
        letter = await generate_follow_up_letter(_ctx(FollowUpType.CHASE))

    assert letter == "Dear Sir/Madam ..."
    user_prompt = mock_call.await_args.args[0][1]["content"]
    assert "No HMRC response received yet" in user_prompt
    assert "Do not threaten Tier 2" in user_prompt
