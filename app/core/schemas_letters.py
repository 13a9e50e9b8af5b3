"""Pydantic schemas for generated letters."""

from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class LetterType(str, Enum):
    INITIAL_COMPLAINT = "initial_complaint"
    TIER2_ESCALATION = "tier2_escalation"
    ADJUDICATOR_ESCALATION = "adjudicator_escalation"
    REBUTTAL = "rebuttal"
    ACKNOWLEDGEMENT = "acknowledgement"
    PENALTY_APPEAL = "penalty_appeal"
    CHASE = "chase"
    OTHER = "other"


class SendMethod(str, Enum):
    POST = "post"
    EMAIL = "email"
    POST_AND_EMAIL = "post_and_email"
    FAX = "fax"


class FollowUpType(str, Enum):
    CHASE = "chase"
    DELAYED_RESPONSE = "delayed_response"
    INADEQUATE_RESPONSE = "inadequate_response"
    REBUTTAL = "rebuttal"
    TIER2_ESCALATION = "tier2_escalation"


class SignatoryDetails(BaseModel):
    """Practice and signatory details merged into a letter."""
    practice_letterhead: Optional[str] = None
    charge_out_rate: Optional[float] = Field(default=None, gt=0)
    user_name: Optional[str] = None
    user_title: Optional[str] = None
    user_email: Optional[str] = None
    user_phone: Optional[str] = None


class GenerateComplaintLetterRequest(SignatoryDetails):
    complaint_id: UUID
    analysis: dict[str, Any]
    additional_context: Optional[str] = None


class GenerateComplaintLetterResponse(BaseModel):
    letter: str
    letter_id: Optional[UUID] = None
    time_logged_minutes: Optional[int] = None


class GenerateFollowUpRequest(SignatoryDetails):
    complaint_id: UUID
    follow_up_type: Optional[FollowUpType] = None
    original_letter_date: str = Field(..., description="ISO date of the original complaint letter")
    original_letter_ref: Optional[str] = None
    hmrc_response_date: Optional[str] = None
    hmrc_response_summary: Optional[str] = None
    hmrc_indicated_closed: bool = False
    response_was_substantive: bool = True
    unaddressed_points: list[str] = Field(default_factory=list)
    additional_context: Optional[str] = None


class GenerateFollowUpResponse(BaseModel):
    letter: str
    follow_up_type: FollowUpType
    days_since_original: int
    days_overdue: Optional[int] = None
    letter_id: Optional[UUID] = None


class LetterSave(BaseModel):
    complaint_id: UUID
    letter_type: LetterType
    letter_content: str = Field(..., min_length=1)
    notes: Optional[str] = None


class LetterContentUpdate(BaseModel):
    letter_content: str = Field(..., min_length=1)
    notes: Optional[str] = None


class LetterMarkSent(BaseModel):
    sent_method: SendMethod
    hmrc_reference: Optional[str] = None
    notes: Optional[str] = None
