"""Pydantic schemas for penalty appeals."""

from datetime import date
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class GroundType(str, Enum):
    REASONABLE_EXCUSE = "reasonable_excuse"
    SPECIAL_CIRCUMSTANCES = "special_circumstances"
    PROCEDURAL_ERROR = "procedural_error"
    STATUTORY_DEFENCE = "statutory_defence"
    PROPORTIONALITY = "proportionality"


class GroundStrength(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    UNTESTED = "untested"


class PenaltyType(str, Enum):
    LATE_FILING = "late_filing"
    LATE_PAYMENT = "late_payment"
    INACCURACY = "inaccuracy"
    FAILURE_TO_NOTIFY = "failure_to_notify"
    RTI_LATE_FILING = "rti_late_filing"
    VAT_DEFAULT_SURCHARGE = "vat_default_surcharge"
    VAT_ERROR_PENALTY = "vat_error_penalty"
    CIS_PENALTY = "cis_penalty"
    OTHER = "other"


class AppealStatus(str, Enum):
    PENDING = "pending"
    FILED = "filed"
    UNDER_REVIEW = "under_review"
    UPHELD = "upheld"
    CANCELLED = "cancelled"
    PARTIALLY_CANCELLED = "partially_cancelled"
    REFERRED_TO_TRIBUNAL = "referred_to_tribunal"


# ============================================================================
# Appeal grounds
# ============================================================================


class AppealGroundCreate(BaseModel):
    complaint_id: UUID
    ground_type: GroundType
    statute_reference: str = Field(..., min_length=1, description="e.g. 'FA 2009 Sch 55 para 23'")
    description: str = Field(..., min_length=1)
    supporting_evidence: Optional[Any] = None
    strength_assessment: Optional[GroundStrength] = None


class AppealGroundUpdate(BaseModel):
    ground_type: Optional[GroundType] = None
    statute_reference: Optional[str] = None
    description: Optional[str] = None
    supporting_evidence: Optional[Any] = None
    strength_assessment: Optional[GroundStrength] = None


# ============================================================================
# Penalty assessments
# ============================================================================


class PenaltyCreate(BaseModel):
    complaint_id: UUID
    penalty_type: PenaltyType
    penalty_regime: str = Field(..., min_length=1)
    penalty_amount: Optional[float] = Field(default=None, ge=0)
    tax_year: Optional[str] = None
    tax_type: Optional[str] = None
    penalty_notice_date: Optional[date] = None
    penalty_reference: Optional[str] = None
    appeal_deadline: Optional[date] = None


class PenaltyUpdate(BaseModel):
    penalty_amount: Optional[float] = Field(default=None, ge=0)
    tax_year: Optional[str] = None
    appeal_deadline: Optional[date] = None
    appeal_filed_date: Optional[date] = None
    hmrc_review_requested: Optional[bool] = None
    hmrc_review_date: Optional[date] = None
    hmrc_review_outcome: Optional[str] = None


class PenaltyStatusUpdate(BaseModel):
    appeal_status: AppealStatus
    appeal_filed_date: Optional[date] = None
