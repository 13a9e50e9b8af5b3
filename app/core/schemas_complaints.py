"""Pydantic schemas for complaints, their timelines, documents and outcomes."""

from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Enums
# ============================================================================


class ComplaintStatus(str, Enum):
    """Lifecycle of a complaint."""
    ASSESSMENT = "assessment"
    DRAFT = "draft"
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"


class OutcomeType(str, Enum):
    SUCCESSFUL_FULL = "successful_full"
    SUCCESSFUL_PARTIAL = "successful_partial"
    UNSUCCESSFUL = "unsuccessful"
    WITHDRAWN = "withdrawn"
    ESCALATED_ADJUDICATOR = "escalated_adjudicator"
    ESCALATED_TRIBUNAL = "escalated_tribunal"
    SETTLED = "settled"


SUCCESSFUL_OUTCOMES = {OutcomeType.SUCCESSFUL_FULL.value, OutcomeType.SUCCESSFUL_PARTIAL.value}


class CorrespondenceDirection(str, Enum):
    SENT = "sent"
    RECEIVED = "received"
    INTERNAL = "internal"


class DocumentType(str, Enum):
    HMRC_LETTER = "hmrc_letter"
    COMPLAINT_DRAFT = "complaint_draft"
    RESPONSE = "response"
    EVIDENCE = "evidence"
    FINAL_OUTCOME = "final_outcome"


# ============================================================================
# Complaint Schemas
# ============================================================================


class ComplaintCreate(BaseModel):
    organization_id: UUID
    client_reference: str = Field(..., min_length=1, description="Stored as complaint_reference")
    complaint_type: Optional[str] = None
    hmrc_department: Optional[str] = None
    context: Optional[str] = Field(default=None, description="Initial case context")


class ComplaintStatusUpdate(BaseModel):
    status: ComplaintStatus
    notes: Optional[str] = None


class ComplaintReferenceUpdate(BaseModel):
    reference: str = Field(..., min_length=1)


class ComplaintAssign(BaseModel):
    assigned_to: Optional[UUID] = None


class TimelineEvent(BaseModel):
    """An entry appended to a complaint's timeline."""
    type: str
    summary: str
    date: Optional[str] = None
    notes: Optional[str] = None
    duration: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CorrespondenceCreate(BaseModel):
    direction: CorrespondenceDirection
    summary: str = Field(..., min_length=1)
    document_id: Optional[UUID] = None


class CaseOutcomeCreate(BaseModel):
    outcome_type: OutcomeType
    compensation_received: Optional[float] = Field(default=None, ge=0)
    tax_position_corrected: Optional[float] = None
    penalties_cancelled: Optional[float] = Field(default=None, ge=0)
    interest_refunded: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class OutcomeStats(BaseModel):
    total: int = 0
    successful: int = 0
    success_rate: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    total_compensation: float = 0.0


# ============================================================================
# Outcome learnings
# ============================================================================


class OutcomeLearnings(BaseModel):
    """What a closed case taught us, as extracted by the model."""
    effective_arguments: list[str] = Field(default_factory=list)
    ineffective_arguments: list[str] = Field(default_factory=list)
    key_citations: list[str] = Field(default_factory=list)
    hmrc_weak_points: list[str] = Field(default_factory=list)
    hmrc_objections: list[str] = Field(default_factory=list)
    successful_rebuttals: list[str] = Field(default_factory=list)
    key_learnings: str = "Analysis pending"
    recommendations_for_similar: str = ""
    letter_quality_score: float = Field(default=5, ge=0, le=10)
    argument_strength_score: float = Field(default=5, ge=0, le=10)
    evidence_quality_score: float = Field(default=5, ge=0, le=10)
    issue_categories: list[str] = Field(default_factory=list)


class LearningStats(BaseModel):
    total_cases: int = 0
    success_rate: float = 0.0
    avg_resolution_days: float = 0.0
    avg_compensation: float = 0.0
    top_effective_arguments: list[str] = Field(default_factory=list)
