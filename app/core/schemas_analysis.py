"""Pydantic schemas for complaint and document analysis."""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Violation(BaseModel):
    """A Charter or CRG breach identified in the case."""

    type: str = Field(..., description="Violation type, e.g. 'Unreasonable delay'")
    description: str
    citation: str = Field(default="", description="CRG/Charter reference, e.g. CRG4025")


class ComplaintAnalysis(BaseModel):
    """Structured output of complaint analysis."""

    has_grounds: bool
    violations: list[Violation] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    success_rate: int = Field(..., ge=0, le=100)
    reasoning: str = ""
    system_errors_count: Optional[int] = Field(default=None, ge=0)
    significant_delay: Optional[bool] = None


class Correspondence(BaseModel):
    date: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    summary: str = ""


class DocumentAnalysis(BaseModel):
    """Structured extraction from one complaint document."""

    filename: str = ""
    document_type: str = ""
    dates: list[str] = Field(default_factory=list)
    amounts: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    correspondence: list[Correspondence] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    hmrc_quotes: list[str] = Field(default_factory=list)
    deadlines: list[str] = Field(default_factory=list)
    charter_violations: list[str] = Field(default_factory=list)
    summary: str = ""


class AnalyzeRequest(BaseModel):
    document_id: UUID
    additional_context: Optional[str] = None


class AnalyzeResponse(BaseModel):
    complaint_id: UUID
    analysis: ComplaintAnalysis
    guidance_count: int = 0
    precedent_count: int = 0
    time_logged_minutes: Optional[int] = None
    context: dict[str, Any] = Field(default_factory=dict)
