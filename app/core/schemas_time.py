"""Pydantic schemas for time logging."""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TimeLogCreate(BaseModel):
    complaint_id: UUID
    activity: str = Field(..., min_length=1)
    duration: int = Field(..., gt=0, description="Minutes")
    notes: Optional[str] = None
    automated: bool = False


class TimeLogUpdate(BaseModel):
    duration: Optional[int] = Field(default=None, gt=0)
    activity: Optional[str] = None


class ComplaintTimeSummary(BaseModel):
    logs: list[dict[str, Any]] = Field(default_factory=list)
    total_minutes: int = 0
    total_hours: float = 0.0
    automated_minutes: int = 0
    manual_minutes: int = 0
    billable_minutes: int = 0
    charge_out_rate: float = 0.0
    billable_value: float = 0.0
