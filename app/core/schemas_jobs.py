"""Pydantic schemas for the background job queue."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class JobType(str, Enum):
    DOCUMENT_OCR = "document_ocr"
    LETTER_GENERATION = "letter_generation"
    EMBEDDING_GENERATION = "embedding_generation"
    SEND_EMAIL = "send_email"
    GENERATE_REPORT = "generate_report"
    SYNC_KNOWLEDGE_BASE = "sync_knowledge_base"
    ANALYZE_COMPLAINT = "analyze_complaint"
    EXTRACT_OUTCOME_LEARNINGS = "extract_outcome_learnings"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = [JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value]


class Job(BaseModel):
    """A row of the job_queue table."""

    id: UUID
    type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    priority: int = 5
    attempts: int = 0
    max_attempts: int = 3
    result: Optional[Any] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    scheduled_for: Optional[datetime] = None


class JobEnqueueRequest(BaseModel):
    type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(default=5, ge=0, le=10)
    max_attempts: int = Field(default=3, ge=1, le=10)
    scheduled_for: Optional[datetime] = None


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
