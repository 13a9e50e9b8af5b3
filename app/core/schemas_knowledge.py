"""Pydantic schemas for the knowledge base, precedents and staging."""

from enum import Enum
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

Importance = Literal["high", "medium", "low"]


# ============================================================================
# Knowledge comparison (LLM output)
# ============================================================================


class ComparisonAction(str, Enum):
    ADD = "add"
    MERGE = "merge"
    REPLACE = "replace"
    SKIP = "skip"
    REVIEW_REQUIRED = "review_required"


class DuplicateItem(BaseModel):
    kb_id: str
    title: str
    similarity: float = Field(ge=0.0, le=1.0)
    recommendation: Literal["skip", "replace", "merge"]
    reason: str


class OverlapItem(BaseModel):
    kb_id: str
    title: str
    similarity: float = Field(ge=0.0, le=1.0)
    overlap_percentage: int = Field(ge=0, le=100)
    overlap_sections: list[str] = Field(default_factory=list)
    recommendation: Literal["merge", "add_separately", "update_existing"]
    reason: str


class NewInformationItem(BaseModel):
    category: str
    topic: str
    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    importance: Importance = "medium"


class GapFilledItem(BaseModel):
    existing_kb_id: str
    gap_description: str
    fills_gap: bool = True
    impact: Importance = "medium"


class ConflictItem(BaseModel):
    kb_id: str
    conflict_type: str
    description: str
    severity: Importance = "medium"
    resolution_needed: bool = True


class ComparisonRecommendation(BaseModel):
    action: ComparisonAction
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    suggested_category: Optional[str] = None
    suggested_title: Optional[str] = None
    merge_targets: list[str] = Field(default_factory=list)


class KnowledgeComparison(BaseModel):
    """How a candidate document relates to the existing knowledge base."""

    duplicates: list[DuplicateItem] = Field(default_factory=list)
    overlaps: list[OverlapItem] = Field(default_factory=list)
    new_information: list[NewInformationItem] = Field(default_factory=list)
    gaps_filled: list[GapFilledItem] = Field(default_factory=list)
    conflicts: list[ConflictItem] = Field(default_factory=list)
    recommendations: ComparisonRecommendation


# ============================================================================
# Requests
# ============================================================================


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    limit: int = Field(default=10, ge=1, le=50)


class HybridSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(default=10, ge=1, le=50)
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)


class KnowledgeEntryCreate(BaseModel):
    category: str
    title: str
    content: str = Field(..., min_length=1)
    source: Optional[str] = None
    source_url: Optional[str] = None
    document_type: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PrecedentCreate(BaseModel):
    complaint_type: str
    issue_category: str
    outcome: str
    resolution_time_days: Optional[int] = None
    compensation_amount: Optional[float] = None
    key_arguments: list[str] = Field(default_factory=list)
    effective_citations: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def embedding_text(self) -> str:
        """Text embedded for precedent search."""
        return " ".join(
            [
                self.complaint_type,
                self.issue_category,
                self.outcome,
                " ".join(self.key_arguments),
                " ".join(self.effective_citations),
            ]
        ).strip()


class StagedApproval(BaseModel):
    category: Optional[str] = None
    title: Optional[str] = None


class StagedRejection(BaseModel):
    notes: Optional[str] = None


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class KnowledgeChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    conversation_id: Optional[UUID] = None
    history: list[ChatMessage] = Field(default_factory=list)


class ChatSource(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    category: Optional[str] = None
    similarity: Optional[float] = None
    excerpt: str = ""


class KnowledgeChatResponse(BaseModel):
    answer: str
    sources: list[ChatSource] = Field(default_factory=list)
    conversation_id: Optional[UUID] = None
