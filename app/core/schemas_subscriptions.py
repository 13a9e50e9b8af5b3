"""Pydantic schemas for subscription tiers."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class TierCreate(BaseModel):
    name: str = Field(..., min_length=1, description="Machine name, e.g. 'professional'")
    display_name: str
    description: Optional[str] = None
    tagline: Optional[str] = None
    monthly_price: int = Field(..., ge=0, description="Pence")
    annual_price: int = Field(..., ge=0, description="Pence")
    features: dict[str, Any] = Field(default_factory=dict)
    is_visible: bool = True
    is_popular: bool = False
    sort_order: int = 0


class TierUpdate(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    tagline: Optional[str] = None
    monthly_price: Optional[int] = Field(default=None, ge=0)
    annual_price: Optional[int] = Field(default=None, ge=0)
    is_popular: Optional[bool] = None
    is_visible: Optional[bool] = None
    is_active: Optional[bool] = None
    features: Optional[dict[str, Any]] = None
