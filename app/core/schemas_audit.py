"""Pydantic schemas for the audit trail."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AuditCategory(str, Enum):
    AUTH = "auth"
    DATA = "data"
    ACCESS = "access"
    ADMIN = "admin"
    SECURITY = "security"


class AuditAction(str, Enum):
    # Auth
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    # Data
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    # Access
    VIEW = "view"
    DOWNLOAD = "download"
    ACCESS_DENIED = "access_denied"
    # Admin
    USER_CREATE = "user_create"
    USER_UPDATE = "user_update"
    ROLE_CHANGE = "role_change"
    # Security
    RATE_LIMIT = "rate_limit"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    API_KEY_CREATE = "api_key_create"
    API_KEY_REVOKE = "api_key_revoke"


class AuditEntry(BaseModel):
    """One auditable event, as written to audit_logs."""

    category: AuditCategory
    action: AuditAction
    success: bool = True
    user_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_message: Optional[str] = None


class AuditSummary(BaseModel):
    total_events: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_action: dict[str, int] = Field(default_factory=dict)
    failed_events: int = 0
    recent_events: list[dict[str, Any]] = Field(default_factory=list)


class AuditQuery(BaseModel):
    user_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None
    category: Optional[AuditCategory] = None
    action: Optional[AuditAction] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(default=100, ge=1, le=500)
    offset: int = Field(default=0, ge=0)
