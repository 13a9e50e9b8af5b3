"""Admin endpoints for the audit trail."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.core.auth import AuthContext, require_admin
from app.core.logging import get_logger
from app.core.schemas_audit import AuditAction, AuditCategory, AuditQuery, AuditSummary
from app.db import audit_log

logger = get_logger(__name__)

router = APIRouter()


@router.get("")
async def list_audit_logs(
    user_id: Optional[UUID] = Query(None),
    organization_id: Optional[UUID] = Query(None),
    category: Optional[AuditCategory] = Query(None),
    action: Optional[AuditAction] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    """Audit events matching the filters, newest first."""
    try:
        logs = audit_log.query_audit_logs(
            AuditQuery(
                user_id=user_id,
                organization_id=organization_id,
                category=category,
                action=action,
                start=start,
                end=end,
                limit=limit,
                offset=offset,
            )
        )
        return {"logs": logs, "count": len(logs)}

    except Exception:
        logger.exception("Failed to query audit logs")
        raise HTTPException(status_code=500, detail="Failed to query audit logs")


@router.get("/summary", response_model=AuditSummary)
async def get_audit_summary(
    organization_id: Optional[UUID] = Query(None),
    days: int = Query(30, ge=1, le=365),
    auth: AuthContext = Depends(require_admin),
) -> dict:
    try:
        return audit_log.get_audit_summary(organization_id, days)

    except Exception:
        logger.exception("Failed to get audit summary")
        raise HTTPException(status_code=500, detail="Failed to get audit summary")
