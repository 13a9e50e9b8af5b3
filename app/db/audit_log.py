"""Append-only audit trail in the audit_logs table."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.core.logging import get_logger
from app.core.schemas_audit import (
    AuditAction,
    AuditCategory,
    AuditEntry,
    AuditQuery,
    AuditSummary,
)
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

RECENT_EVENTS = 10


def log_audit_event(entry: AuditEntry) -> str | None:
    """
    Write an audit event and return its id.

    Never raises. When the insert fails the entry is written to the
    application log instead and None is returned.
    """
    row = entry.model_dump(mode="json")

    try:
        response = get_supabase().table("audit_logs").insert(row).execute()
        if not response.data:
            raise ValueError("No data returned from audit_logs insert")
        return response.data[0]["id"]

    except Exception as e:
        logger.error(f"Failed to write audit log: {e}")
        fallback = {**row, "created_at": datetime.now(timezone.utc).isoformat()}
        logger.warning(f"AUDIT LOG (fallback): {json.dumps(fallback)}")
        return None


# ============================================================================
# Helpers for common events
# ============================================================================


def _data_event(
    action: AuditAction,
    user_id: UUID | None,
    organization_id: UUID | str | None,
    resource_type: str,
    resource_id: str | UUID,
    details: dict[str, Any] | None = None,
) -> str | None:
    return log_audit_event(
        AuditEntry(
            category=AuditCategory.DATA,
            action=action,
            user_id=user_id,
            organization_id=organization_id,
            resource_type=resource_type,
            resource_id=str(resource_id),
            details=details or {},
        )
    )


def data_create(user_id, organization_id, resource_type, resource_id, details=None) -> str | None:
    return _data_event(AuditAction.CREATE, user_id, organization_id, resource_type, resource_id, details)


def data_update(user_id, organization_id, resource_type, resource_id, changes=None) -> str | None:
    return _data_event(
        AuditAction.UPDATE, user_id, organization_id, resource_type, resource_id, {"changes": changes or {}}
    )


def data_delete(user_id, organization_id, resource_type, resource_id) -> str | None:
    return _data_event(AuditAction.DELETE, user_id, organization_id, resource_type, resource_id)


def access_denied(
    user_id: UUID | None,
    organization_id: UUID | str | None,
    resource_type: str,
    resource_id: str | None,
    reason: str,
) -> str | None:
    return log_audit_event(
        AuditEntry(
            category=AuditCategory.ACCESS,
            action=AuditAction.ACCESS_DENIED,
            success=False,
            user_id=user_id,
            organization_id=organization_id,
            resource_type=resource_type,
            resource_id=resource_id,
            error_message=reason,
        )
    )


def rate_limited(identifier: str, operation: str, ip_address: str | None = None) -> str | None:
    return log_audit_event(
        AuditEntry(
            category=AuditCategory.SECURITY,
            action=AuditAction.RATE_LIMIT,
            success=False,
            ip_address=ip_address,
            details={"identifier": identifier, "operation": operation},
            error_message="Rate limit exceeded",
        )
    )


# ============================================================================
# Queries
# ============================================================================


def query_audit_logs(query: AuditQuery) -> list[dict[str, Any]]:
    """Audit events matching the filters, newest first."""
    supabase = get_supabase()

    try:
        q = supabase.table("audit_logs").select("*")
        if query.user_id:
            q = q.eq("user_id", str(query.user_id))
        if query.organization_id:
            q = q.eq("organization_id", str(query.organization_id))
        if query.category:
            q = q.eq("category", query.category.value)
        if query.action:
            q = q.eq("action", query.action.value)
        if query.start:
            q = q.gte("created_at", query.start.isoformat())
        if query.end:
            q = q.lte("created_at", query.end.isoformat())
        response = (
            q.order("created_at", desc=True)
            .range(query.offset, query.offset + query.limit - 1)
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to query audit logs: {e}")
        raise


def get_audit_summary(organization_id: UUID | None, days: int = 30) -> dict[str, Any]:
    """Event counts for the last ``days`` days, all organizations when none is given."""
    since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    supabase = get_supabase()

    try:
        q = supabase.table("audit_logs").select("*").gte("created_at", since)
        if organization_id:
            q = q.eq("organization_id", str(organization_id))
        logs = q.order("created_at", desc=True).execute().data or []

    except Exception as e:
        logger.error(f"Failed to get audit summary: {e}")
        raise

    summary = AuditSummary(total_events=len(logs), recent_events=logs[:RECENT_EVENTS])
    for log in logs:
        summary.by_category[log["category"]] = summary.by_category.get(log["category"], 0) + 1
        summary.by_action[log["action"]] = summary.by_action.get(log["action"], 0) + 1
        if not log.get("success"):
            summary.failed_events += 1
    return summary.model_dump()
