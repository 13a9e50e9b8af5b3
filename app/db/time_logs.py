"""Time log database operations."""

from typing import Any
from uuid import UUID

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.time_calculations import (
    calculate_billable_value,
    is_billable_activity,
    minutes_to_decimal_hours,
    round_to_12_minutes,
)
from app.db.complaints import add_timeline_event
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def log_time(
    complaint_id: UUID,
    activity_type: str,
    minutes: int,
    automated: bool = True,
    notes: str | None = None,
    user_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Insert a time_logs row.

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table("time_logs")
            .insert(
                {
                    "complaint_id": str(complaint_id),
                    "activity_type": activity_type,
                    "minutes_spent": int(minutes),
                    "automated": automated,
                    "notes": notes,
                    "user_id": str(user_id) if user_id else None,
                }
            )
            .execute()
        )

        if not response.data:
            raise ValueError("No data returned from log_time")

        logger.info(
            f"Logged {minutes}m for {activity_type}",
            extra={"complaint_id": str(complaint_id)},
        )
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to log time: {e}", extra={"complaint_id": str(complaint_id)})
        raise


def log_activity(
    complaint_id: UUID,
    activity: str,
    duration: int,
    notes: str | None = None,
    automated: bool = False,
    user_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Log a user-entered activity, rounded up to 12-minute units.

    A manual entry with notes is also written to the complaint timeline.
    """
    minutes = round_to_12_minutes(duration)
    entry = log_time(complaint_id, activity, minutes, automated=automated, notes=notes, user_id=user_id)

    if notes and not automated:
        try:
            add_timeline_event(
                complaint_id,
                {
                    "type": "manual_activity",
                    "summary": f"{activity} ({minutes}m)",
                    "notes": notes,
                    "duration": minutes,
                },
            )
        except Exception as e:
            logger.warning(
                f"Failed to add manual_activity timeline event: {e}",
                extra={"complaint_id": str(complaint_id)},
            )

    return entry


def list_time_logs(complaint_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()

    try:
        response = (
            supabase.table("time_logs")
            .select("*")
            .eq("complaint_id", str(complaint_id))
            .order("created_at")
            .execute()
        )
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list time logs for complaint {complaint_id}: {e}")
        raise


def get_time_log(log_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()

    try:
        response = supabase.table("time_logs").select("*").eq("id", str(log_id)).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get time log {log_id}: {e}")
        raise


def get_complaint_time(complaint_id: UUID, charge_out_rate: float | None = None) -> dict[str, Any]:
    """Totals for a complaint split by automated/manual, with billable value."""
    rate = charge_out_rate if charge_out_rate is not None else get_settings().DEFAULT_CHARGE_OUT_RATE
    logs = list_time_logs(complaint_id)

    total = sum(int(log.get("minutes_spent") or 0) for log in logs)
    automated = sum(int(log.get("minutes_spent") or 0) for log in logs if log.get("automated"))
    billable = sum(
        int(log.get("minutes_spent") or 0)
        for log in logs
        if is_billable_activity(log.get("activity_type") or "")
    )

    return {
        "logs": logs,
        "total_minutes": total,
        "total_hours": minutes_to_decimal_hours(total),
        "automated_minutes": automated,
        "manual_minutes": total - automated,
        "billable_minutes": billable,
        "charge_out_rate": rate,
        "billable_value": calculate_billable_value(billable, rate),
    }


def update_activity(
    log_id: UUID,
    duration: int | None = None,
    activity: str | None = None,
) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    if duration is not None:
        updates["minutes_spent"] = round_to_12_minutes(duration)
    if activity is not None:
        updates["activity_type"] = activity
    if not updates:
        raise ValueError("Nothing to update")

    supabase = get_supabase()

    try:
        response = supabase.table("time_logs").update(updates).eq("id", str(log_id)).execute()
        if not response.data:
            raise ValueError(f"Time log not found: {log_id}")
        return response.data[0]

    except Exception as e:
        logger.error(f"Failed to update time log {log_id}: {e}")
        raise


def delete_activity(log_id: UUID) -> None:
    supabase = get_supabase()

    try:
        supabase.table("time_logs").delete().eq("id", str(log_id)).execute()
        logger.info(f"Deleted time log {log_id}")

    except Exception as e:
        logger.error(f"Failed to delete time log {log_id}: {e}")
        raise


def delete_activity_by_type(complaint_id: UUID, activity_type: str) -> None:
    """Remove automated entries of one activity type (manual entries are kept)."""
    supabase = get_supabase()

    try:
        (
            supabase.table("time_logs")
            .delete()
            .eq("complaint_id", str(complaint_id))
            .eq("activity_type", activity_type)
            .eq("automated", True)
            .execute()
        )
        logger.info(
            f"Deleted automated {activity_type} time logs",
            extra={"complaint_id": str(complaint_id)},
        )

    except Exception as e:
        logger.error(f"Failed to delete time logs by type: {e}")
        raise
