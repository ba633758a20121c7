from datetime import timedelta
from typing import Any, Dict, Optional
from fastapi import HTTPException, status
from shopfront.common.utils import iso, now, percentage, round2
from shopfront.config.settings import config_settings
from shopfront.schema.full_schema import UserActivity, UserBehavior
from shopfront.user_activity.constants import logger
from shopfront.user_activity.repository import activity_summary, anonymize_activities_before, delete_activities_before
from shopfront.user_activity.utils import (anonymize_ip, generate_session_id, location_from_ip,
                                           parse_user_agent, truncate_user_agent)


async def record_activity(session, *, activity_type: str, user_id: Optional[int] = None,
                          session_id: Optional[str] = None, activity_data: Optional[Dict[str, Any]] = None,
                          ip_address: Optional[str] = None, user_agent: Optional[str] = None,
                          session_duration: Optional[int] = None, success: bool = True,
                          error_message: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None,
                          created_by: Optional[str] = None) -> UserActivity:
    """Persist one activity entry. IPs are stored anonymised; the caller commits."""
    if not activity_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Activity type is required")

    stamped = now()
    meta = dict(metadata or {})
    meta.update({"timestamp": stamped.isoformat(), "created_by": created_by or "system"})

    activity = UserActivity(
        user_id=user_id,
        activity_type=activity_type,
        activity_data=activity_data,
        ip_address=anonymize_ip(ip_address),
        user_agent=truncate_user_agent(user_agent),
        location=location_from_ip(ip_address),
        device_info=parse_user_agent(user_agent),
        session_id=session_id or generate_session_id(),
        session_duration=session_duration,
        success=success,
        error_message=error_message,
        meta=meta,
        timestamp=stamped,
    )
    session.add(activity)
    await session.flush()

    logger.debug("activity.recorded", extra={"activity_type": activity_type, "success": success})
    return activity


async def record_behavior(session, *, behavior_type: str, session_id: str, user_id: Optional[int] = None,
                          page_url: Optional[str] = None, time_spent: int = 0,
                          ip_address: Optional[str] = None, user_agent: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> UserBehavior:
    behavior = UserBehavior(
        user_id=user_id,
        session_id=session_id,
        behavior_type=behavior_type,
        page_url=page_url,
        time_spent=time_spent,
        ip_address=anonymize_ip(ip_address),
        device_info=parse_user_agent(user_agent),
        location=location_from_ip(ip_address),
        meta=metadata,
    )
    session.add(behavior)
    await session.flush()
    return behavior


def activity_to_dict(activity: UserActivity, owner_pid=None) -> Dict[str, Any]:
    return {
        "id": str(activity.public_id),
        "user_id": str(owner_pid) if owner_pid else None,
        "activity_type": activity.activity_type,
        "activity_data": activity.activity_data,
        "ip_address": activity.ip_address,
        "user_agent": activity.user_agent,
        "location": activity.location,
        "device_info": activity.device_info,
        "session_id": activity.session_id,
        "session_duration": activity.session_duration,
        "success": activity.success,
        "error_message": activity.error_message,
        "metadata": activity.meta,
        "timestamp": iso(activity.timestamp),
    }


def behavior_to_dict(behavior: UserBehavior, owner_pid=None) -> Dict[str, Any]:
    return {
        "id": str(behavior.public_id),
        "user_id": str(owner_pid) if owner_pid else None,
        "session_id": behavior.session_id,
        "behavior_type": behavior.behavior_type,
        "page_url": behavior.page_url,
        "time_spent": behavior.time_spent,
        "device_info": behavior.device_info,
        "metadata": behavior.meta,
        "timestamp": iso(behavior.timestamp),
    }


async def build_activity_analytics(session, **filters) -> Dict[str, Any]:
    summary = await activity_summary(session, **filters)
    return {
        "total_activities": summary["total"],
        "success_rate": round2(percentage(summary["succeeded"], summary["total"])),
        "activity_types": summary["by_type"],
        "unique_users": summary["unique_users"],
        "date_range": {"start": iso(summary["first_seen"]), "end": iso(summary["last_seen"])},
    }


async def cleanup_old_activities(session, days: int = config_settings.ACTIVITY_RETENTION_DAYS) -> int:
    cutoff = now() - timedelta(days=days)
    deleted = await delete_activities_before(session, cutoff)
    logger.info("activity.cleanup.done", extra={"days": days, "deleted": deleted})
    return deleted


async def anonymize_old_activities(session, days: int = config_settings.ACTIVITY_ANONYMIZE_AFTER_DAYS) -> int:
    cutoff = now() - timedelta(days=days)
    anonymized = await anonymize_activities_before(session, cutoff)
    logger.info("activity.anonymize.done", extra={"days": days, "anonymized": anonymized})
    return anonymized
