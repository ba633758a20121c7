from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, get_requester, require_admin, require_authenticated
from shopfront.auth.repository import public_ids_for, user_id_by_public_id
from shopfront.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shopfront.common.utils import page_meta, success_response, validate_uuid
from shopfront.config.settings import config_settings
from shopfront.db.dependencies import get_session
from shopfront.user_activity.constants import logger
from shopfront.user_activity.models import ActivityIn, ActivityUpdateIn, BehaviorIn
from shopfront.user_activity.repository import activity_by_public_id, list_activities, list_behaviors
from shopfront.user_activity.services import (activity_to_dict, anonymize_old_activities, behavior_to_dict,
                                              build_activity_analytics, cleanup_old_activities,
                                              record_activity, record_behavior)
from shopfront.user_activity.utils import client_ip

activity_router = APIRouter()
behavior_router = APIRouter()
activity_admin_router = APIRouter()


async def _scope_user_id(session, requester: Requester, user_public_id: Optional[str]) -> Optional[int]:
    """Admins may look at anyone (or everyone); other users only at themselves."""
    if not requester.is_admin:
        return requester.user_id
    if not user_public_id:
        return None
    user_id = await user_id_by_public_id(session, user_public_id)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user_id


async def _owned_activity(session, activity_id: str, requester: Requester):
    activity = await activity_by_public_id(session, validate_uuid(activity_id, "Invalid activity id"))
    if not activity:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found")
    if activity.user_id != requester.user_id and not requester.is_admin:
        logger.warning("activity.access.denied", extra={"user_public_id": requester.user_public_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return activity


@activity_router.post("", status_code=status.HTTP_201_CREATED)
async def create_activity(request: Request, payload: ActivityIn,
                          requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):

    activity = await record_activity(
        session,
        activity_type=payload.activity_type,
        user_id=requester.user_id,
        session_id=payload.session_id,
        activity_data=payload.activity_data,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        session_duration=payload.session_duration,
        success=payload.success,
        error_message=payload.error_message,
        metadata=payload.metadata,
        created_by=requester.user_public_id,
    )
    await session.commit()

    logger.info("activity.create.success", extra={"activity_type": payload.activity_type, "user_public_id": requester.user_public_id})
    return success_response({"activity": activity_to_dict(activity, requester.user_public_id)}, status_code=status.HTTP_201_CREATED)


@activity_router.get("")
async def get_activities(activity_type: Optional[str] = Query(None),
                         user_id: Optional[str] = Query(None, description="user public id, admins only"),
                         start_date: Optional[datetime] = Query(None),
                         end_date: Optional[datetime] = Query(None),
                         page: int = Query(1, ge=1),
                         page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                         requester: Requester = Depends(require_authenticated),
                         session: AsyncSession = Depends(get_session)):

    scoped_user = await _scope_user_id(session, requester, user_id)
    rows, total = await list_activities(session, page=page, page_size=page_size, user_id=scoped_user,
                                        activity_type=activity_type, start=start_date, end=end_date)
    owners = await public_ids_for(session, [r.user_id for r in rows])

    return success_response({
        "items": [activity_to_dict(r, owners.get(r.user_id)) for r in rows],
        "pagination": page_meta(page, page_size, total),
    })


@activity_router.get("/analytics")
async def get_activity_analytics(user_id: Optional[str] = Query(None),
                                 start_date: Optional[datetime] = Query(None),
                                 end_date: Optional[datetime] = Query(None),
                                 requester: Requester = Depends(require_authenticated),
                                 session: AsyncSession = Depends(get_session)):

    scoped_user = await _scope_user_id(session, requester, user_id)
    analytics = await build_activity_analytics(session, user_id=scoped_user, start=start_date, end=end_date)
    return success_response({"analytics": analytics})


@activity_router.get("/{activity_id}")
async def get_activity(activity_id: str, requester: Requester = Depends(require_authenticated),
                       session: AsyncSession = Depends(get_session)):
    activity = await _owned_activity(session, activity_id, requester)
    owners = await public_ids_for(session, [activity.user_id])
    return success_response({"activity": activity_to_dict(activity, owners.get(activity.user_id))})


@activity_router.put("/{activity_id}")
async def update_activity(activity_id: str, payload: ActivityUpdateIn,
                          requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):
    activity = await _owned_activity(session, activity_id, requester)

    updates = payload.model_dump(exclude_unset=True)
    if "metadata" in updates:
        activity.meta = {**(activity.meta or {}), **(updates.pop("metadata") or {})}
    for field, value in updates.items():
        setattr(activity, field, value)

    await session.commit()
    owners = await public_ids_for(session, [activity.user_id])
    logger.info("activity.update.success", extra={"activity_id": activity_id})
    return success_response({"activity": activity_to_dict(activity, owners.get(activity.user_id))})


@activity_router.delete("/{activity_id}")
async def delete_activity(activity_id: str, requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):
    activity = await _owned_activity(session, activity_id, requester)
    await session.delete(activity)
    await session.commit()

    logger.info("activity.delete.success", extra={"activity_id": activity_id})
    return success_response({"message": "Activity deleted successfully"})

# -----------------------------------------------------------------------------------------------------------------------

@behavior_router.post("/track", status_code=status.HTTP_201_CREATED)
async def track_behavior(request: Request, payload: BehaviorIn,
                         requester: Requester = Depends(get_requester),
                         session: AsyncSession = Depends(get_session)):

    behavior = await record_behavior(
        session,
        behavior_type=payload.behavior_type,
        session_id=payload.session_id,
        user_id=requester.user_id,
        page_url=payload.page_url,
        time_spent=payload.time_spent,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        metadata=payload.metadata,
    )
    await session.commit()

    return success_response({"behavior": behavior_to_dict(behavior, requester.user_public_id)}, status_code=status.HTTP_201_CREATED)


@behavior_router.get("")
async def get_behaviors(behavior_type: Optional[str] = Query(None),
                        session_id: Optional[str] = Query(None),
                        user_id: Optional[str] = Query(None),
                        start_date: Optional[datetime] = Query(None),
                        end_date: Optional[datetime] = Query(None),
                        page: int = Query(1, ge=1),
                        page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                        requester: Requester = Depends(require_authenticated),
                        session: AsyncSession = Depends(get_session)):

    scoped_user = await _scope_user_id(session, requester, user_id)
    rows, total = await list_behaviors(session, page=page, page_size=page_size, user_id=scoped_user,
                                       session_id=session_id, behavior_type=behavior_type,
                                       start=start_date, end=end_date)
    owners = await public_ids_for(session, [r.user_id for r in rows])

    return success_response({
        "items": [behavior_to_dict(r, owners.get(r.user_id)) for r in rows],
        "pagination": page_meta(page, page_size, total),
    })

# -----------------------------------------------------------------------------------------------------------------------

@activity_admin_router.delete("/cleanup")
async def cleanup_activities(days: int = Query(config_settings.ACTIVITY_RETENTION_DAYS, ge=1),
                             requester: Requester = Depends(require_admin),
                             session: AsyncSession = Depends(get_session)):
    deleted = await cleanup_old_activities(session, days)
    await session.commit()
    return success_response({"message": f"Deleted {deleted} activities older than {days} days", "count": deleted})


@activity_admin_router.post("/anonymize")
async def anonymize_activities(days: int = Query(config_settings.ACTIVITY_ANONYMIZE_AFTER_DAYS, ge=1),
                               requester: Requester = Depends(require_admin),
                               session: AsyncSession = Depends(get_session)):
    anonymized = await anonymize_old_activities(session, days)
    await session.commit()
    return success_response({"message": f"Anonymized {anonymized} activities older than {days} days", "count": anonymized})
