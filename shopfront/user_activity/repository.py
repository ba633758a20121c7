from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
from sqlalchemy import case, delete, desc, distinct, func, or_, select, update
from shopfront.schema.full_schema import UserActivity, UserBehavior
from shopfront.user_activity.constants import ANONYMIZED_USER_AGENT


def _activity_filters(user_id=None, activity_type=None, start: Optional[datetime] = None, end: Optional[datetime] = None):
    conds = []
    if user_id is not None:
        conds.append(UserActivity.user_id == user_id)
    if activity_type:
        conds.append(UserActivity.activity_type == activity_type)
    if start:
        conds.append(UserActivity.timestamp >= start)
    if end:
        conds.append(UserActivity.timestamp <= end)
    return conds


async def activity_by_public_id(session, activity_pid: UUID) -> Optional[UserActivity]:
    res = await session.execute(select(UserActivity).where(UserActivity.public_id == activity_pid))
    return res.scalar_one_or_none()


async def list_activities(session, *, page: int, page_size: int, **filters) -> Tuple[List[UserActivity], int]:
    conds = _activity_filters(**filters)

    total = (await session.execute(select(func.count(UserActivity.id)).where(*conds))).scalar_one()
    stmt = (
        select(UserActivity)
        .where(*conds)
        .order_by(desc(UserActivity.timestamp), desc(UserActivity.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = (await session.execute(stmt)).scalars().all()
    return list(rows), total


async def activity_summary(session, **filters) -> Dict[str, Any]:
    conds = _activity_filters(**filters)

    totals_stmt = select(
        func.count(UserActivity.id),
        func.coalesce(func.sum(case((UserActivity.success.is_(True), 1), else_=0)), 0),
        func.count(distinct(UserActivity.user_id)),
        func.min(UserActivity.timestamp),
        func.max(UserActivity.timestamp),
    ).where(*conds)
    total, succeeded, unique_users, first_seen, last_seen = (await session.execute(totals_stmt)).one()

    by_type_stmt = (
        select(UserActivity.activity_type, func.count(UserActivity.id))
        .where(*conds)
        .group_by(UserActivity.activity_type)
    )
    by_type = {row[0]: row[1] for row in (await session.execute(by_type_stmt)).all()}

    return {
        "total": total,
        "succeeded": int(succeeded or 0),
        "unique_users": unique_users,
        "first_seen": first_seen,
        "last_seen": last_seen,
        "by_type": by_type,
    }


async def activities_for_user_since(session, user_id: int, start: datetime, end: datetime) -> List[UserActivity]:
    stmt = (
        select(UserActivity)
        .where(UserActivity.user_id == user_id, UserActivity.timestamp >= start, UserActivity.timestamp <= end)
        .order_by(UserActivity.timestamp)
    )
    return list((await session.execute(stmt)).scalars().all())


async def user_has_any_activity(session, user_id: int) -> bool:
    stmt = select(UserActivity.id).where(UserActivity.user_id == user_id).limit(1)
    return (await session.execute(stmt)).first() is not None


async def delete_activities_before(session, cutoff: datetime) -> int:
    res = await session.execute(delete(UserActivity).where(UserActivity.timestamp < cutoff))
    return res.rowcount or 0


async def anonymize_activities_before(session, cutoff: datetime) -> int:
    stmt = (
        update(UserActivity)
        .where(
            UserActivity.timestamp < cutoff,
            or_(UserActivity.ip_address.is_not(None),
                UserActivity.user_agent.is_(None),
                UserActivity.user_agent != ANONYMIZED_USER_AGENT),
        )
        .values(ip_address=None, user_agent=ANONYMIZED_USER_AGENT)
    )
    res = await session.execute(stmt)
    return res.rowcount or 0

# -----------------------------------------------------------------------------------------------------------------------

async def list_behaviors(session, *, page: int, page_size: int, user_id=None, session_id=None,
                         behavior_type=None, start=None, end=None) -> Tuple[List[UserBehavior], int]:
    conds = []
    if user_id is not None:
        conds.append(UserBehavior.user_id == user_id)
    if session_id:
        conds.append(UserBehavior.session_id == session_id)
    if behavior_type:
        conds.append(UserBehavior.behavior_type == behavior_type)
    if start:
        conds.append(UserBehavior.timestamp >= start)
    if end:
        conds.append(UserBehavior.timestamp <= end)

    total = (await session.execute(select(func.count(UserBehavior.id)).where(*conds))).scalar_one()
    stmt = (
        select(UserBehavior)
        .where(*conds)
        .order_by(desc(UserBehavior.timestamp), desc(UserBehavior.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list((await session.execute(stmt)).scalars().all()), total


async def behaviors_for_user_since(session, user_id: int, start: datetime, end: datetime) -> List[UserBehavior]:
    stmt = (
        select(UserBehavior)
        .where(UserBehavior.user_id == user_id, UserBehavior.timestamp >= start, UserBehavior.timestamp <= end)
        .order_by(UserBehavior.timestamp)
    )
    return list((await session.execute(stmt)).scalars().all())
