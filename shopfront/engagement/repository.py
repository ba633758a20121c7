from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID
from sqlalchemy import desc, func, select
from shopfront.schema.full_schema import EngagementMetric


def _filters(user_id=None, metric_type=None, source=None, status=None,
             start: Optional[datetime] = None, end: Optional[datetime] = None):
    conds = []
    if user_id is not None:
        conds.append(EngagementMetric.user_id == user_id)
    if metric_type:
        conds.append(EngagementMetric.metric_type == metric_type)
    if source:
        conds.append(EngagementMetric.source == source)
    if status:
        conds.append(EngagementMetric.status == status)
    if start:
        conds.append(EngagementMetric.calculation_date >= start)
    if end:
        conds.append(EngagementMetric.calculation_date <= end)
    return conds


async def metric_by_public_id(session, metric_pid: UUID) -> Optional[EngagementMetric]:
    return (await session.execute(select(EngagementMetric).where(EngagementMetric.public_id == metric_pid))).scalar_one_or_none()


async def list_metrics(session, *, page: int, page_size: int, **filters) -> Tuple[List[EngagementMetric], int]:
    conds = _filters(**filters)
    total = (await session.execute(select(func.count(EngagementMetric.id)).where(*conds))).scalar_one()
    stmt = (
        select(EngagementMetric)
        .where(*conds)
        .order_by(desc(EngagementMetric.calculation_date), desc(EngagementMetric.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list((await session.execute(stmt)).scalars().all()), total


async def metrics_for_summary(session, **filters) -> List[EngagementMetric]:
    stmt = select(EngagementMetric).where(*_filters(**filters)).order_by(EngagementMetric.calculation_date)
    return list((await session.execute(stmt)).scalars().all())
