from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status
from shopfront.common.utils import as_utc, iso, now
from shopfront.engagement.calculators import METRIC_TYPES, METRICS
from shopfront.engagement.constants import logger
from shopfront.schema.full_schema import EngagementMetric, MetricSource, MetricStatus
from shopfront.user_activity.repository import (activities_for_user_since, behaviors_for_user_since,
                                                user_has_any_activity)


async def calculate_metric(session, user_id: int, metric_type: str, period_start: Optional[datetime] = None,
                           period_end: Optional[datetime] = None) -> Dict[str, Any]:
    spec = METRICS.get(metric_type)
    if spec is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown metric type: {metric_type}")

    end = as_utc(period_end) or now()
    start = as_utc(period_start) or end - spec.window
    if start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="period_start must be before period_end")

    extra = {}
    if spec.source == "activities":
        events = await activities_for_user_since(session, user_id, start, end)
        if metric_type == "retention":
            extra["has_any_activity"] = await user_has_any_activity(session, user_id)
    else:
        events = await behaviors_for_user_since(session, user_id, start, end)

    return spec.calculate(events, start, end, **extra)


async def record_metric(session, user_id: int, metric_type: str, result: Dict[str, Any]) -> EngagementMetric:
    metric = EngagementMetric(
        user_id=user_id,
        metric_type=metric_type,
        metric_value=float(result["value"]),
        period_start=result["period_start"],
        period_end=result["period_end"],
        source=MetricSource.CALCULATED.value,
        status=MetricStatus.ACTIVE.value,
        meta=result["metadata"],
    )
    session.add(metric)
    await session.flush()
    return metric


async def calculate_and_store(session, user_id: int, metric_type: str, period_start=None, period_end=None) -> EngagementMetric:
    result = await calculate_metric(session, user_id, metric_type, period_start, period_end)
    metric = await record_metric(session, user_id, metric_type, result)
    logger.info("engagement.metric.calculated", extra={"metric_type": metric_type, "value": metric.metric_value})
    return metric


async def calculate_all(session, user_id: int, period_start=None, period_end=None) -> List[Dict[str, Any]]:
    """Every metric type; a failing metric is reported in place instead of aborting the rest."""
    results = []
    for metric_type in METRIC_TYPES:
        try:
            metric = await calculate_and_store(session, user_id, metric_type, period_start, period_end)
        except HTTPException as e:
            logger.warning("engagement.metric.failed", extra={"metric_type": metric_type, "error": e.detail})
            results.append({"metric_type": metric_type, "error": e.detail})
            continue
        results.append({"metric_type": metric_type, **metric_to_dict(metric)})
    return results


def metric_to_dict(metric: EngagementMetric, owner_pid=None) -> Dict[str, Any]:
    return {
        "id": str(metric.public_id),
        "user_id": str(owner_pid) if owner_pid else None,
        "metric_type": metric.metric_type,
        "metric_value": metric.metric_value,
        "calculation_date": iso(metric.calculation_date),
        "period_start": iso(metric.period_start),
        "period_end": iso(metric.period_end),
        "source": metric.source,
        "status": metric.status,
        "metadata": metric.meta,
    }
