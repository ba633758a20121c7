from datetime import datetime
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, require_authenticated
from shopfront.auth.repository import public_ids_for, user_id_by_public_id
from shopfront.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shopfront.common.utils import page_meta, success_response, validate_uuid
from shopfront.db.dependencies import get_session
from shopfront.engagement.calculators import summarize_metrics
from shopfront.engagement.constants import logger
from shopfront.engagement.models import CalculateAllIn, CalculateMetricIn, MetricUpdateIn
from shopfront.engagement.repository import list_metrics, metric_by_public_id, metrics_for_summary
from shopfront.engagement.services import calculate_all, calculate_and_store, metric_to_dict
from shopfront.schema.full_schema import MetricSource, MetricStatus

engagement_router = APIRouter()


async def _target_user(session, requester: Requester, user_public_id: str) -> int:
    """Resolve the user a calculation is for. Non-admins may only calculate their own metrics."""
    target_pid = validate_uuid(user_public_id, "Invalid user id")
    if not requester.is_admin and str(target_pid) != requester.user_public_id:
        logger.warning("engagement.calculate.denied", extra={"user_public_id": requester.user_public_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    user_id = await user_id_by_public_id(session, target_pid)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user_id


async def _scope_user_id(session, requester: Requester, user_public_id: Optional[str]) -> Optional[int]:
    if not requester.is_admin:
        return requester.user_id
    if not user_public_id:
        return None
    user_id = await user_id_by_public_id(session, user_public_id)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user_id


async def _visible_metric(session, metric_id: str, requester: Requester):
    metric = await metric_by_public_id(session, validate_uuid(metric_id, "Invalid metric id"))
    if not metric:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Engagement metric not found")
    if metric.user_id != requester.user_id and not requester.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return metric


@engagement_router.post("/calculate", status_code=status.HTTP_201_CREATED)
async def calculate(payload: CalculateMetricIn,
                    requester: Requester = Depends(require_authenticated),
                    session: AsyncSession = Depends(get_session)):

    user_id = await _target_user(session, requester, payload.user_id)
    metric = await calculate_and_store(session, user_id, payload.metric_type, payload.period_start, payload.period_end)
    await session.commit()

    return success_response({"metric": metric_to_dict(metric, payload.user_id)}, status_code=status.HTTP_201_CREATED)


@engagement_router.post("/calculate-all", status_code=status.HTTP_201_CREATED)
async def calculate_all_metrics(payload: CalculateAllIn,
                                requester: Requester = Depends(require_authenticated),
                                session: AsyncSession = Depends(get_session)):

    user_id = await _target_user(session, requester, payload.user_id)
    results = await calculate_all(session, user_id, payload.period_start, payload.period_end)
    await session.commit()

    for r in results:
        if "id" in r:
            r["user_id"] = payload.user_id
    failed = sum(1 for r in results if "error" in r)
    logger.info("engagement.calculate_all.done", extra={"calculated": len(results) - failed, "failed": failed})
    return success_response({"metrics": results, "count": len(results) - failed, "errors": failed},
                            status_code=status.HTTP_201_CREATED)


@engagement_router.get("")
async def get_metrics(user_id: Optional[str] = Query(None, description="user public id, admins only"),
                      metric_type: Optional[str] = Query(None),
                      source: Optional[MetricSource] = Query(None),
                      metric_status: Optional[MetricStatus] = Query(None, alias="status"),
                      start_date: Optional[datetime] = Query(None),
                      end_date: Optional[datetime] = Query(None),
                      page: int = Query(1, ge=1),
                      page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                      requester: Requester = Depends(require_authenticated),
                      session: AsyncSession = Depends(get_session)):

    scoped_user = await _scope_user_id(session, requester, user_id)
    rows, total = await list_metrics(
        session, page=page, page_size=page_size, user_id=scoped_user, metric_type=metric_type,
        source=source.value if source else None, status=metric_status.value if metric_status else None,
        start=start_date, end=end_date,
    )
    owners = await public_ids_for(session, [r.user_id for r in rows])

    return success_response({
        "items": [metric_to_dict(r, owners.get(r.user_id)) for r in rows],
        "pagination": page_meta(page, page_size, total),
    })


@engagement_router.get("/analytics")
async def get_metric_analytics(group_by: Literal["day", "week", "month"] = Query("day"),
                               user_id: Optional[str] = Query(None),
                               metric_type: Optional[str] = Query(None),
                               start_date: Optional[datetime] = Query(None),
                               end_date: Optional[datetime] = Query(None),
                               requester: Requester = Depends(require_authenticated),
                               session: AsyncSession = Depends(get_session)):

    scoped_user = await _scope_user_id(session, requester, user_id)
    metrics = await metrics_for_summary(session, user_id=scoped_user, metric_type=metric_type,
                                        start=start_date, end=end_date)
    return success_response({"group_by": group_by, "analytics": summarize_metrics(metrics, group_by)})


@engagement_router.get("/{metric_id}")
async def get_metric(metric_id: str, requester: Requester = Depends(require_authenticated),
                     session: AsyncSession = Depends(get_session)):
    metric = await _visible_metric(session, metric_id, requester)
    owners = await public_ids_for(session, [metric.user_id])
    return success_response({"metric": metric_to_dict(metric, owners.get(metric.user_id))})


@engagement_router.put("/{metric_id}")
async def update_metric(metric_id: str, payload: MetricUpdateIn,
                        requester: Requester = Depends(require_authenticated),
                        session: AsyncSession = Depends(get_session)):
    metric = await _visible_metric(session, metric_id, requester)

    updates = payload.model_dump(exclude_unset=True, mode="json")
    if "metadata" in updates:
        metric.meta = {**(metric.meta or {}), **(updates.pop("metadata") or {})}
    for field, value in updates.items():
        if value is not None:
            setattr(metric, field, value)

    await session.commit()
    owners = await public_ids_for(session, [metric.user_id])
    logger.info("engagement.metric.updated", extra={"metric_id": metric_id})
    return success_response({"metric": metric_to_dict(metric, owners.get(metric.user_id))})


@engagement_router.delete("/{metric_id}")
async def delete_metric(metric_id: str, requester: Requester = Depends(require_authenticated),
                        session: AsyncSession = Depends(get_session)):
    metric = await _visible_metric(session, metric_id, requester)
    await session.delete(metric)
    await session.commit()

    logger.info("engagement.metric.deleted", extra={"metric_id": metric_id})
    return success_response({"message": "Engagement metric deleted successfully"})
