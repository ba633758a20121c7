from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from shopfront.schema.full_schema import MetricSource, MetricStatus


class CalculateMetricIn(BaseModel):
    metric_type: str
    user_id: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class CalculateAllIn(BaseModel):
    user_id: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class MetricUpdateIn(BaseModel):
    metric_value: Optional[float] = None
    source: Optional[MetricSource] = None
    status: Optional[MetricStatus] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = {"extra": "forbid"}
