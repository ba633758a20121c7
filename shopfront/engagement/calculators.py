"""
Engagement metric calculators.

Every calculator is a pure function over already-fetched events (activities or
behaviours exposing ``timestamp``, and for behaviours ``behavior_type``,
``session_id`` and ``time_spent``). Each returns
``{"value", "period_start", "period_end", "metadata"}``.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Sequence

INTERACTION_TYPES = ("product_view", "search", "cart_add", "purchase")

SCORE_WEIGHTS = {"page_views": 0.2, "time_spent": 0.3, "interactions": 0.3, "frequency": 0.2}

_SECONDS_PER_DAY = 24 * 60 * 60


def _result(value, period_start: datetime, period_end: datetime, **metadata) -> Dict[str, Any]:
    return {"value": value, "period_start": period_start, "period_end": period_end, "metadata": metadata}


def _day(ts: datetime) -> date:
    return ts.date()


def _week_start(ts: datetime) -> date:
    # weeks start on Sunday
    d = ts.date()
    return d - timedelta(days=(d.weekday() + 1) % 7)


def _month(ts: datetime) -> str:
    return ts.strftime("%Y-%m")


def _span_days(period_start: datetime, period_end: datetime) -> float:
    return (period_end - period_start).total_seconds() / _SECONDS_PER_DAY


def _by_session(events: Iterable) -> Dict[str, List]:
    sessions: Dict[str, List] = defaultdict(list)
    for e in events:
        sessions[e.session_id].append(e)
    return sessions


def daily_active(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    unique_days = len({_day(e.timestamp) for e in events})
    return _result(unique_days, period_start, period_end,
                   total_activities=len(events), unique_days=unique_days,
                   period_hours=(period_end - period_start).total_seconds() / 3600)


def weekly_active(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    unique_weeks = len({_week_start(e.timestamp) for e in events})
    return _result(unique_weeks, period_start, period_end,
                   total_activities=len(events), unique_weeks=unique_weeks,
                   period_days=_span_days(period_start, period_end))


def monthly_active(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    unique_months = len({_month(e.timestamp) for e in events})
    return _result(unique_months, period_start, period_end,
                   total_activities=len(events), unique_months=unique_months,
                   period_days=_span_days(period_start, period_end))


def retention(events: Sequence, period_start: datetime, period_end: datetime,
              has_any_activity: bool = True, **_) -> Dict[str, Any]:
    if not has_any_activity:
        return _result(0, period_start, period_end, reason="No activity found")

    total_days = _span_days(period_start, period_end)
    active_days = len({_day(e.timestamp) for e in events})
    rate = (active_days / total_days) * 100 if total_days > 0 else 0
    return _result(rate, period_start, period_end,
                   total_days=round(total_days), active_days=active_days, retention_rate=rate)


def engagement_score(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    page_views = sum(1 for e in events if e.behavior_type == "page_view")
    total_time = sum(e.time_spent or 0 for e in events)
    interactions = sum(1 for e in events if e.behavior_type in INTERACTION_TYPES)
    unique_days = len({_day(e.timestamp) for e in events})

    components = {
        "page_views": min(page_views * 10, 100),
        "time_spent": min(total_time / 60, 100),
        "interactions": min(interactions * 20, 100),
        "frequency": min(unique_days * 14, 100),
    }
    score = sum(components[k] * w for k, w in SCORE_WEIGHTS.items())

    return _result(round(score), period_start, period_end,
                   page_views=page_views, page_views_score=components["page_views"],
                   total_time_spent=total_time, time_spent_score=components["time_spent"],
                   interactions=interactions, interactions_score=components["interactions"],
                   unique_days=unique_days, frequency_score=components["frequency"],
                   weights=SCORE_WEIGHTS)


def session_duration(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    sessions = _by_session(sorted(events, key=lambda e: e.timestamp))
    durations = [
        (evs[-1].timestamp - evs[0].timestamp).total_seconds()
        for evs in sessions.values()
        if len(evs) > 1
    ]
    average = sum(durations) / len(durations) if durations else 0
    return _result(average, period_start, period_end,
                   total_sessions=len(sessions), sessions_with_duration=len(durations),
                   average_duration=average,
                   min_duration=min(durations) if durations else 0,
                   max_duration=max(durations) if durations else 0)


def page_views(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    count = sum(1 for e in events if e.behavior_type == "page_view")
    days = _span_days(period_start, period_end)
    return _result(count, period_start, period_end,
                   period_days=days, average_per_day=count / days if days > 0 else 0)


def bounce_rate(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    sessions = _by_session(events)
    bounces = sum(1 for evs in sessions.values() if len(evs) == 1 and evs[0].behavior_type == "page_view")
    rate = (bounces / len(sessions)) * 100 if sessions else 0
    return _result(rate, period_start, period_end, total_sessions=len(sessions), bounces=bounces, bounce_rate=rate)


def conversion_rate(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    total_sessions = len({e.session_id for e in events})
    purchases = sum(1 for e in events if e.behavior_type == "purchase")
    rate = (purchases / total_sessions) * 100 if total_sessions else 0
    return _result(rate, period_start, period_end,
                   total_sessions=total_sessions, purchases=purchases, conversion_rate=rate)


def time_on_site(events: Sequence, period_start: datetime, period_end: datetime, **_) -> Dict[str, Any]:
    total_time = sum(e.time_spent or 0 for e in events)
    total_sessions = len({e.session_id for e in events})
    average = total_time / total_sessions if total_sessions else 0
    return _result(average, period_start, period_end,
                   total_time_spent=total_time, total_sessions=total_sessions, average_time_on_site=average)


@dataclass(frozen=True)
class MetricSpec:
    window: timedelta
    source: str  # "activities" or "behaviors"
    calculate: Callable[..., Dict[str, Any]]


METRICS: Dict[str, MetricSpec] = {
    "daily_active": MetricSpec(timedelta(hours=24), "activities", daily_active),
    "weekly_active": MetricSpec(timedelta(days=7), "activities", weekly_active),
    "monthly_active": MetricSpec(timedelta(days=30), "activities", monthly_active),
    "retention": MetricSpec(timedelta(days=30), "activities", retention),
    "engagement_score": MetricSpec(timedelta(days=7), "behaviors", engagement_score),
    "session_duration": MetricSpec(timedelta(days=7), "behaviors", session_duration),
    "page_views": MetricSpec(timedelta(days=7), "behaviors", page_views),
    "bounce_rate": MetricSpec(timedelta(days=7), "behaviors", bounce_rate),
    "conversion_rate": MetricSpec(timedelta(days=30), "behaviors", conversion_rate),
    "time_on_site": MetricSpec(timedelta(days=7), "behaviors", time_on_site),
}

METRIC_TYPES = tuple(METRICS)


def period_key(ts: datetime, group_by: str) -> str:
    if group_by == "week":
        return _week_start(ts).isoformat()
    if group_by == "month":
        return _month(ts)
    return _day(ts).isoformat()


def summarize_metrics(metrics: Iterable, group_by: str = "day") -> List[Dict[str, Any]]:
    """Group stored metrics by period and type: count, average, min and max of ``metric_value``."""
    buckets: Dict[tuple, List[float]] = defaultdict(list)
    for m in metrics:
        buckets[(period_key(m.calculation_date, group_by), m.metric_type)].append(m.metric_value)

    out = []
    for (period, metric_type), values in sorted(buckets.items()):
        out.append({
            "period": period,
            "metric_type": metric_type,
            "count": len(values),
            "average": round(sum(values) / len(values), 2),
            "min": min(values),
            "max": max(values),
        })
    return out
