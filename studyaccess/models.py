"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class Grant:
    """One (study, role, optional sample scope) authorization record."""
    study_id: str
    role: str                               # "STUDY_ADMIN", "SAMPLE_ADMIN" or "VIEWER"
    sample_ids: Optional[FrozenSet[str]] = None   # only set for SAMPLE_ADMIN


@dataclass(frozen=True)
class Caller:
    """The verified identity of a request and its grants."""
    id: str
    grants: Tuple[Grant, ...] = ()
    region: Optional[str] = None


@dataclass(frozen=True)
class Predicate:
    """
    A filter clause plus its ordered parameters.

    The clause references placeholders ``:p<N>`` for
    N = first_index .. first_index + len(params) - 1, and placeholder N binds
    ``params[N - first_index]``. ``params`` is always ``study_params`` followed
    by ``sample_params``.
    """
    clause: str
    study_params: Tuple[str, ...]
    sample_params: Tuple[List[str], ...]
    first_index: int = 1

    @property
    def params(self) -> Tuple[Any, ...]:
        return tuple(self.study_params) + tuple(self.sample_params)

    @property
    def next_index(self) -> int:
        """First placeholder index free for parameters after this predicate."""
        return self.first_index + len(self.params)

    def bind_params(self) -> Dict[str, Any]:
        return {f"p{self.first_index + i}": value for i, value in enumerate(self.params)}


@dataclass(frozen=True)
class AggregationWindow:
    unit: str                       # "day", "week" or "month"
    range_days: int
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None


@dataclass
class Metrics:
    """Usage metrics for one study or for all accessible studies."""
    users_total: int = 0
    users_active: int = 0
    tasks_assigned: int = 0
    tasks_enabled: int = 0
    total_submissions: int = 0
    recent_submissions: int = 0
    avg_submission_lag_seconds: float = 0.0
    avg_processing_time_seconds: float = 0.0
    instances_total: int = 0
    instances_recent: int = 0
    earliest_submission: Optional[datetime] = None
    latest_submission: Optional[datetime] = None
    latest_processing: Optional[datetime] = None

    def to_dict(self, include_timestamps: bool = False) -> Dict[str, Any]:
        activity: Dict[str, Any] = {
            "total_submissions": self.total_submissions,
            "submissions_in_period": self.recent_submissions,
            "avg_submission_lag_seconds": self.avg_submission_lag_seconds,
            "avg_processing_time_seconds": self.avg_processing_time_seconds,
        }
        if include_timestamps:
            activity["latest_submission"] = _isoformat(self.latest_submission)
            activity["earliest_submission"] = _isoformat(self.earliest_submission)
            activity["latest_processing"] = _isoformat(self.latest_processing)
        return {
            "users": {"total": self.users_total, "active_in_period": self.users_active},
            "tasks": {"assigned": self.tasks_assigned, "enabled": self.tasks_enabled},
            "activity": activity,
            "task_instances": {
                "total_used": self.instances_total,
                "used_in_period": self.instances_recent,
            },
        }


@dataclass
class SubmissionBucket:
    date: Any
    count: int
    aggregation: str

    def to_dict(self) -> Dict[str, Any]:
        return {"date": _isoformat(self.date), "count": self.count, "aggregation": self.aggregation}


@dataclass
class StudyStatus:
    study_id: str
    metrics: Metrics
    window: AggregationWindow
    submissions: List[SubmissionBucket] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"study_id": self.study_id}
        out.update(self.metrics.to_dict(include_timestamps=True))
        out["submissions_by_bucket"] = [b.to_dict() for b in self.submissions]
        out["time_aggregation"] = self.window.unit
        out["date_range_days"] = self.window.range_days
        return out


@dataclass
class StatusReport:
    overall: Metrics
    by_study: List[StudyStatus]
    period_days: int
    cutoff_date: datetime
    time_aggregation: str = "day"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall.to_dict(),
            "by_study": [s.to_dict() for s in self.by_study],
            "period_days": self.period_days,
            "cutoff_date": _isoformat(self.cutoff_date),
            "time_aggregation": self.time_aggregation,
        }


def _isoformat(value):
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
