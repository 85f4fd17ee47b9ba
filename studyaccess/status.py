"""
Usage status report: one grouped summary query over every accessible study,
then a per-study submission time series with an adaptive bucket size.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from studyaccess import config
from studyaccess.errors import StudyAccessError, ValidationError
from studyaccess.gate import accessible_studies
from studyaccess.models import (
    AggregationWindow,
    Caller,
    Grant,
    Metrics,
    StatusReport,
    StudyStatus,
    SubmissionBucket,
)
from studyaccess.planner import plan_window
from studyaccess.predicates import USER_CONTEXT, compile_predicate
from studyaccess.rbac import effective_grants

logger = logging.getLogger(__name__)

# :p1 is the cutoff; the access predicate starts at :p2.
SUMMARY_SQL = """
    SELECT
        u.study_id,
        COUNT(DISTINCT u.user_id) AS total_users,
        COUNT(DISTINCT CASE WHEN utl.submission_time >= :p1 THEN u.user_id END) AS active_users,
        COUNT(DISTINCT ut.user_task_id) AS assigned_tasks,
        COUNT(DISTINCT CASE WHEN ut.enabled = true THEN ut.user_task_id END) AS enabled_tasks,
        COUNT(utl.user_task_log_id) AS total_submissions,
        COUNT(CASE WHEN utl.submission_time >= :p1 THEN utl.user_task_log_id END) AS recent_submissions,
        AVG(EXTRACT(EPOCH FROM (utl.submission_time - ut.assigned_time))) AS avg_submission_lag_seconds,
        AVG(EXTRACT(EPOCH FROM (utl.processing_time - utl.submission_time))) AS avg_processing_time_seconds,
        MIN(utl.submission_time) AS earliest_submission,
        MAX(utl.submission_time) AS latest_submission,
        MAX(utl.processing_time) AS latest_processing,
        COUNT(DISTINCT uti.user_task_instance_id) AS total_instances_used,
        COUNT(DISTINCT CASE WHEN utl.submission_time >= :p1 THEN uti.user_task_instance_id END) AS recent_instances_used
    FROM fw_psy_user u
    LEFT JOIN fw_psy_user_task ut ON u.user_id = ut.user_id
    LEFT JOIN fw_psy_user_task_log utl ON ut.user_task_id = utl.user_task_id
    LEFT JOIN fw_psy_user_task_instance uti ON utl.user_task_instance_id = uti.user_task_instance_id
    WHERE {access_clause}
    GROUP BY u.study_id
    ORDER BY u.study_id
"""

DATE_RANGE_SQL = """
    SELECT
        MIN(utl.submission_time) AS earliest_date,
        MAX(utl.submission_time) AS latest_date
    FROM fw_psy_user_task_log utl
    JOIN fw_psy_user_task ut ON utl.user_task_id = ut.user_task_id
    JOIN fw_psy_user u ON ut.user_id = u.user_id
    WHERE {access_clause}
"""

BUCKETS_SQL = """
    SELECT
        CAST(date_trunc(:unit, utl.submission_time) AS DATE) AS bucket_date,
        COUNT(DISTINCT utl.user_task_log_id) AS submission_count
    FROM fw_psy_user_task_log utl
    JOIN fw_psy_user_task ut ON utl.user_task_id = ut.user_task_id
    JOIN fw_psy_user u ON ut.user_id = u.user_id
    WHERE {access_clause}
    GROUP BY 1
    ORDER BY 1
"""

COUNT_COLUMNS = [
    "total_users", "active_users", "assigned_tasks", "enabled_tasks",
    "total_submissions", "recent_submissions",
    "total_instances_used", "recent_instances_used",
]
AVERAGE_COLUMNS = ["avg_submission_lag_seconds", "avg_processing_time_seconds"]

DEFAULT_WINDOW = AggregationWindow(unit="day", range_days=0)


def parse_period_days(raw: Optional[str]) -> int:
    """Turn the ``days`` query value into an int, defaulting when absent."""
    if raw is None or str(raw).strip() == "":
        return config.STATUS_DEFAULT_DAYS
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValidationError("Days parameter must be an integer")


def validate_period_days(period_days: Any) -> int:
    if isinstance(period_days, bool) or not isinstance(period_days, int):
        raise ValidationError("Days parameter must be an integer")
    if not config.MIN_PERIOD_DAYS <= period_days <= config.MAX_PERIOD_DAYS:
        raise ValidationError(
            f"Days parameter must be between {config.MIN_PERIOD_DAYS} and {config.MAX_PERIOD_DAYS}"
        )
    return period_days


def build_status_report(store, caller: Caller, period_days: int, now: Optional[datetime] = None) -> StatusReport:
    """
    Build the usage report for every study *caller* can view.

    A failing summary query raises QueryError. A failing per-study series
    falls back to day buckets with no submissions for that study only.
    """
    period_days = validate_period_days(period_days)
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=period_days)

    if not accessible_studies(caller):
        logger.info("Caller %s has no accessible studies; returning empty status.", caller.id)
        return StatusReport(overall=Metrics(), by_study=[], period_days=period_days, cutoff_date=cutoff)

    grants = effective_grants(caller)
    predicate = compile_predicate(grants, USER_CONTEXT, first_index=2)
    params = {"p1": cutoff}
    params.update(predicate.bind_params())

    rows = store.execute(SUMMARY_SQL.format(access_clause=predicate.clause), params)
    logger.info("Status summary covers %d studies for caller %s.", len(rows), caller.id)

    study_ids = [str(row["study_id"]) for row in rows]
    series = collect_study_series(store, grants, study_ids)

    by_study = []
    for row, study_id in zip(rows, study_ids):
        window, buckets = series[study_id]
        by_study.append(StudyStatus(
            study_id=study_id,
            metrics=metrics_from_row(row),
            window=window,
            submissions=buckets,
        ))

    return StatusReport(
        overall=overall_metrics(rows),
        by_study=by_study,
        period_days=period_days,
        cutoff_date=cutoff,
        time_aggregation=dominant_unit([s.window.unit for s in by_study]),
    )


def collect_study_series(
    store,
    grants: Sequence[Grant],
    study_ids: Sequence[str],
    max_workers: Optional[int] = None,
) -> Dict[str, Tuple[AggregationWindow, List[SubmissionBucket]]]:
    """
    Run the per-study date-range and bucket queries with bounded concurrency.

    All studies share one deadline counted from submission. Studies that fail
    or are still running at the deadline get the default window, and the pool
    is shut down without waiting for stragglers.
    """
    if not study_ids:
        return {}
    workers = max(1, min(max_workers or config.STATUS_MAX_WORKERS, len(study_ids)))
    per_study = 2 * getattr(store, "timeout_seconds", config.QUERY_TIMEOUT_SECONDS)
    rounds = -(-len(study_ids) // workers)
    deadline = per_study * rounds

    results = {}
    pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="status")
    try:
        futures = [
            (study_id, pool.submit(study_series, store, grants, study_id))
            for study_id in study_ids
        ]
        wait([future for _, future in futures], timeout=deadline)
        for study_id, future in futures:
            if not future.done():
                logger.warning("Submission series for study %s timed out after %.1fs.", study_id, deadline)
                results[study_id] = (DEFAULT_WINDOW, [])
                continue
            error = future.exception()
            if error is None:
                results[study_id] = future.result()
            elif isinstance(error, StudyAccessError):
                logger.warning("Submission series for study %s unavailable: %s", study_id, error)
                results[study_id] = (DEFAULT_WINDOW, [])
            else:
                raise error
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return results


def study_series(store, grants: Sequence[Grant], study_id: str) -> Tuple[AggregationWindow, List[SubmissionBucket]]:
    """Date range, bucket choice and bucketed counts for one study."""
    study_grants = [g for g in grants if g.study_id == study_id]
    predicate = compile_predicate(study_grants, USER_CONTEXT)
    params = predicate.bind_params()

    range_rows = store.execute(DATE_RANGE_SQL.format(access_clause=predicate.clause), params)
    first = range_rows[0] if range_rows else {}
    window = plan_window(first.get("earliest_date"), first.get("latest_date"))
    if window.earliest is None:
        return window, []

    bucket_params = dict(params, unit=window.unit)
    bucket_rows = store.execute(BUCKETS_SQL.format(access_clause=predicate.clause), bucket_params)
    buckets = [
        SubmissionBucket(date=row["bucket_date"], count=int(row["submission_count"]), aggregation=window.unit)
        for row in bucket_rows
    ]
    return window, buckets


def metrics_from_row(row: Dict[str, Any]) -> Metrics:
    return Metrics(
        users_total=_int(row.get("total_users")),
        users_active=_int(row.get("active_users")),
        tasks_assigned=_int(row.get("assigned_tasks")),
        tasks_enabled=_int(row.get("enabled_tasks")),
        total_submissions=_int(row.get("total_submissions")),
        recent_submissions=_int(row.get("recent_submissions")),
        avg_submission_lag_seconds=_seconds(row.get("avg_submission_lag_seconds")),
        avg_processing_time_seconds=_seconds(row.get("avg_processing_time_seconds")),
        instances_total=_int(row.get("total_instances_used")),
        instances_recent=_int(row.get("recent_instances_used")),
        earliest_submission=row.get("earliest_submission"),
        latest_submission=row.get("latest_submission"),
        latest_processing=row.get("latest_processing"),
    )


def overall_metrics(rows: Sequence[Dict[str, Any]]) -> Metrics:
    """Sum the per-study counts and average the per-study averages (nulls skipped)."""
    if not rows:
        return Metrics()
    df = pd.DataFrame(list(rows))
    for col in COUNT_COLUMNS + AVERAGE_COLUMNS:
        if col not in df.columns:
            df[col] = None
        df[col] = pd.to_numeric(df[col], errors="coerce")
    sums = df[COUNT_COLUMNS].fillna(0).sum()
    means = df[AVERAGE_COLUMNS].mean(skipna=True)
    return Metrics(
        users_total=int(sums["total_users"]),
        users_active=int(sums["active_users"]),
        tasks_assigned=int(sums["assigned_tasks"]),
        tasks_enabled=int(sums["enabled_tasks"]),
        total_submissions=int(sums["total_submissions"]),
        recent_submissions=int(sums["recent_submissions"]),
        avg_submission_lag_seconds=_seconds(means["avg_submission_lag_seconds"]),
        avg_processing_time_seconds=_seconds(means["avg_processing_time_seconds"]),
        instances_total=int(sums["total_instances_used"]),
        instances_recent=int(sums["recent_instances_used"]),
    )


def dominant_unit(units: Sequence[str]) -> str:
    """Most frequent bucket unit; ties go to the unit seen first."""
    if not units:
        return "day"
    return Counter(units).most_common(1)[0][0]


def _int(value) -> int:
    if value is None or pd.isna(value):
        return 0
    return int(value)


def _seconds(value) -> float:
    if value is None or pd.isna(value):
        return 0.0
    return round(float(value), 2)
