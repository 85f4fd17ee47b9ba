"""
Choosing a time-bucket granularity from a study's submission date range.
"""

import pandas as pd

from studyaccess import config
from studyaccess.errors import ValidationError
from studyaccess.models import AggregationWindow

BUCKET_UNITS = ("day", "week", "month")


def plan_window(earliest, latest) -> AggregationWindow:
    """
    Pick day/week/month buckets for the span between two timestamps.

    ``range_days`` counts whole days elapsed. Spans longer than
    BUCKET_MONTH_AFTER_DAYS use months, longer than BUCKET_WEEK_AFTER_DAYS
    weeks, anything else days.
    """
    if pd.isna(earliest) or pd.isna(latest):
        return AggregationWindow(unit="day", range_days=0)

    start = pd.Timestamp(earliest)
    end = pd.Timestamp(latest)
    # Compare in UTC when only one side carries a timezone.
    if start.tzinfo is not None and end.tzinfo is None:
        start = start.tz_convert(None)
    elif end.tzinfo is not None and start.tzinfo is None:
        end = end.tz_convert(None)
    if end < start:
        raise ValidationError(f"Latest submission {end} precedes earliest {start}.")

    range_days = int((end - start).days)
    return AggregationWindow(
        unit=bucket_unit(range_days),
        range_days=range_days,
        earliest=start.to_pydatetime(),
        latest=end.to_pydatetime(),
    )


def bucket_unit(range_days: float) -> str:
    if range_days > config.BUCKET_MONTH_AFTER_DAYS:
        return "month"
    if range_days > config.BUCKET_WEEK_AFTER_DAYS:
        return "week"
    return "day"
