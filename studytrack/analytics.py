"""
Metric computations for the achievement calendar and dashboards.
"""

from __future__ import annotations

import calendar
from typing import Mapping

import pandas as pd

from studytrack.schemas import AchievementDayLog, AchievementType

ACHIEVEMENT_COLUMNS = ["date", "type", "timestamp", "id"]


def achievements_frame(month_logs: Mapping[str, AchievementDayLog]) -> pd.DataFrame:
    """
    Flatten day logs into one row per achievement entry.
    """
    rows = [
        {
            "date": day,
            "type": entry.type.value,
            "timestamp": entry.timestamp,
            "id": entry.id,
        }
        for day, log in month_logs.items()
        for entry in log.items
    ]
    if not rows:
        return pd.DataFrame(columns=ACHIEVEMENT_COLUMNS)

    df = pd.DataFrame(rows, columns=ACHIEVEMENT_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df.sort_values("timestamp").reset_index(drop=True)


def build_month_index(year: int, month: int) -> pd.Index:
    """
    Dense YYYY-MM-DD index covering every day of the month.
    """
    days = calendar.monthrange(year, month)[1]
    return pd.Index(
        [f"{year:04d}-{month:02d}-{day:02d}" for day in range(1, days + 1)],
        name="date"
    )


def month_summary(
    month_logs: Mapping[str, AchievementDayLog],
    year: int,
    month: int
) -> pd.DataFrame:
    """
    Per-day achievement counts for a month.

    Returns:
        DataFrame indexed by date with integer study, task and total
        columns; days without achievements are zero
    """
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")

    index = build_month_index(year, month)
    df = achievements_frame(month_logs)

    counts = pd.DataFrame(0, index=index, columns=[t.value for t in AchievementType], dtype="int64")
    if not df.empty:
        grouped = df.groupby(["date", "type"]).size().unstack(fill_value=0)
        grouped = grouped.reindex(index=index, columns=counts.columns, fill_value=0)
        counts = grouped.fillna(0).astype("int64")

    counts["total"] = counts.sum(axis=1).astype("int64")
    return counts
