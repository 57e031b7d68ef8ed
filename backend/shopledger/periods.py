"""
Report periods.

Shared by the server report and the device's offline snapshot so both agree on
where a period starts. All times are UTC-naive.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from .time_utils import utcnow

PERIODS = ("daily", "weekly", "monthly", "yearly")
DEFAULT_PERIOD = "monthly"


def parse_period(raw: str | None) -> str:
    """Missing period falls back to monthly; an unknown one raises ValueError."""
    period = str(raw or "").strip().lower()
    if not period:
        return DEFAULT_PERIOD
    if period not in PERIODS:
        raise ValueError(f"period must be one of {', '.join(PERIODS)}")
    return period


def period_start(period: str, now: datetime | None = None) -> datetime:
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "daily":
        return midnight
    if period == "weekly":
        # rolling window, not calendar week
        return now - timedelta(days=7)
    if period == "monthly":
        return midnight.replace(day=1)
    if period == "yearly":
        return midnight.replace(month=1, day=1)
    raise ValueError(f"unknown period {period!r}")
