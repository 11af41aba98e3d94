"""
Time Period Filtering

Look-back windows for the analytics views. Start dates use calendar
arithmetic (pandas DateOffset), so "3months" before May 31st is
February 28th/29th, not "90 days ago".

Entry dates are read leniently: an entry whose date cannot be parsed is
dropped from every filtered result instead of raising.
"""

from datetime import date, datetime
from typing import Any, Mapping, Optional, Sequence, TypeVar, Union

import pandas as pd

from finance_tracker.errors import InvalidTimePeriod
from finance_tracker.models.finance import TimePeriod


K = TypeVar("K")

PERIOD_OFFSETS: dict[TimePeriod, pd.DateOffset] = {
    TimePeriod.DAYS_30: pd.DateOffset(days=30),
    TimePeriod.MONTHS_3: pd.DateOffset(months=3),
    TimePeriod.YEAR_1: pd.DateOffset(years=1),
    TimePeriod.YEARS_3: pd.DateOffset(years=3),
    TimePeriod.YEARS_5: pd.DateOffset(years=5),
    TimePeriod.YEARS_10: pd.DateOffset(years=10),
}


def parse_time_period(value: Any) -> TimePeriod:
    """
    Resolve a period literal.

    Raises:
        InvalidTimePeriod: If value is not one of the six supported literals
    """
    if isinstance(value, TimePeriod):
        return value
    try:
        return TimePeriod(value)
    except (ValueError, TypeError):
        raise InvalidTimePeriod(value, [p.value for p in TimePeriod])


def get_start_date_for_period(
    period: Union[TimePeriod, str],
    now: Optional[Union[date, datetime]] = None,
) -> date:
    """First calendar day included in the period ending at `now` (default: today)."""
    offset = PERIOD_OFFSETS[parse_time_period(period)]
    current = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    return (current - offset).date()


def entry_date_of(entry: Any) -> Optional[date]:
    """Calendar date of an entry, or None if it has no valid date."""
    value = getattr(entry, "entry_date", None)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def filter_entries_by_period(
    entries: Sequence[Any],
    period: Union[TimePeriod, str],
    now: Optional[Union[date, datetime]] = None,
) -> list:
    """
    Keep entries dated on or after the period start.

    Relative order is preserved and the input is never mutated.
    """
    start = get_start_date_for_period(period, now)
    kept = []
    for entry in entries:
        entry_date = entry_date_of(entry)
        if entry_date is not None and entry_date >= start:
            kept.append(entry)
    return kept


def filter_combined_portfolio_by_period(
    profile_entries: Mapping[K, Sequence[Any]],
    period: Union[TimePeriod, str],
    now: Optional[Union[date, datetime]] = None,
) -> dict[K, list]:
    """
    Apply the period filter per profile.

    Profiles with nothing left in the period are dropped from the result.
    """
    period = parse_time_period(period)
    filtered = {}
    for profile_id, entries in profile_entries.items():
        kept = filter_entries_by_period(entries, period, now)
        if kept:
            filtered[profile_id] = kept
    return filtered
