"""
Portfolio Aggregation

Pure functions that turn already-authorized entries into the views the
analytics pages render: a combined snapshot, a risk split and a
date-merged time series.

CRITICAL: Nothing here raises on a malformed entry. An entry with an
unparsable date, or with totals that are not finite numbers, is skipped.
Only invalid arguments (an unknown period) are errors, and those are
raised by the period helpers before aggregation runs.

Sums are float accumulations; cross-checks use an absolute tolerance
(0.01 by default, configurable through AppSettings).
"""

import math
from typing import Any, Mapping, Optional, Sequence

import pandas as pd
from pydantic import BaseModel

from finance_tracker.analytics.periods import entry_date_of
from finance_tracker.models.finance import (
    ASSET_FIELDS,
    HIGH_MEDIUM_RISK_FIELDS,
    LOW_RISK_FIELDS,
    ChartDataPoint,
    CombinedPortfolio,
    RiskSlice,
)


HIGH_MEDIUM_RISK_LABEL = "High/Medium Risk"
LOW_RISK_LABEL = "Low Risk"

DEFAULT_TOLERANCE = 0.01
DEFAULT_MIN_TOTAL_ASSETS = 0.01

CHART_COLUMNS = ("total_assets", "high_medium_risk", "low_risk", *ASSET_FIELDS)


def _as_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _group_values(group: Any) -> dict:
    if isinstance(group, BaseModel):
        return group.model_dump()
    if isinstance(group, Mapping):
        return dict(group)
    return {}


def _to_row(entry: Any) -> Optional[dict]:
    """
    Flatten an entry into a row of floats keyed like ChartDataPoint.

    Returns None for entries that must be skipped.
    """
    entry_date = entry_date_of(entry)
    if entry_date is None:
        return None

    row = {
        "date": entry_date,
        "total_assets": _as_float(getattr(entry, "total_assets", None)),
        "high_medium_risk": _as_float(getattr(entry, "total_high_medium_risk", None)),
        "low_risk": _as_float(getattr(entry, "total_low_risk", None)),
    }
    for attr, names in (
        ("high_medium_risk", HIGH_MEDIUM_RISK_FIELDS),
        ("low_risk", LOW_RISK_FIELDS),
    ):
        values = _group_values(getattr(entry, attr, None))
        for name in names:
            row[name] = _as_float(values.get(name, 0))

    if any(row[column] is None for column in CHART_COLUMNS):
        return None
    return row


def _valid_rows(entries: Sequence[Any]) -> list[dict]:
    rows = []
    for entry in entries:
        row = _to_row(entry)
        if row is not None:
            rows.append(row)
    return rows


def _latest(rows: list[dict]) -> Optional[dict]:
    """Most recent row by date; the first one wins a tie."""
    if not rows:
        return None
    return max(rows, key=lambda row: row["date"])


def _risk_slices(
    total_assets: float,
    high_medium_risk: float,
    low_risk: float,
    tolerance: float,
    min_total_assets: float,
) -> list[RiskSlice]:
    if total_assets < min_total_assets:
        return []
    # Guard against totals that do not add up
    if abs(total_assets - (high_medium_risk + low_risk)) >= tolerance:
        return []
    return [
        RiskSlice(
            name=HIGH_MEDIUM_RISK_LABEL,
            value=high_medium_risk,
            percentage=high_medium_risk / total_assets * 100,
        ),
        RiskSlice(
            name=LOW_RISK_LABEL,
            value=low_risk,
            percentage=low_risk / total_assets * 100,
        ),
    ]


def _merge_by_date(rows: list[dict]) -> list[ChartDataPoint]:
    """Sum every chart column per calendar date, ascending."""
    if not rows:
        return []
    frame = pd.DataFrame(rows, columns=["date", *CHART_COLUMNS])
    merged = frame.groupby("date", sort=True)[list(CHART_COLUMNS)].sum()
    return [
        ChartDataPoint(date=point_date, **values.to_dict())
        for point_date, values in merged.iterrows()
    ]


def aggregate_combined_portfolio(
    profile_entries: Mapping[Any, Sequence[Any]],
    tolerance: float = DEFAULT_TOLERANCE,
    min_total_assets: float = DEFAULT_MIN_TOTAL_ASSETS,
) -> CombinedPortfolio:
    """
    Combine several profiles' entries into one view.

    - total_assets: sum of each profile's latest valid entry
    - risk_distribution: split of that sum, empty when the sum is below
      `min_total_assets` or its parts disagree by `tolerance` or more
    - chart_data: ALL valid entries merged by calendar date, ascending

    Args:
        profile_entries: profile id -> that profile's entries (any order)
        tolerance: Absolute tolerance of the consistency guard
        min_total_assets: Smallest total that gets a risk distribution
    """
    all_rows = []
    latest_rows = []
    for entries in profile_entries.values():
        rows = _valid_rows(entries)
        all_rows.extend(rows)
        latest = _latest(rows)
        if latest is not None:
            latest_rows.append(latest)

    total_assets = sum(row["total_assets"] for row in latest_rows)
    total_high_medium = sum(row["high_medium_risk"] for row in latest_rows)
    total_low = sum(row["low_risk"] for row in latest_rows)

    return CombinedPortfolio(
        chart_data=_merge_by_date(all_rows),
        risk_distribution=_risk_slices(
            total_assets, total_high_medium, total_low, tolerance, min_total_assets
        ),
        total_assets=float(total_assets),
    )


def calculate_risk_distribution(
    entries: Sequence[Any],
    tolerance: float = DEFAULT_TOLERANCE,
    min_total_assets: float = DEFAULT_MIN_TOTAL_ASSETS,
) -> list[RiskSlice]:
    """Risk split of a single profile's most recent valid entry."""
    latest = _latest(_valid_rows(entries))
    if latest is None:
        return []
    return _risk_slices(
        latest["total_assets"],
        latest["high_medium_risk"],
        latest["low_risk"],
        tolerance,
        min_total_assets,
    )


def transform_to_chart_data(entries: Sequence[Any]) -> list[ChartDataPoint]:
    """One chart point per valid entry of a single profile, oldest first."""
    rows = sorted(_valid_rows(entries), key=lambda row: row["date"])
    return [ChartDataPoint(**row) for row in rows]
