"""
Portfolio Aggregation Engine

Pure, I/O-free functions over entries that the access layer has already
filtered to what the caller may see.
"""

from finance_tracker.analytics.aggregation import (
    HIGH_MEDIUM_RISK_LABEL,
    LOW_RISK_LABEL,
    aggregate_combined_portfolio,
    calculate_risk_distribution,
    transform_to_chart_data,
)
from finance_tracker.analytics.periods import (
    PERIOD_OFFSETS,
    entry_date_of,
    filter_combined_portfolio_by_period,
    filter_entries_by_period,
    get_start_date_for_period,
    parse_time_period,
)

__all__ = [
    # Aggregation
    "HIGH_MEDIUM_RISK_LABEL",
    "LOW_RISK_LABEL",
    "aggregate_combined_portfolio",
    "calculate_risk_distribution",
    "transform_to_chart_data",
    # Periods
    "PERIOD_OFFSETS",
    "entry_date_of",
    "filter_combined_portfolio_by_period",
    "filter_entries_by_period",
    "get_start_date_for_period",
    "parse_time_period",
]
