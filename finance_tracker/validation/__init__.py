"""Entry validation package."""

from finance_tracker.validation.validator import EntryValidator, parse_entry_date

__all__ = ["EntryValidator", "parse_entry_date"]
