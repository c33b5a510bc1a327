"""Data-quality checks over the record collection."""

from .effort import (
    DEFAULT_THRESHOLD_PERCENT,
    EffortValidation,
    last_thursday_eod,
    quarter_start,
    validate_all_owners,
    validate_weekly_effort,
)

__all__ = [
    "DEFAULT_THRESHOLD_PERCENT",
    "EffortValidation",
    "last_thursday_eod",
    "quarter_start",
    "validate_all_owners",
    "validate_weekly_effort",
]
