"""
Weekly effort validation.

Compares an owner's effort logged this week against their average weekly
effort since the start of the quarter. Owners whose current week deviates
from the average by at least the threshold are flagged so their numbers
can be double-checked before the weekly review.
"""

import math
from datetime import datetime, time, timedelta, timezone

from pydantic import BaseModel, Field

from folio.core.records.ids import parse_quarter
from folio.core.records.models import Record, as_utc, utcnow

DEFAULT_THRESHOLD_PERCENT = 15.0


class EffortValidation(BaseModel):
    """Outcome of a weekly effort check for one owner."""

    owner_id: str
    quarter: str = ""
    flagged: bool = False
    deviation_percent: float = Field(default=0.0, ge=0.0)
    average_weekly_effort: float = 0.0
    current_week_effort: float = 0.0
    weeks_elapsed: int = 1
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT


def quarter_start(quarter: str, now: datetime | None = None) -> datetime:
    """First instant of a quarter; unparseable quarters mean the current one."""
    now = as_utc(now) or utcnow()
    q, year = parse_quarter(quarter, now.date())
    return datetime(year, (q - 1) * 3 + 1, 1, tzinfo=timezone.utc)


def last_thursday_eod(now: datetime) -> datetime:
    """End of the most recent Thursday (today, if today is Thursday)."""
    days_back = (now.weekday() + 4) % 7
    thursday = (now - timedelta(days=days_back)).date()
    return datetime.combine(thursday, time(23, 59, 59, 999000), tzinfo=now.tzinfo)


def _updated_at(record: Record) -> datetime:
    if record.last_weekly_update is not None:
        return datetime.combine(record.last_weekly_update, time.min, tzinfo=timezone.utc)
    return as_utc(record.last_updated) or record.last_updated


def validate_weekly_effort(
    records: list[Record],
    owner_id: str,
    now: datetime | None = None,
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> EffortValidation:
    """
    Check one owner's current-week effort against their quarterly average.

    The quarter is taken from the owner's first record. Current-week effort
    is the actual effort of records updated since last Thursday EOD; when
    that is zero, records updated in the last 7 days are used instead.

    Args:
        records: All records (filtered to the owner, deleted ones skipped)
        owner_id: Owner to validate
        now: Evaluation time
        threshold_percent: Deviation at or above which the owner is flagged

    Returns:
        Validation result (never flagged when the owner has no records)
    """
    now = as_utc(now) or utcnow()
    owned = [r for r in records if r.owner_id == owner_id and not r.is_deleted]
    if not owned:
        return EffortValidation(owner_id=owner_id, threshold_percent=threshold_percent)

    quarter = owned[0].quarter
    days_elapsed = (now - quarter_start(quarter, now)).days
    weeks_elapsed = max(1, math.ceil(days_elapsed / 7))

    total_effort = sum(r.actual_effort for r in owned)
    average = total_effort / weeks_elapsed

    since_thursday = last_thursday_eod(now)
    current = sum(r.actual_effort for r in owned if _updated_at(r) >= since_thursday)
    if current == 0:
        week_ago = now - timedelta(days=7)
        current = sum(r.actual_effort for r in owned if _updated_at(r) >= week_ago)

    deviation = abs(current - average) / average * 100 if average > 0 else 0.0

    return EffortValidation(
        owner_id=owner_id,
        quarter=quarter,
        flagged=deviation >= threshold_percent,
        deviation_percent=deviation,
        average_weekly_effort=average,
        current_week_effort=current,
        weeks_elapsed=weeks_elapsed,
        threshold_percent=threshold_percent,
    )


def validate_all_owners(
    records: list[Record],
    owner_ids: list[str],
    now: datetime | None = None,
    threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
) -> list[EffortValidation]:
    """Run ``validate_weekly_effort`` for each owner, in the given order."""
    return [validate_weekly_effort(records, o, now, threshold_percent) for o in owner_ids]
