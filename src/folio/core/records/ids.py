"""
Record ID generation.

Record ids follow a quarter-scoped format: ``Q{quarter}{yy}-{seq:03d}``,
e.g. ``Q425-001`` for the first record planned in Q4 2025. Sequences are
allocated per quarter prefix from the ids already present in the collection,
so an id is never reused within one collection.

Example:
    >>> generate_record_id("Q4 2025", ["Q425-001", "Q425-007"])
    'Q425-008'
    >>> parse_quarter("Q1-26")
    (1, 2026)
"""

import re
from collections.abc import Iterable
from datetime import date
from uuid import uuid4

QUARTER_ID_RE = re.compile(r"^Q([1-4])(\d{2})-(\d{3,})$")

_QUARTER_PATTERNS = (
    re.compile(r"Q(\d)\s+(\d{4})", re.IGNORECASE),  # Q4 2025
    re.compile(r"Q(\d)[-/](\d{4})", re.IGNORECASE),  # Q4-2025, Q4/2025
    re.compile(r"(\d)Q\s+(\d{4})", re.IGNORECASE),  # 4Q 2025
    re.compile(r"Q(\d)\s+(\d{2})\b", re.IGNORECASE),  # Q4 25
    re.compile(r"Q(\d)[-/](\d{2})\b", re.IGNORECASE),  # Q4-25
)


def current_quarter(today: date | None = None) -> tuple[int, int]:
    """Return ``(quarter, year)`` for ``today``."""
    today = today or date.today()
    return (today.month - 1) // 3 + 1, today.year


def parse_quarter(quarter: str | None, today: date | None = None) -> tuple[int, int]:
    """
    Parse a quarter string into ``(quarter, year)``.

    Accepts "Q4 2025", "Q4-2025", "Q4/2025", "4Q 2025", "Q4 25" and
    "Q4-25". Anything unparseable falls back to the current quarter.

    Args:
        quarter: Quarter string
        today: Reference date for the fallback (defaults to today)

    Returns:
        Tuple of quarter number (1-4) and four-digit year
    """
    if not quarter:
        return current_quarter(today)

    text = quarter.strip()
    for pattern in _QUARTER_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        q, year = int(match.group(1)), int(match.group(2))
        if year < 100:
            year += 2000
        if 1 <= q <= 4 and 2000 <= year <= 2099:
            return q, year

    # Bare quarter number: assume current year
    bare = re.search(r"Q?(\d)", text, re.IGNORECASE)
    if bare and 1 <= int(bare.group(1)) <= 4:
        return int(bare.group(1)), current_quarter(today)[1]

    return current_quarter(today)


def is_quarter_style_id(record_id: str) -> bool:
    """Check if an id matches the ``Q425-001`` format."""
    return bool(record_id) and QUARTER_ID_RE.match(record_id) is not None


def quarter_prefix(quarter: str | None, today: date | None = None) -> str:
    """Build the id prefix for a quarter, e.g. ``Q425``."""
    q, year = parse_quarter(quarter, today)
    return f"Q{q}{year % 100:02d}"


def next_sequence(prefix: str, existing_ids: Iterable[str]) -> int:
    """Return the next free sequence number for ``prefix``."""
    highest = 0
    for record_id in existing_ids:
        match = QUARTER_ID_RE.match(record_id or "")
        if match and f"Q{match.group(1)}{match.group(2)}" == prefix:
            highest = max(highest, int(match.group(3)))
    return highest + 1


def generate_record_id(
    quarter: str | None,
    existing_ids: Iterable[str],
    today: date | None = None,
) -> str:
    """
    Generate a fresh record id unique within ``existing_ids``.

    Args:
        quarter: Planning quarter of the new record; when empty, a uuid
            based id is returned instead
        existing_ids: Ids already present in the collection
        today: Reference date for quarter fallback

    Returns:
        New record id
    """
    if not quarter:
        return uuid4().hex
    prefix = quarter_prefix(quarter, today)
    return f"{prefix}-{next_sequence(prefix, existing_ids):03d}"


__all__ = [
    "current_quarter",
    "generate_record_id",
    "is_quarter_style_id",
    "next_sequence",
    "parse_quarter",
    "quarter_prefix",
]
