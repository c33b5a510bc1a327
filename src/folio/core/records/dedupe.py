"""
Deduplication guard for record collections.

The in-memory collection must never hold two records with the same id.
``dedupe`` is applied at load time, before every local or remote create,
and by the store's self-healing pass whenever duplicates are observed.
"""

import logging
from collections.abc import Iterable, Sequence
from typing import TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def find_duplicate_ids(records: Iterable[BaseModel]) -> list[str]:
    """
    Return ids that occur more than once, in order of first repetition.

    Args:
        records: Records (anything with an ``id`` attribute)

    Returns:
        Duplicate ids, each listed once
    """
    seen: set[str] = set()
    duplicates: list[str] = []
    for record in records:
        record_id = record.id  # type: ignore[attr-defined]
        if record_id in seen:
            if record_id not in duplicates:
                duplicates.append(record_id)
        else:
            seen.add(record_id)
    return duplicates


def dedupe(records: Sequence[T]) -> list[T]:
    """
    Remove records with repeated ids, keeping the first occurrence.

    Runs in O(n) using a seen-set and preserves the order of the surviving
    records. Idempotent: ``dedupe(dedupe(x)) == dedupe(x)``.

    Args:
        records: Records to deduplicate

    Returns:
        New list with at most one record per id

    Example:
        >>> [r.id for r in dedupe([Record(id="a"), Record(id="b"), Record(id="a")])]
        ['a', 'b']
    """
    seen: set[str] = set()
    result: list[T] = []
    dropped: list[str] = []
    for record in records:
        record_id = record.id  # type: ignore[attr-defined]
        if record_id in seen:
            dropped.append(record_id)
            continue
        seen.add(record_id)
        result.append(record)

    if dropped:
        logger.warning(
            "Dropped %d duplicate record(s): %s", len(dropped), ", ".join(sorted(set(dropped)))
        )
    return result


def has_duplicates(records: Sequence[BaseModel]) -> bool:
    """Check whether any id occurs more than once."""
    return len({r.id for r in records}) != len(records)  # type: ignore[attr-defined]


__all__ = ["dedupe", "find_duplicate_ids", "has_duplicates"]
