"""
Condition evaluator: decides whether a workflow applies to a record.

``evaluate`` is a pure function of the condition tree, the record and the
evaluation time. It never raises: an unknown or malformed leaf is logged
and treated as False so a broken workflow cannot abort evaluation of the
others.
"""

import logging
from datetime import datetime

from pydantic import BaseModel

from folio.core.errors import ConditionEvaluationError
from folio.core.records.models import Record, Status, as_utc

from .models import (
    AndCondition,
    ClassificationEquals,
    DueDatePassed,
    DueDateWithinDays,
    EffortPercentageAtLeast,
    EffortVarianceExceeds,
    LastUpdatedOlderThan,
    NumericFieldGreaterThan,
    OrCondition,
    OwnerEquals,
    PriorityEquals,
    RiskActionLogEmpty,
    StatusEquals,
    StatusNotEquals,
    UnknownCondition,
)

logger = logging.getLogger(__name__)


def evaluate(node: BaseModel | None, record: Record, now: datetime) -> bool:
    """
    Evaluate a condition tree against a record.

    Args:
        node: Root of the condition tree; None means "always eligible"
        record: Record to test
        now: Evaluation time (tz-aware; naive values are taken as UTC)

    Returns:
        True if the record satisfies the tree
    """
    if node is None:
        return True
    return _evaluate(node, record, as_utc(now) or now)


def _evaluate(node: BaseModel, record: Record, now: datetime) -> bool:
    if isinstance(node, AndCondition):
        # all() stops at the first False child
        return all(_evaluate(child, record, now) for child in node.children)
    if isinstance(node, OrCondition):
        return any(_evaluate(child, record, now) for child in node.children)

    # A broken leaf inside a composite only poisons that leaf
    try:
        return _evaluate_leaf(node, record, now)
    except ConditionEvaluationError as e:
        logger.warning("Condition failed closed for record %s: %s", record.id, e)
        return False


def _evaluate_leaf(node: BaseModel, record: Record, now: datetime) -> bool:
    today = now.date()

    if isinstance(node, DueDatePassed):
        if record.eta is None:
            return False
        return record.eta < today and record.status not in (Status.DONE, Status.AT_RISK)

    if isinstance(node, DueDateWithinDays):
        if record.eta is None:
            return False
        return 0 <= (record.eta - today).days <= node.days

    if isinstance(node, StatusEquals):
        return record.status == node.value

    if isinstance(node, StatusNotEquals):
        return record.status != node.value

    if isinstance(node, NumericFieldGreaterThan):
        value = record.get_field(node.field)
        return float(value or 0) > node.threshold

    if isinstance(node, LastUpdatedOlderThan):
        # Calendar days in the evaluation time zone
        last_updated = (as_utc(record.last_updated) or now).astimezone(now.tzinfo)
        return (today - last_updated.date()).days >= node.days

    if isinstance(node, PriorityEquals):
        return record.priority == node.value

    if isinstance(node, RiskActionLogEmpty):
        return not record.risk_action_log.strip()

    if isinstance(node, OwnerEquals):
        return record.owner_id == node.value

    if isinstance(node, ClassificationEquals):
        return record.classification == node.value

    if isinstance(node, EffortPercentageAtLeast):
        if record.estimated_effort <= 0:
            return False
        return record.actual_effort / record.estimated_effort * 100 >= node.percentage

    if isinstance(node, EffortVarianceExceeds):
        return abs(record.estimated_effort - record.actual_effort) > node.value

    if isinstance(node, UnknownCondition):
        raise ConditionEvaluationError(node.original_kind or "unknown", node.reason or "unknown kind")

    raise ConditionEvaluationError(type(node).__name__, "not a condition node")


__all__ = ["evaluate"]
