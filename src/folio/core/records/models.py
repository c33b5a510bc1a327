"""
Record data models for folio.

Defines the Pydantic models for tracked work items (records), their child
work items (sub-records), and the immutable change entries that make up a
record's audit history.

Invariants carried by these models:
- ``Record.id`` is immutable once assigned (frozen field).
- ``Record.history`` is append-only; use ``Record.append_history``.
- ``Record.last_updated`` is never earlier than any history entry timestamp.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so all comparisons are tz-aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Status(str, Enum):
    """Lifecycle status of a record or sub-record."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    AT_RISK = "At Risk"
    DONE = "Done"
    OBSOLETE = "Obsolete"
    DELETED = "Deleted"

    @property
    def is_terminal(self) -> bool:
        """Check if no further work is expected in this status."""
        return self in (Status.DONE, Status.OBSOLETE, Status.DELETED)


class Priority(str, Enum):
    """Priority levels (P0 is highest)."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"


class Classification(str, Enum):
    """Top-level category (asset class) used for grouping and reporting."""

    PL = "PL"
    AUTO = "Auto"
    POS = "POS"
    ADVISORY = "Advisory"


# Value a record receives when nobody picked a classification explicitly
DEFAULT_CLASSIFICATION = Classification.PL


class WorkType(str, Enum):
    """Whether a record was part of the plan or came in unplanned."""

    PLANNED = "Planned Work"
    UNPLANNED = "Unplanned Work"


class RecordField(str, Enum):
    """Editable record fields addressable by edits, workflows and the audit log."""

    TITLE = "title"
    STATUS = "status"
    PRIORITY = "priority"
    ESTIMATED_EFFORT = "estimated_effort"
    ACTUAL_EFFORT = "actual_effort"
    ETA = "eta"
    OWNER_ID = "owner_id"
    CLASSIFICATION = "classification"
    RISK_ACTION_LOG = "risk_action_log"
    QUARTER = "quarter"
    WORK_TYPE = "work_type"

    @property
    def label(self) -> str:
        """Human-readable label used in notifications and the activity log."""
        return _FIELD_LABELS[self]


_FIELD_LABELS: dict[RecordField, str] = {
    RecordField.TITLE: "Title",
    RecordField.STATUS: "Status",
    RecordField.PRIORITY: "Priority",
    RecordField.ESTIMATED_EFFORT: "Effort",
    RecordField.ACTUAL_EFFORT: "Actual Effort",
    RecordField.ETA: "ETA",
    RecordField.OWNER_ID: "Owner",
    RecordField.CLASSIFICATION: "Asset Class",
    RecordField.RISK_ACTION_LOG: "Risk Action Log",
    RecordField.QUARTER: "Quarter",
    RecordField.WORK_TYPE: "Work Type",
}

# Fields whose transitions are always written to a record's history
TRACKED_FIELDS: tuple[RecordField, ...] = (
    RecordField.STATUS,
    RecordField.PRIORITY,
    RecordField.ESTIMATED_EFFORT,
    RecordField.ETA,
    RecordField.RISK_ACTION_LOG,
)

EFFORT_FIELDS: frozenset[RecordField] = frozenset(
    {RecordField.ESTIMATED_EFFORT, RecordField.ACTUAL_EFFORT}
)


class User(BaseModel):
    """A person who can own records and receive notifications."""

    id: str = Field(..., description="User identifier")
    name: str = Field(..., description="Display name")
    email: str = Field(default="", description="Email address")
    role: str = Field(default="Team Lead", description="Role name")
    team: str | None = Field(default=None, description="Team/department assignment")


class Comment(BaseModel):
    """A comment posted on a record."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    text: str
    author_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    mentioned_user_ids: list[str] = Field(default_factory=list)


class SubRecord(BaseModel):
    """A child work item owned by a record."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = Field(default="")
    status: Status = Field(default=Status.NOT_STARTED)
    estimated_effort: float = Field(default=0.0, ge=0.0, description="Planned effort (weeks)")
    actual_effort: float = Field(default=0.0, ge=0.0, description="Consumed effort (weeks)")
    eta: date | None = Field(default=None)
    owner_id: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(validate_assignment=True)


class ChangeEntry(BaseModel):
    """
    Immutable log of one field's old -> new transition.

    Example:
        >>> entry = ChangeEntry(
        ...     record_id="Q425-001",
        ...     field=RecordField.STATUS,
        ...     old_value="Not Started",
        ...     new_value="In Progress",
        ...     actor="Dana",
        ... )
        >>> entry.is_sub_record_change
        False
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    record_id: str = Field(..., description="Parent record identifier")
    record_title: str = Field(default="", description="Record title at time of change")
    sub_record_id: str | None = Field(default=None, description="Sub-record identifier")
    field: RecordField
    old_value: Any = None
    new_value: Any = None
    actor: str = Field(..., description="Name of the user or workflow that made the change")
    timestamp: datetime = Field(default_factory=utcnow)
    provenance: str | None = Field(
        default=None,
        description="Record id whose edit caused this change as a side effect",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v) or v

    @property
    def is_sub_record_change(self) -> bool:
        return self.sub_record_id is not None


class Record(BaseModel):
    """
    A tracked work item (initiative).

    Records are mutated through the record store and the session entry
    points; direct attribute assignment is validated but does not produce
    history entries on its own.
    """

    id: str = Field(..., min_length=1, frozen=True, description="Unique identifier")
    title: str = Field(default="", description="Record title")

    # Ownership and classification
    owner_id: str | None = Field(default=None, description="Owning user id")
    secondary_owner: str | None = Field(default=None)
    classification: Classification | None = Field(default=None)
    quarter: str = Field(default="", description="Planning quarter, e.g. 'Q4 2025'")
    work_type: WorkType = Field(default=WorkType.PLANNED)

    # Workflow state
    status: Status = Field(default=Status.NOT_STARTED)
    priority: Priority = Field(default=Priority.P2)
    risk_action_log: str = Field(default="")
    definition_of_done: str = Field(default="")

    # Effort (staff weeks)
    estimated_effort: float = Field(default=0.0, ge=0.0)
    actual_effort: float = Field(default=0.0, ge=0.0)
    original_estimated_effort: float | None = Field(default=None, ge=0.0)

    # Dates
    eta: date | None = Field(default=None, description="Target date")
    original_eta: date | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    last_weekly_update: date | None = Field(default=None)
    deleted_at: datetime | None = Field(default=None)

    # Overlooked-item tracking
    overlooked_count: int = Field(default=0, ge=0, description="Times the ETA was pushed back")
    last_delay_date: date | None = Field(default=None)

    history: list[ChangeEntry] = Field(default_factory=list)
    sub_records: list[SubRecord] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        return v.strip()

    @field_validator("created_at", "last_updated", "deleted_at")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @property
    def is_deleted(self) -> bool:
        return self.status == Status.DELETED

    @property
    def completion_rate(self) -> float:
        """Actual effort as a fraction of estimated effort (0 when unestimated)."""
        if self.estimated_effort <= 0:
            return 0.0
        return self.actual_effort / self.estimated_effort

    def get_field(self, field: RecordField) -> Any:
        """Read a field by its enum name."""
        return getattr(self, field.value)

    def set_field(self, field: RecordField, value: Any) -> None:
        """Write a field by its enum name (validated by Pydantic)."""
        setattr(self, field.value, value)

    def append_history(self, entries: list[ChangeEntry]) -> None:
        """
        Append change entries to history, keeping ``last_updated`` consistent.

        Existing entries are never removed or reordered.
        """
        if not entries:
            return
        self.history = [*self.history, *entries]
        latest = max(e.timestamp for e in entries)
        if latest > self.last_updated:
            self.last_updated = latest

    def touch(self, now: datetime | None = None) -> None:
        """Bump ``last_updated`` to ``now`` without going backwards."""
        now = now or utcnow()
        floor = max((e.timestamp for e in self.history), default=now)
        self.last_updated = max(now, floor, self.last_updated)

    def find_sub_record(self, sub_record_id: str) -> SubRecord | None:
        for sub in self.sub_records:
            if sub.id == sub_record_id:
                return sub
        return None

    def snapshot(self) -> "Record":
        """Deep, independent copy used as an isolated working copy."""
        return self.model_copy(deep=True)
