"""
Configuration data models for folio.

These models define the structure of .folio.json and
~/.config/folio/config.json files, with validation via Pydantic.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from folio.core.records.models import Classification, User
from folio.core.workflows.models import Workflow


class SchedulerConfig(BaseModel):
    """
    Scheduled workflow tick settings.

    The tick must run at least once per minute so that daily and weekly
    triggers see every HH:MM value.
    """

    enabled: bool = Field(default=True, description="Run on-schedule workflows")
    tick_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=60.0,
        description="Seconds between schedule ticks (at most 60)",
    )


class SyncConfig(BaseModel):
    """Optimistic write settings."""

    grace_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Seconds a confirmed write stays marked pending",
    )
    pending_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds after which an unanswered write is presumed persisted",
    )
    force_sync_on_create: bool = Field(
        default=True,
        description="Flush persistence right after a record is created",
    )


class AuditConfig(BaseModel):
    """Audit trail and workflow run log settings."""

    max_execution_log: int = Field(
        default=10,
        ge=1,
        description="Workflow run logs kept per workflow",
    )


class ValidationConfig(BaseModel):
    """Weekly effort validation settings."""

    effort_threshold_percent: float = Field(
        default=15.0,
        gt=0.0,
        description="Flag owners whose weekly effort deviates by at least this much",
    )


class StorageConfig(BaseModel):
    """Where the local JSON backend keeps its files (relative to the project)."""

    backend: str = Field(default="json", description="Persistence backend name")
    records_file: str = Field(default=".folio/records.json")
    audit_file: str = Field(default=".folio/audit.jsonl")
    cache_file: str = Field(
        default=".folio/cache.json",
        description="Local cache used when the backend cannot be loaded",
    )


class FolioConfig(BaseModel):
    """
    Top-level folio configuration.

    Loaded from defaults, user config, project config and env vars.

    Example:
        >>> config = FolioConfig(sync=SyncConfig(pending_timeout=5))
        >>> config.sync.pending_timeout
        5.0
        >>> config.scheduler.tick_seconds
        60.0
    """

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Directory data
    users: list[User] = Field(default_factory=list, description="Known users")
    team_classifications: dict[str, Classification] | None = Field(
        default=None,
        description="Team -> classification map (defaults to the built-in map)",
    )

    # User-defined workflows, run after the system workflows
    workflows: list[Workflow] = Field(default_factory=list)

    model_config = ConfigDict(
        extra="allow",  # Forward compatibility with newer config files
        validate_assignment=True,
    )

    @field_validator("workflows", mode="before")
    @classmethod
    def drop_system_flags(cls, v: Any) -> Any:
        """Workflows from config files are never system workflows."""
        if not isinstance(v, list):
            return v
        return [
            {**w, "system": False, "read_only": False} if isinstance(w, dict) else w
            for w in v
        ]
