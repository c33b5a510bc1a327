"""
Record models, storage and identity.

This module provides the core data models for tracked work items, the
PersistenceBackend protocol for pluggable storage, the record store that
owns the in-memory collection, and the deduplication guard.
"""

from .backend import (
    PersistenceBackend,
    SoftDeleteResult,
    get_backend,
    is_backend_available,
    list_backends,
    register_backend,
)
from .dedupe import dedupe, find_duplicate_ids, has_duplicates
from .models import (
    DEFAULT_CLASSIFICATION,
    EFFORT_FIELDS,
    TRACKED_FIELDS,
    ChangeEntry,
    Classification,
    Comment,
    Priority,
    Record,
    RecordField,
    Status,
    SubRecord,
    User,
    WorkType,
)
from .store import InsertOutcome, RecordStore

# Import backend implementations to trigger registration
from . import json_backend  # noqa: F401, E402
from . import memory_backend  # noqa: F401, E402

__all__ = [
    # Models
    "ChangeEntry",
    "Classification",
    "Comment",
    "DEFAULT_CLASSIFICATION",
    "EFFORT_FIELDS",
    "Priority",
    "Record",
    "RecordField",
    "Status",
    "SubRecord",
    "TRACKED_FIELDS",
    "User",
    "WorkType",
    # Store and dedupe
    "InsertOutcome",
    "RecordStore",
    "dedupe",
    "find_duplicate_ids",
    "has_duplicates",
    # Backend protocol and registry
    "PersistenceBackend",
    "SoftDeleteResult",
    "get_backend",
    "is_backend_available",
    "list_backends",
    "register_backend",
]
