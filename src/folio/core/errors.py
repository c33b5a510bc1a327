"""
Error taxonomy for the folio core.

None of these errors are fatal to the process. Each maps to a degradation
policy applied by the component that catches it:

- ValidationError: malformed input to an edit, rejected before any mutation
- ConditionEvaluationError: unknown/malformed predicate, evaluates to False
- ActionExecutionError: workflow run skipped, sibling workflows still run
- PersistenceError: optimistic write rolled back, surfaced as retriable
- BroadcastError: logged only, never blocks local state
"""


class FolioError(Exception):
    """Base class for all folio core errors."""

    retriable: bool = False


class ValidationError(FolioError):
    """Raised when an edit carries malformed input."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"Invalid value for '{field}': {message}")


class RecordNotFoundError(FolioError):
    """Raised when an operation targets an unknown record id."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class PermissionDeniedError(FolioError):
    """Raised when the permission policy rejects a mutation."""

    def __init__(self, actor_id: str, operation: str, record_id: str | None = None) -> None:
        self.actor_id = actor_id
        self.operation = operation
        self.record_id = record_id
        target = f" on {record_id}" if record_id else ""
        super().__init__(f"User '{actor_id}' may not {operation}{target}")


class ConditionEvaluationError(FolioError):
    """Raised internally for an unknown or malformed condition leaf."""

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Cannot evaluate condition '{kind}': {reason}")


class ActionExecutionError(FolioError):
    """Raised when a workflow action cannot be applied to a record."""

    def __init__(self, action: str, record_id: str, reason: str) -> None:
        self.action = action
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Action '{action}' failed on {record_id}: {reason}")


class PersistenceError(FolioError):
    """
    Raised when the persistence collaborator rejects or fails a write.

    Persistence failures are always retriable from the user's point of
    view: the local view has been rolled back and the edit can be re-issued.
    """

    retriable = True

    def __init__(self, record_id: str, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Failed to persist {record_id}: {reason}")


class BroadcastError(FolioError):
    """Raised by broadcast channels when delivery fails."""

    def __init__(self, event: str, reason: str) -> None:
        self.event = event
        self.reason = reason
        super().__init__(f"Broadcast '{event}' failed: {reason}")


__all__ = [
    "ActionExecutionError",
    "BroadcastError",
    "ConditionEvaluationError",
    "FolioError",
    "PermissionDeniedError",
    "PersistenceError",
    "RecordNotFoundError",
    "ValidationError",
]
