"""
Folio - Initiative tracker automation core

Rule-based workflows, change auditing and optimistic updates for a shared
collection of tracked initiatives.
"""

__version__ = "0.1.0"

# Re-export core models for convenience
from folio.core.config.models import FolioConfig
from folio.core.records.models import Record, RecordField, Status
from folio.core.session import Session

__all__ = ["FolioConfig", "Record", "RecordField", "Session", "Status", "__version__"]
