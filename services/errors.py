"""
Exceptions and diagnostics raised by the import pipeline.

Fatal errors derive from RosterImportError. ClassificationMiss and
VerificationError are recorded in results rather than raised to callers.
"""

from typing import Any, Dict, List, Optional


class RosterImportError(Exception):
    """Base class for import pipeline errors."""


class ParseError(RosterImportError):
    """Payload is not a readable spreadsheet."""


class InputShapeError(RosterImportError):
    """A required top-level input section is missing or malformed."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class TransformSkip(RosterImportError):
    """A row yields no loadable record. Counted, never surfaced per row."""

    def __init__(self, reason: str, empty: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.empty = empty


class LoadError(RosterImportError):
    """A batch insert failed; the run cannot continue."""

    def __init__(self, entity_type: str, batch_index: int, start_row: int,
                 end_row: int, cause: Exception):
        self.entity_type = entity_type
        self.batch_index = batch_index
        self.start_row = start_row
        self.end_row = end_row
        self.cause = cause
        super().__init__(
            f"Failed to load {entity_type} batch {batch_index} "
            f"(rows {start_row}-{end_row}): {cause}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_type': self.entity_type,
            'batch_index': self.batch_index,
            'start_row': self.start_row,
            'end_row': self.end_row,
            'cause': str(self.cause)
        }


class ImportStateError(RosterImportError):
    """An orchestrator phase transition out of order."""


class ImportLockError(RosterImportError):
    """Another import holds the single-writer lock."""


class VerificationError(RosterImportError):
    """A post-load count or sample query failed. Reported, never fatal."""

    def __init__(self, table: str, query: str, cause: Exception):
        self.table = table
        self.query = query
        self.cause = cause
        super().__init__(f"Verification {query} on {table} failed: {cause}")

    def to_dict(self) -> Dict[str, Any]:
        return {'table': self.table, 'query': self.query, 'error': str(self.cause)}


class ClassificationMiss:
    """Diagnostic for a sheet that matched no entity type."""

    PREVIEW_ROWS = 3

    def __init__(self, sheet_name: str, headers: List[str], rows: List[List[Any]]):
        self.sheet_name = sheet_name
        self.headers = headers
        self.data_preview = rows[:self.PREVIEW_ROWS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': 'No suitable table mapping found',
            'headers': self.headers,
            'data_preview': [[jsonable(v) for v in row] for row in self.data_preview]
        }

    def __repr__(self):
        return f"<ClassificationMiss(sheet='{self.sheet_name}', headers={self.headers})>"


def jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)
