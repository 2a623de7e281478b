"""
Batch Loader - persists typed records in bounded bulk statements.

Stores and contacts are upserted on their natural key (store_number,
phone); schedule entries are plain inserts into a table the orchestrator
has already cleared.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import Contact, ScheduleEntry, Store
from services.classifier_service import EntityType
from services.errors import LoadError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

MODELS = {
    EntityType.STORE: Store,
    EntityType.CONTACT: Contact,
    EntityType.SCHEDULE_ENTRY: ScheduleEntry,
}

NATURAL_KEYS = {
    EntityType.STORE: 'store_number',
    EntityType.CONTACT: 'phone',
}

# Child tables first
CLEAR_ORDER = [ScheduleEntry, Contact, Store]


@dataclass
class LoadResult:
    entity_type: EntityType
    received: int = 0
    loaded: int = 0
    duplicates: int = 0
    batches: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.entity_type.table_name,
            'received': self.received,
            'loaded': self.loaded,
            'duplicates': self.duplicates,
            'batches': self.batches,
        }


def clear_tables(session: Session) -> Dict[str, int]:
    """Delete all schedule, contact and store rows, in that order."""
    deleted = {}
    for model in CLEAR_ORDER:
        result = session.execute(delete(model))
        deleted[model.__tablename__] = result.rowcount
        logger.info(f"Cleared {result.rowcount} rows from {model.__tablename__}")
    return deleted


def _coerce_date(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return value  # left for the database to reject
    return value


def _coerce_time(value: Optional[str]) -> Optional[time]:
    if value is None:
        return None
    return time.fromisoformat(value)


def to_row(entity_type: EntityType, record: Any) -> Dict[str, Any]:
    """Turn a typed record into column values for a bulk statement."""
    row = asdict(record)
    if entity_type == EntityType.SCHEDULE_ENTRY:
        row['date'] = _coerce_date(row['date'])
        row['start_time'] = _coerce_time(row['start_time'])
        row['end_time'] = _coerce_time(row['end_time'])
        row['scheduled_hours'] = Decimal(str(row['scheduled_hours']))
    return row


def collapse_duplicates(rows: List[Dict[str, Any]], key: str) -> Tuple[List[Dict[str, Any]], int]:
    """
    Merge rows sharing a natural key: the last occurrence's values are kept
    at the position of the first. Returns (rows, number of rows merged).
    """
    positions: Dict[Any, int] = {}
    collapsed: List[Dict[str, Any]] = []
    for row in rows:
        value = row[key]
        if value in positions:
            collapsed[positions[value]] = row
        else:
            positions[value] = len(collapsed)
            collapsed.append(row)
    return collapsed, len(rows) - len(collapsed)


class BatchLoader:
    """
    Writes records for one entity type at a time in consecutive batches.

    Batch boundaries are sequential slices of the input, so a re-run over
    the same input reproduces the same batches.
    """

    def __init__(
        self,
        session: Session,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_callback: Optional[Callable[[str, float, str], None]] = None
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.session = session
        self.batch_size = batch_size
        self.progress_callback = progress_callback if progress_callback is not None else (lambda *args: None)

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def _insert(self, model):
        if self.dialect == 'postgresql':
            return postgresql.insert(model)
        if self.dialect == 'sqlite':
            return sqlite.insert(model)
        raise NotImplementedError(f"Upsert is not supported on {self.dialect}")

    def build_statement(self, entity_type: EntityType, rows: Sequence[Dict[str, Any]]):
        """Build one multi-row INSERT, with ON CONFLICT DO UPDATE for keyed types."""
        model = MODELS[entity_type]
        stmt = self._insert(model).values(list(rows))

        key = NATURAL_KEYS.get(entity_type)
        if key is None:
            return stmt

        updates = {
            column: stmt.excluded[column]
            for column in rows[0].keys()
            if column != key
        }
        updates['updated_at'] = func.now()
        return stmt.on_conflict_do_update(index_elements=[key], set_=updates)

    def load(
        self,
        entity_type: EntityType,
        records: Sequence[Any],
        progress_range: Tuple[float, float] = (0, 100),
        stage: Optional[str] = None
    ) -> LoadResult:
        """
        Persist records for one entity type.

        Args:
            entity_type: Entity type of every record
            records: Typed records in input order
            progress_range: Percent span to report batch progress within
            stage: Progress stage name (defaults to loading_<table>)

        Returns:
            LoadResult with counts

        Raises:
            LoadError: On the first failing batch; no later batch runs
        """
        result = LoadResult(entity_type=entity_type, received=len(records))
        rows = [to_row(entity_type, r) for r in records]

        key = NATURAL_KEYS.get(entity_type)
        if key is not None:
            rows, result.duplicates = collapse_duplicates(rows, key)
            if result.duplicates:
                logger.info(f"Collapsed {result.duplicates} duplicate "
                            f"{entity_type.table_name} rows by {key}")

        table = entity_type.table_name
        total = len(rows)
        start_pct, end_pct = progress_range
        stage = stage or f"loading_{table}"

        for i in range(0, total, self.batch_size):
            batch = rows[i:i + self.batch_size]
            batch_index = i // self.batch_size + 1

            progress = start_pct + (end_pct - start_pct) * (i / max(total, 1))
            self.progress_callback(stage, progress, f"Inserting {table} {i}/{total}")

            try:
                self.session.execute(self.build_statement(entity_type, batch))
                self.session.flush()
            except SQLAlchemyError as e:
                logger.error(f"Batch {batch_index} of {table} failed: {e}")
                raise LoadError(table, batch_index, i + 1, i + len(batch), e) from e

            result.loaded += len(batch)
            result.batches += 1
            logger.debug(f"Inserted batch {batch_index} ({len(batch)} {table})")

        logger.info(f"Loaded {result.loaded} {table} rows in {result.batches} batches")
        return result
