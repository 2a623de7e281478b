"""
Import Orchestrator - sequences a full roster import.

A run moves strictly through
idle -> clearing -> loading_stores -> loading_contacts -> loading_schedules
-> verifying -> completed, or to failed from any non-terminal phase.
Input problems (unreadable workbook, missing JSON sections) are detected
before clearing, so they never touch existing table contents.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.schema import Contact, ScheduleEntry, Store
from backend.schemas import ImportDataset
from services.classifier_service import EntityType, classify_sheet
from services.errors import (
    ClassificationMiss, ImportLockError, ImportStateError, InputShapeError,
    ParseError, RosterImportError, VerificationError, jsonable
)
from services.loader_service import DEFAULT_BATCH_SIZE, BatchLoader, clear_tables
from services.transform_service import TransformedDataset, transform_records, transform_sheet
from services.workbook_service import (
    DEFAULT_MAX_ROWS, WorkbookParseResult, parse_workbook
)

logger = logging.getLogger(__name__)

DEFAULT_LOCK_KEY = 7305001
DEFAULT_SAMPLE_SIZE = 5
REQUIRED_SECTIONS = ('stores', 'employees', 'schedules')


class ImportPhase(str, Enum):
    IDLE = 'idle'
    CLEARING = 'clearing'
    LOADING_STORES = 'loading_stores'
    LOADING_CONTACTS = 'loading_contacts'
    LOADING_SCHEDULES = 'loading_schedules'
    VERIFYING = 'verifying'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (ImportPhase.COMPLETED, ImportPhase.FAILED)


_SEQUENCE = [
    ImportPhase.IDLE,
    ImportPhase.CLEARING,
    ImportPhase.LOADING_STORES,
    ImportPhase.LOADING_CONTACTS,
    ImportPhase.LOADING_SCHEDULES,
    ImportPhase.VERIFYING,
    ImportPhase.COMPLETED,
]

# (phase, entity type, start percent, end percent, message)
LOAD_PHASES: List[Tuple[ImportPhase, EntityType, int, int, str]] = [
    (ImportPhase.LOADING_STORES, EntityType.STORE, 25, 45, 'Importing stores...'),
    (ImportPhase.LOADING_CONTACTS, EntityType.CONTACT, 45, 65, 'Importing employees...'),
    (ImportPhase.LOADING_SCHEDULES, EntityType.SCHEDULE_ENTRY, 65, 90, 'Importing schedules...'),
]

VERIFY_MODELS = [Store, Contact, ScheduleEntry]


@dataclass
class ImportState:
    """
    Run state passed explicitly through the orchestrator.

    The same object is the handle a caller keeps to observe a run: its
    phase only ever moves forward along the phase sequence, or to failed.
    """

    import_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: ImportPhase = ImportPhase.IDLE
    progress: float = 0
    message: str = ''
    error: Optional[str] = None
    history: List[ImportPhase] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def advance(self, phase: ImportPhase):
        """Move to the next phase, or to failed; anything else is rejected."""
        if self.phase.is_terminal:
            raise ImportStateError(f"Import {self.import_id} already {self.phase.value}")

        if phase == ImportPhase.FAILED:
            allowed = True
        else:
            current = _SEQUENCE.index(self.phase)
            allowed = current + 1 < len(_SEQUENCE) and _SEQUENCE[current + 1] == phase
        if not allowed:
            raise ImportStateError(
                f"Invalid transition {self.phase.value} -> {phase.value} "
                f"for import {self.import_id}"
            )

        if self.phase == ImportPhase.IDLE:
            self.started_at = datetime.utcnow()
        self.history.append(self.phase)
        self.phase = phase
        if phase.is_terminal:
            self.completed_at = datetime.utcnow()


@dataclass
class ImportResult:
    import_id: str
    success: bool = False
    phase: str = ImportPhase.IDLE.value
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    cleared: Dict[str, int] = field(default_factory=dict)
    loads: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    verification: Dict[str, Any] = field(default_factory=dict)
    sheets: List[Dict[str, Any]] = field(default_factory=list)
    unclassified: Dict[str, Any] = field(default_factory=dict)
    empty_sheets: List[str] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        """Row counts per table, as verified after loading."""
        return dict(self.verification.get('counts', {}))

    def metadata(self) -> Dict[str, Any]:
        """Per-sheet and per-phase counts reported on completion."""
        return {
            'sheets': self.sheets,
            'loads': self.loads,
            'counts': self.counts,
            'unclassified': self.unclassified,
            'empty_sheets': self.empty_sheets,
            'verification_errors': self.verification.get('errors', []),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'import_id': self.import_id,
            'success': self.success,
            'phase': self.phase,
            'error': self.error,
            'error_details': self.error_details,
            'cleared': self.cleared,
            'verification': self.verification,
            **self.metadata(),
        }


def validate_dataset(data: Any) -> ImportDataset:
    """
    Check the three top-level sections of a JSON input document.

    Raises:
        InputShapeError: If the document is not an object, a section is
            missing, or a section is not a list of objects
    """
    if not isinstance(data, dict):
        raise InputShapeError(f"Input must be a JSON object, got {type(data).__name__}")

    missing = [s for s in REQUIRED_SECTIONS if s not in data]
    if missing:
        raise InputShapeError(f"Missing required sections: {', '.join(missing)}", missing)

    try:
        return ImportDataset(**{s: data[s] for s in REQUIRED_SECTIONS})
    except ValidationError as e:
        raise InputShapeError(f"Malformed input sections: {e}") from e


class ImportOrchestrator:
    """
    Runs clear -> load(stores) -> load(contacts) -> load(schedules) -> verify.

    Failures at any phase end the run as failed with the error attached;
    they are reported through the returned ImportResult, not raised.
    """

    def __init__(
        self,
        session: Session,
        progress_callback: Optional[Callable[[str, float, str], None]] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        atomic: bool = False,
        lock_key: int = DEFAULT_LOCK_KEY,
        max_rows: int = DEFAULT_MAX_ROWS,
        sample_size: int = DEFAULT_SAMPLE_SIZE
    ):
        """
        Initialize the orchestrator.

        Args:
            session: SQLAlchemy session bound to the target database
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
            batch_size: Rows per bulk statement
            atomic: Commit once at the end instead of after every phase
            lock_key: PostgreSQL advisory lock key guarding concurrent runs
            max_rows: Per-sheet row cap for workbook input
            sample_size: Sample rows per table in the verification summary
        """
        self.session = session
        self.progress_callback = progress_callback if progress_callback is not None else (lambda *args: None)
        self.batch_size = batch_size
        self.atomic = atomic
        self.lock_key = lock_key
        self.max_rows = max_rows
        self.sample_size = sample_size
        self.loader = BatchLoader(session, batch_size=batch_size,
                                  progress_callback=self._emit_progress)

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def _enter(self, state: ImportState, phase: ImportPhase, percent: float, message: str):
        state.advance(phase)
        state.progress = percent
        state.message = message
        self._emit_progress(phase.value, percent, message)

    def _commit_phase(self):
        if not self.atomic:
            self.session.commit()

    # ------------------------------------------------------------------
    # Single-writer guard
    # ------------------------------------------------------------------

    def _acquire_lock(self):
        """Take the advisory lock on a dedicated connection (PostgreSQL only)."""
        bind = self.session.get_bind()
        if bind.dialect.name != 'postgresql':
            return None

        conn = bind.connect() if isinstance(bind, Engine) else bind
        acquired = conn.execute(
            text('SELECT pg_try_advisory_lock(:key)'), {'key': self.lock_key}
        ).scalar()
        if not acquired:
            if conn is not bind:
                conn.close()
            raise ImportLockError(f"Another import holds lock {self.lock_key}")

        logger.debug(f"Acquired import lock {self.lock_key}")
        return conn

    def _release_lock(self, conn):
        owned = conn is not self.session.get_bind()
        try:
            conn.execute(text('SELECT pg_advisory_unlock(:key)'), {'key': self.lock_key})
        except SQLAlchemyError as e:
            logger.warning(f"Failed to release import lock {self.lock_key}: {e}")
            if owned:
                # a pooled connection would keep holding the session-level lock
                conn.invalidate()
        finally:
            if owned:
                conn.close()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, dataset: TransformedDataset, state: Optional[ImportState] = None) -> ImportResult:
        """
        Replace table contents with the given records.

        Args:
            dataset: Typed records for all three entity types
            state: Optional caller-held run state (must be idle)

        Returns:
            ImportResult; success is False when any phase failed

        Raises:
            ImportStateError: If the state is not idle
        """
        state = state or ImportState()
        if state.phase != ImportPhase.IDLE:
            raise ImportStateError(
                f"Import {state.import_id} cannot start from {state.phase.value}"
            )

        result = ImportResult(import_id=state.import_id)
        lock_conn = None
        logger.info(f"Starting import {state.import_id}: {dataset.counts()}")

        try:
            lock_conn = self._acquire_lock()

            self._enter(state, ImportPhase.CLEARING, 10, 'Clearing existing data...')
            result.cleared = clear_tables(self.session)
            self._commit_phase()

            for phase, entity_type, start_pct, end_pct, message in LOAD_PHASES:
                self._enter(state, phase, start_pct, message)
                load_result = self.loader.load(
                    entity_type,
                    dataset.records_for(entity_type),
                    progress_range=(start_pct, end_pct),
                    stage=phase.value
                )
                result.loads[entity_type.table_name] = load_result.to_dict()
                self._commit_phase()

            if self.atomic:
                self.session.commit()

            self._enter(state, ImportPhase.VERIFYING, 90, 'Verifying import...')
            result.verification = self.verify()

            summary = ', '.join(f"{n} {t}" for t, n in result.counts.items())
            self._enter(state, ImportPhase.COMPLETED, 100, f"Import complete: {summary}")
            result.success = True
            logger.info(f"Import {state.import_id} completed: {summary}")

        except Exception as e:
            logger.error(f"Import {state.import_id} failed during {state.phase.value}: {e}",
                         exc_info=True)
            self.session.rollback()
            self._fail(state, result, e)

        finally:
            if lock_conn is not None:
                self._release_lock(lock_conn)

        result.phase = state.phase.value
        return result

    def _fail(self, state: ImportState, result: ImportResult, error: Exception):
        failed_during = state.phase.value
        state.error = str(error)
        state.advance(ImportPhase.FAILED)
        state.message = f"Import failed: {error}"

        result.success = False
        result.phase = state.phase.value
        result.error = str(error)
        details = {'phase': failed_during, 'type': type(error).__name__}
        if hasattr(error, 'to_dict'):
            details.update(error.to_dict())
        result.error_details = details

        self._emit_progress(ImportPhase.FAILED.value, state.progress, state.message)

    def _reject(self, state: Optional[ImportState], error: RosterImportError) -> ImportResult:
        """Fail a run whose input was rejected before any table was touched."""
        state = state or ImportState()
        logger.error(f"Import {state.import_id} rejected: {error}")
        result = ImportResult(import_id=state.import_id)
        self._fail(state, result, error)
        return result

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self) -> Dict[str, Any]:
        """
        Count rows and fetch a few sample rows per table.

        Query failures are collected as VerificationError entries instead
        of failing the run.
        """
        summary: Dict[str, Any] = {'counts': {}, 'samples': {}, 'errors': []}

        for model in VERIFY_MODELS:
            table = model.__tablename__
            try:
                summary['counts'][table] = self.session.scalar(
                    select(func.count()).select_from(model)
                )
            except SQLAlchemyError as e:
                self._verification_error(summary, VerificationError(table, 'count', e))

            try:
                rows = self.session.execute(
                    select(model.__table__).order_by(model.id).limit(self.sample_size)
                ).mappings()
                summary['samples'][table] = [
                    {k: jsonable(v) for k, v in row.items()} for row in rows
                ]
            except SQLAlchemyError as e:
                self._verification_error(summary, VerificationError(table, 'sample', e))

        logger.info(f"Verification counts: {summary['counts']}")
        return summary

    def _verification_error(self, summary: Dict[str, Any], error: VerificationError):
        logger.warning(str(error))
        summary['errors'].append(error.to_dict())
        self.session.rollback()

    # ------------------------------------------------------------------
    # Input paths
    # ------------------------------------------------------------------

    def import_dataset(self, data: Any, state: Optional[ImportState] = None) -> ImportResult:
        """
        Import a JSON-shaped document with stores, employees and schedules.

        Args:
            data: Parsed JSON document
            state: Optional caller-held run state

        Returns:
            ImportResult with per-section transform counts in `sheets`
        """
        try:
            document = validate_dataset(data)
        except InputShapeError as e:
            return self._reject(state, e)

        dataset = TransformedDataset()
        sections = []
        for name, entity_type, objects in (
            ('stores', EntityType.STORE, document.stores),
            ('employees', EntityType.CONTACT, document.employees),
            ('schedules', EntityType.SCHEDULE_ENTRY, document.schedules),
        ):
            transformed = transform_records(entity_type, objects)
            dataset.add(transformed)
            sections.append({'section': name, 'rows': len(objects), **transformed.to_dict()})

        result = self.run(dataset, state)
        result.sheets = sections
        return result

    def import_json_file(self, file_path: str, state: Optional[ImportState] = None) -> ImportResult:
        """Import a JSON document from disk."""
        logger.info(f"Reading JSON input: {file_path}")
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return self._reject(state, InputShapeError(f"Cannot read JSON input {file_path}: {e}"))
        return self.import_dataset(data, state)

    def transform_workbook(
        self, parsed: WorkbookParseResult
    ) -> Tuple[TransformedDataset, List[Dict[str, Any]], Dict[str, Any]]:
        """
        Classify and transform every parsed sheet.

        Returns:
            (dataset, per-sheet metadata, unclassified diagnostics by sheet name)
        """
        dataset = TransformedDataset()
        sheets: List[Dict[str, Any]] = []
        unclassified: Dict[str, Any] = {}

        for sheet in parsed:
            entity_type = classify_sheet(sheet)
            if entity_type is None:
                unclassified[sheet.name] = ClassificationMiss(
                    sheet.name, sheet.headers, sheet.rows
                ).to_dict()
                continue

            transformed = transform_sheet(sheet, entity_type)
            dataset.add(transformed)
            sheets.append({'sheet': sheet.name, 'rows': sheet.row_count, **transformed.to_dict()})

        return dataset, sheets, unclassified

    def import_workbook(self, payload: bytes, state: Optional[ImportState] = None) -> ImportResult:
        """
        Import a spreadsheet payload.

        Args:
            payload: Raw workbook bytes
            state: Optional caller-held run state

        Returns:
            ImportResult with per-sheet metadata and unclassified diagnostics
        """
        self._emit_progress('parsing', 5, 'Parsing workbook...')
        try:
            parsed = parse_workbook(payload, max_rows=self.max_rows)
        except ParseError as e:
            return self._reject(state, e)

        dataset, sheets, unclassified = self.transform_workbook(parsed)
        if unclassified:
            logger.warning(f"Unclassified sheets skipped: {', '.join(unclassified)}")

        result = self.run(dataset, state)
        result.sheets = sheets
        result.unclassified = unclassified
        result.empty_sheets = list(parsed.empty_sheets)
        return result

    def import_workbook_file(self, file_path: str, state: Optional[ImportState] = None) -> ImportResult:
        """Import a workbook from disk."""
        logger.info(f"Reading workbook: {file_path}")
        try:
            payload = Path(file_path).read_bytes()
        except OSError as e:
            return self._reject(state, ParseError(f"Cannot read workbook {file_path}: {e}"))
        return self.import_workbook(payload, state)
