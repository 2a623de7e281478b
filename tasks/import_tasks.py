"""
Import background tasks.

This module defines Celery tasks for roster imports with progress tracking
in both Redis (live polling) and the database (persistent history).
"""

import logging
import traceback
from typing import Any, Callable, Dict, Optional

import redis
from celery import Task

from backend.config import settings
from backend.database import get_db_session
from services.errors import RosterImportError
from services.import_service import ImportOrchestrator, ImportResult, ImportState
from services.progress_service import ImportProgressTracker
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Create Redis client
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

Runner = Callable[[ImportOrchestrator, ImportState], ImportResult]


def run_tracked_import(
    import_id: str,
    source: str,
    runner: Runner,
    session_factory: Callable = get_db_session,
    redis_client: Optional[redis.Redis] = None
) -> Dict[str, Any]:
    """
    Run an import under a progress tracker.

    Args:
        import_id: Identifier of the progress record
        source: Input description stored on the record
        runner: Calls one of the orchestrator's import_* methods
        session_factory: Creates database sessions
        redis_client: Optional client for the live progress cache

    Returns:
        ImportResult as a dictionary

    Raises:
        RosterImportError: If the import ended as failed
    """
    tracker = ImportProgressTracker(
        session_factory, import_id,
        redis_client=redis_client,
        cache_expiry=settings.PROGRESS_CACHE_EXPIRY
    )
    tracker.start(source)
    state = ImportState(import_id=import_id)

    try:
        with session_factory() as session:
            orchestrator = ImportOrchestrator(
                session,
                progress_callback=tracker.update,
                batch_size=settings.IMPORT_BATCH_SIZE,
                atomic=settings.IMPORT_ATOMIC,
                lock_key=settings.IMPORT_LOCK_KEY,
                max_rows=settings.IMPORT_MAX_ROWS,
                sample_size=settings.IMPORT_SAMPLE_SIZE
            )
            result = runner(orchestrator, state)
    except Exception as e:
        logger.error(f"Import {import_id} crashed: {e}", exc_info=True)
        tracker.fail(f"Import failed: {e}", {
            'error': str(e),
            'traceback': traceback.format_exc(),
            'source': source
        })
        raise

    if not result.success:
        tracker.fail(f"Import failed: {result.error}", result.error_details)
        raise RosterImportError(f"Import failed: {result.error}")

    tracker.complete(result.metadata(), message=state.message)
    logger.info(f"Import {import_id} completed: {result.counts}")
    return result.to_dict()


class ImportTask(Task):
    """Base task class running imports under the task id as import id."""

    def run_import(self, source: str, runner: Runner) -> Dict[str, Any]:
        import_id = self.request.id
        logger.info(f"Starting import task {import_id} for {source}")
        return run_tracked_import(import_id, source, runner, redis_client=redis_client)


@celery_app.task(base=ImportTask, bind=True, name='tasks.import_tasks.import_workbook_file')
def import_workbook_file(self, file_path: str) -> Dict[str, Any]:
    """
    Background task to import a roster workbook.

    Args:
        file_path: Path to the .xlsx file

    Returns:
        Import result dictionary (counts, per-sheet metadata, verification)
    """
    return self.run_import(file_path, lambda orch, state: orch.import_workbook_file(file_path, state))


@celery_app.task(base=ImportTask, bind=True, name='tasks.import_tasks.import_json_file')
def import_json_file(self, file_path: str) -> Dict[str, Any]:
    """Background task to import a JSON roster document."""
    return self.run_import(file_path, lambda orch, state: orch.import_json_file(file_path, state))
