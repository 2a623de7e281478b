"""
Progress Service - the externally visible progress record of an import.

Each import id has one ImportRun row (status, phase, percent, message,
metadata on completion) plus an ImportProgress history row per update.
When a Redis client is supplied, the latest update is also cached under
import_progress:<import_id> for cheap polling.
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.job import ImportProgress, ImportRun, ImportStatus
from backend.schemas import ImportStatusUpdate

logger = logging.getLogger(__name__)

PROGRESS_KEY = 'import_progress:{import_id}'
DEFAULT_CACHE_EXPIRY = 3600


class ImportProgressTracker:
    """
    Progress sink keyed by import id.

    Sink failures are logged and never abort the import itself.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        import_id: str,
        redis_client: Optional[redis.Redis] = None,
        cache_expiry: int = DEFAULT_CACHE_EXPIRY
    ):
        self.session_factory = session_factory
        self.import_id = import_id
        self.redis_client = redis_client
        self.cache_expiry = cache_expiry

    def _publish(self, update: ImportStatusUpdate):
        if self.redis_client is None:
            return
        payload = update.model_dump(mode='json')
        payload['timestamp'] = datetime.utcnow().isoformat()
        try:
            self.redis_client.setex(
                PROGRESS_KEY.format(import_id=self.import_id),
                self.cache_expiry,
                json.dumps(payload)
            )
        except redis.RedisError as e:
            logger.error(f"Error caching progress for {self.import_id}: {e}")

    def _write(self, update: ImportStatusUpdate, **fields):
        try:
            with self.session_factory() as session:
                run = session.get(ImportRun, self.import_id)
                if run is None:
                    run = ImportRun(import_id=self.import_id)
                    session.add(run)

                run.status = update.status.value
                run.progress = update.progress
                run.message = update.message
                if update.phase is not None:
                    run.phase = update.phase
                if update.metadata is not None:
                    run.import_metadata = update.metadata
                for key, value in fields.items():
                    setattr(run, key, value)
                run.updated_at = datetime.utcnow()

                run.history.append(ImportProgress(
                    stage=update.phase or update.status.value,
                    percent=update.progress,
                    message=update.message
                ))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error updating progress for {self.import_id}: {e}")

    def _record(self, update: ImportStatusUpdate, **fields):
        self._write(update, **fields)
        self._publish(update)
        logger.debug(f"Progress updated: {self.import_id} - {update.status.value} "
                     f"({update.progress}%) {update.message}")

    def start(self, source: str):
        """Create (or reset) the progress record for a new run."""
        self._record(
            ImportStatusUpdate(status='processing', progress=0,
                               message=f"Import started: {source}", phase='idle'),
            source=source,
            started_at=datetime.utcnow(),
            completed_at=None,
            error_details=None
        )

    def update(self, stage: str, percent: float, message: str):
        """Progress callback: callback(stage, percent, message)."""
        if stage == 'failed':
            # terminal status is written by fail()
            return
        self._record(ImportStatusUpdate(
            status='processing',
            progress=max(0, min(100, int(percent))),
            message=message,
            phase=stage
        ))

    def complete(self, metadata: Dict[str, Any], message: str = 'Import complete'):
        self._record(
            ImportStatusUpdate(status='completed', progress=100, message=message,
                               phase='completed', metadata=metadata),
            completed_at=datetime.utcnow()
        )

    def fail(self, message: str, details: Optional[Dict[str, Any]] = None):
        self._record(
            ImportStatusUpdate(status='failed', progress=self._last_progress(),
                               message=message, phase='failed'),
            completed_at=datetime.utcnow(),
            error_details=details
        )

    def _last_progress(self) -> int:
        try:
            with self.session_factory() as session:
                run = session.get(ImportRun, self.import_id)
                return run.progress if run is not None and run.progress is not None else 0
        except SQLAlchemyError as e:
            logger.error(f"Error reading progress for {self.import_id}: {e}")
            return 0


def get_import_status(
    session: Session,
    import_id: str,
    redis_client: Optional[redis.Redis] = None
) -> Optional[Dict[str, Any]]:
    """
    Current status of an import, with the latest cached update when available.

    Returns:
        Status dictionary, or None if the import id is unknown
    """
    run = session.get(ImportRun, import_id)
    if run is None:
        return None

    status = run.to_dict()
    status['history'] = [
        {
            'stage': p.stage,
            'percent': float(p.percent) if p.percent is not None else None,
            'message': p.message,
            'timestamp': p.timestamp.isoformat() if p.timestamp else None
        }
        for p in run.history
    ]

    if redis_client is not None:
        try:
            cached = redis_client.get(PROGRESS_KEY.format(import_id=import_id))
            status['live'] = json.loads(cached) if cached else None
        except redis.RedisError as e:
            logger.warning(f"Could not read cached progress for {import_id}: {e}")
            status['live'] = None

    status['terminal'] = run.status in (ImportStatus.COMPLETED.value, ImportStatus.FAILED.value)
    return status
