"""
Tests for background import execution under a progress tracker.
"""

import pytest

from backend.models import ImportRun
from services.errors import RosterImportError
from tasks.import_tasks import run_tracked_import


class TestRunTrackedImport:
    """Test the body shared by the Celery import tasks."""

    def test_success_completes_record(self, session_factory, sample_json_file, fake_redis):
        result = run_tracked_import(
            'task-1', str(sample_json_file),
            lambda orch, state: orch.import_json_file(str(sample_json_file), state),
            session_factory=session_factory,
            redis_client=fake_redis
        )

        assert result['success'] is True
        assert result['import_id'] == 'task-1'
        assert result['counts'] == {'stores': 1, 'contacts': 1, 'store_schedules': 1}

        with session_factory() as session:
            run = session.get(ImportRun, 'task-1')
            assert run.status == 'completed'
            assert run.import_metadata['counts']['store_schedules'] == 1
            stages = [p.stage for p in run.history]
            assert stages[0] == 'idle'
            assert 'loading_schedules' in stages
            assert stages[-1] == 'completed'

    def test_failed_import_raises(self, session_factory, tmp_path):
        path = tmp_path / 'partial.json'
        path.write_text('{"stores": []}')

        with pytest.raises(RosterImportError):
            run_tracked_import(
                'task-2', str(path),
                lambda orch, state: orch.import_json_file(str(path), state),
                session_factory=session_factory
            )

        with session_factory() as session:
            run = session.get(ImportRun, 'task-2')
            assert run.status == 'failed'
            assert run.error_details['type'] == 'InputShapeError'

    def test_crash_recorded_and_reraised(self, session_factory):
        def runner(orch, state):
            raise RuntimeError('worker lost database')

        with pytest.raises(RuntimeError):
            run_tracked_import('task-3', 'x.json', runner, session_factory=session_factory)

        with session_factory() as session:
            run = session.get(ImportRun, 'task-3')
            assert run.status == 'failed'
            assert run.error_details['error'] == 'worker lost database'
            assert 'Traceback' in run.error_details['traceback']
