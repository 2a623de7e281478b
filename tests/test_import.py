"""
End-to-end tests for the import orchestrator.

Covers the JSON and workbook input paths, phase ordering, idempotent
re-runs, failure handling and post-load verification.
"""

from datetime import date, time

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from backend.models import Contact, ScheduleEntry, Store
from services.errors import ImportStateError, InputShapeError
from services.import_service import (
    ImportOrchestrator, ImportPhase, ImportState, validate_dataset
)


def _count(session, model):
    return session.scalar(select(func.count()).select_from(model))


def _seed(session):
    """Existing rows: store 1001 with a schedule row referencing it."""
    session.add(Store(store_number=1001, name='Old Main St'))
    session.add(Store(store_number=2002, name='Closed Store'))
    session.add(Contact(name='Old Contact', phone='5559999'))
    session.flush()
    session.add(ScheduleEntry(store_number=1001, date=date(2022, 12, 1),
                              employee_name='Old Contact'))
    session.commit()


class TestFullPipeline:
    """Test the complete JSON import scenario."""

    def test_sample_dataset(self, session, sample_dataset, progress_events):
        orchestrator = ImportOrchestrator(session, progress_callback=progress_events)

        result = orchestrator.import_dataset(sample_dataset)

        assert result.success is True
        assert result.phase == 'completed'
        assert result.error is None
        assert result.counts == {'stores': 1, 'contacts': 1, 'store_schedules': 1}

        entry = session.execute(select(ScheduleEntry)).scalar_one()
        assert entry.store_number == 1001
        assert entry.employee_id == '1'
        assert entry.start_time == time(9, 0)
        assert entry.end_time == time(17, 0)

        store = session.execute(select(Store)).scalar_one()
        assert store.name == 'Main St'

    def test_phase_order_and_progress(self, session, sample_dataset, progress_events):
        orchestrator = ImportOrchestrator(session, progress_callback=progress_events)
        orchestrator.import_dataset(sample_dataset)

        assert progress_events.stages == [
            'clearing', 'loading_stores', 'loading_contacts',
            'loading_schedules', 'verifying', 'completed'
        ]
        percents = {stage: percent for stage, percent, _ in reversed(progress_events)}
        assert percents['clearing'] == 10
        assert percents['loading_stores'] == 25
        assert percents['loading_contacts'] == 45
        assert percents['loading_schedules'] == 65
        assert percents['verifying'] == 90
        assert percents['completed'] == 100

    def test_verification_summary(self, session, sample_dataset):
        result = ImportOrchestrator(session).import_dataset(sample_dataset)

        verification = result.verification
        assert verification['errors'] == []
        assert verification['samples']['stores'][0]['store_number'] == 1001
        assert verification['samples']['store_schedules'][0]['date'] == '2023-01-02'
        assert verification['samples']['store_schedules'][0]['start_time'] == '09:00:00'

    def test_section_metadata(self, session, sample_dataset):
        sample_dataset['employees'].append({'phone': '5550002'})

        result = ImportOrchestrator(session).import_dataset(sample_dataset)

        sections = {s['section']: s for s in result.sheets}
        assert sections['employees']['rows'] == 2
        assert sections['employees']['records'] == 1
        assert sections['employees']['skipped'] == 1
        assert result.metadata()['loads']['stores']['loaded'] == 1

    def test_rerun_is_idempotent(self, session, sample_dataset):
        orchestrator = ImportOrchestrator(session)

        first = orchestrator.import_dataset(sample_dataset)
        second = orchestrator.import_dataset(sample_dataset)

        assert first.success and second.success
        assert second.counts == first.counts == {'stores': 1, 'contacts': 1, 'store_schedules': 1}

    def test_import_replaces_existing_rows(self, session, sample_dataset):
        """Existing schedules referencing a reloaded store are cleared first."""
        _seed(session)

        result = ImportOrchestrator(session).import_dataset(sample_dataset)

        assert result.success is True
        assert result.cleared == {'store_schedules': 1, 'contacts': 1, 'stores': 2}
        assert session.scalars(select(Store.store_number)).all() == [1001]
        assert session.scalar(select(Store.name)) == 'Main St'

    def test_contacts_without_phone_rerun_stable(self, session, sample_dataset):
        sample_dataset['employees'] = [{'name': 'No Phone'}, {'name': 'Also No Phone'}]
        orchestrator = ImportOrchestrator(session)

        orchestrator.import_dataset(sample_dataset)
        first = sorted(session.scalars(select(Contact.phone)).all())
        orchestrator.import_dataset(sample_dataset)
        second = sorted(session.scalars(select(Contact.phone)).all())

        assert len(first) == 2
        assert first == second

    def test_import_json_file(self, session, sample_json_file):
        result = ImportOrchestrator(session).import_json_file(str(sample_json_file))
        assert result.success is True
        assert result.counts['store_schedules'] == 1


class TestInputRejection:
    """Test that bad input never touches existing tables."""

    def test_missing_section(self, session, sample_dataset, progress_events):
        _seed(session)
        del sample_dataset['employees']

        result = ImportOrchestrator(session, progress_callback=progress_events).import_dataset(sample_dataset)

        assert result.success is False
        assert result.phase == 'failed'
        assert 'employees' in result.error
        assert result.error_details['type'] == 'InputShapeError'
        assert result.error_details['phase'] == 'idle'
        assert _count(session, Store) == 2
        assert progress_events.stages == ['failed']

    def test_validate_dataset(self, sample_dataset):
        with pytest.raises(InputShapeError) as exc_info:
            validate_dataset({'stores': []})
        assert exc_info.value.missing == ['employees', 'schedules']

        with pytest.raises(InputShapeError):
            validate_dataset([sample_dataset])

        sample_dataset['stores'] = None
        with pytest.raises(InputShapeError):
            validate_dataset(sample_dataset)

    def test_invalid_json_file(self, session, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"stores": [')

        result = ImportOrchestrator(session).import_json_file(str(path))

        assert result.success is False
        assert result.error_details['type'] == 'InputShapeError'

    def test_unreadable_workbook(self, session):
        _seed(session)

        result = ImportOrchestrator(session).import_workbook(b'not a workbook')

        assert result.success is False
        assert result.error_details['type'] == 'ParseError'
        assert _count(session, ScheduleEntry) == 1


class TestLoadFailure:
    """Test failure during a load phase."""

    def _bad_dataset(self, sample_dataset):
        sample_dataset['stores'].append({'store_number': 1002, 'store_name': 'Elm St'})
        sample_dataset['schedules'].append({
            'store_number': 9999, 'date': '2023-01-02', 'employee_name': 'Jane Doe'
        })
        return sample_dataset

    def test_failure_stops_later_phases(self, session, sample_dataset, progress_events):
        orchestrator = ImportOrchestrator(session, progress_callback=progress_events)

        result = orchestrator.import_dataset(self._bad_dataset(sample_dataset))

        assert result.success is False
        assert result.phase == 'failed'
        assert result.error_details['phase'] == 'loading_schedules'
        assert result.error_details['entity_type'] == 'store_schedules'
        assert result.error_details['batch_index'] == 1
        assert 'verifying' not in progress_events.stages
        assert progress_events.stages[-1] == 'failed'

    def test_unreadable_date_reported_as_load_failure(self, session, sample_dataset):
        """A date that is neither a serial nor a known format stays raw and fails the load."""
        sample_dataset['schedules'][0]['date'] = '²'

        result = ImportOrchestrator(session).import_dataset(sample_dataset)

        assert result.success is False
        assert result.error_details['phase'] == 'loading_schedules'
        assert result.error_details['type'] == 'LoadError'
        assert result.sheets[2]['skipped'] == 0

    def test_non_atomic_keeps_committed_phases(self, session, sample_dataset):
        _seed(session)

        ImportOrchestrator(session).import_dataset(self._bad_dataset(sample_dataset))

        assert sorted(session.scalars(select(Store.store_number)).all()) == [1001, 1002]
        assert _count(session, Contact) == 1
        assert _count(session, ScheduleEntry) == 0

    def test_atomic_rolls_back_everything(self, session, sample_dataset):
        _seed(session)

        result = ImportOrchestrator(session, atomic=True).import_dataset(self._bad_dataset(sample_dataset))

        assert result.success is False
        assert sorted(session.scalars(select(Store.store_number)).all()) == [1001, 2002]
        assert session.scalar(select(Contact.name)) == 'Old Contact'
        assert _count(session, ScheduleEntry) == 1


class TestVerification:
    """Test that verification problems are reported, not fatal."""

    def test_query_failures_do_not_fail_run(self, session, sample_dataset, monkeypatch):
        orchestrator = ImportOrchestrator(session)

        def broken_scalar(*args, **kwargs):
            raise OperationalError('SELECT count(*)', {}, Exception('connection lost'))

        monkeypatch.setattr(session, 'scalar', broken_scalar)
        result = orchestrator.import_dataset(sample_dataset)

        assert result.success is True
        assert result.phase == 'completed'
        errors = result.verification['errors']
        assert [e['table'] for e in errors] == ['stores', 'contacts', 'store_schedules']
        assert all(e['query'] == 'count' for e in errors)
        assert result.counts == {}

    def test_sample_size(self, session, sample_dataset):
        sample_dataset['stores'] = [{'store_number': n} for n in range(1, 9)]
        sample_dataset['schedules'][0]['store_number'] = 1

        result = ImportOrchestrator(session, sample_size=3).import_dataset(sample_dataset)

        assert result.counts['stores'] == 8
        assert len(result.verification['samples']['stores']) == 3


class TestImportState:
    """Test the run state machine."""

    def test_sequential_transitions(self):
        state = ImportState()
        for phase in (ImportPhase.CLEARING, ImportPhase.LOADING_STORES,
                      ImportPhase.LOADING_CONTACTS, ImportPhase.LOADING_SCHEDULES,
                      ImportPhase.VERIFYING, ImportPhase.COMPLETED):
            state.advance(phase)

        assert state.phase == ImportPhase.COMPLETED
        assert state.history[0] == ImportPhase.IDLE
        assert state.completed_at is not None

    def test_skipping_a_phase_rejected(self):
        state = ImportState()
        state.advance(ImportPhase.CLEARING)

        with pytest.raises(ImportStateError):
            state.advance(ImportPhase.LOADING_CONTACTS)

    def test_terminal_state_final(self):
        state = ImportState()
        state.advance(ImportPhase.FAILED)

        with pytest.raises(ImportStateError):
            state.advance(ImportPhase.CLEARING)
        with pytest.raises(ImportStateError):
            state.advance(ImportPhase.FAILED)

    def test_run_is_not_reentrant(self, session, sample_dataset):
        state = ImportState()
        orchestrator = ImportOrchestrator(session)
        assert orchestrator.import_dataset(sample_dataset, state).success

        with pytest.raises(ImportStateError):
            orchestrator.import_dataset(sample_dataset, state)

    def test_caller_state_tracks_run(self, session, sample_dataset):
        state = ImportState(import_id='run-1')

        result = ImportOrchestrator(session).import_dataset(sample_dataset, state)

        assert result.import_id == 'run-1'
        assert state.phase == ImportPhase.COMPLETED
        assert state.progress == 100


class TestWorkbookImport:
    """Test the spreadsheet input path."""

    def test_workbook_with_unclassified_sheet(self, session, make_workbook):
        payload = make_workbook({
            'Stores': [
                ['Store #', 'Store Name', 'City'],
                [1001, 'Kinney Drugs - Potsdam (Main)', None],
                [1002, 'Elm St', 'Canton'],
                [None, None, None],
            ],
            'Team': [
                ['Employee Name', 'Phone', 'Notes'],
                ['Jane Doe', '(555) 000-0001', 'Employee ID: 1, Role: Pharmacist'],
                ['John Roe', None, 'Employee ID: 2'],
            ],
            'Shifts': [
                ['Site', 'Date', 'Employee', 'Shift Time', 'Notes'],
                [1001, 44928, 'Jane Doe', '9:00am - 5:00pm', 'Employee ID: 1, Role: Pharmacist'],
                [1002, 44929, 'John Roe', 'OFF', None],
            ],
            'Lookup': [
                ['Code', 'Value'],
                ['A', 1],
            ],
            'Empty': [],
        })

        result = ImportOrchestrator(session).import_workbook(payload)

        assert result.success is True
        assert result.counts == {'stores': 2, 'contacts': 2, 'store_schedules': 2}
        assert result.empty_sheets == ['Empty']
        assert set(result.unclassified) == {'Lookup'}
        assert result.unclassified['Lookup']['data_preview'] == [['A', 1]]

        sheets = {s['sheet']: s for s in result.sheets}
        assert sheets['Stores']['table'] == 'stores'
        assert sheets['Stores']['records'] == 2
        assert sheets['Team']['table'] == 'contacts'
        assert sheets['Shifts']['table'] == 'store_schedules'

        phones = sorted(session.scalars(select(Contact.phone)).all())
        assert phones == ['5550000001', 'EMP-2']
        assert session.scalar(select(Store.city).where(Store.store_number == 1001)) == 'Potsdam'

    def test_workbook_schedule_sheet(self, session, make_workbook, tmp_path):
        path = tmp_path / 'roster.xlsx'
        path.write_bytes(make_workbook({
            'Stores': [['Store #'], [1001]],
            'Schedule': [
                ['Store #', 'Date', 'Employee', 'Shift', 'Hours'],
                [1001, 44928, 'Jane Doe', '12:00pm - 12:30pm', 0.5],
            ],
        }))

        result = ImportOrchestrator(session).import_workbook_file(str(path))

        # "Store #" header classifies the schedule sheet as stores
        assert result.success is True
        assert result.counts == {'stores': 1, 'contacts': 0, 'store_schedules': 0}

    def test_missing_workbook_file(self, session, tmp_path):
        result = ImportOrchestrator(session).import_workbook_file(str(tmp_path / 'missing.xlsx'))

        assert result.success is False
        assert result.error_details['type'] == 'ParseError'


class _LockConnection:
    """Stands in for the dedicated connection holding the advisory lock."""

    def __init__(self, unlock_fails=False):
        self.unlock_fails = unlock_fails
        self.invalidated = False
        self.closed = False

    def execute(self, statement, params=None):
        if self.unlock_fails:
            raise OperationalError(str(statement), params, Exception('server closed the connection'))

    def invalidate(self):
        self.invalidated = True

    def close(self):
        self.closed = True


class TestLockRelease:
    """Test handling of the advisory lock connection after a run."""

    def test_released_connection_returned_to_pool(self, session):
        conn = _LockConnection()
        ImportOrchestrator(session)._release_lock(conn)

        assert conn.closed is True
        assert conn.invalidated is False

    def test_failed_unlock_discards_connection(self, session):
        conn = _LockConnection(unlock_fails=True)
        ImportOrchestrator(session)._release_lock(conn)

        assert conn.invalidated is True
        assert conn.closed is True
