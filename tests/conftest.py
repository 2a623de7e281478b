"""
Pytest configuration and fixtures for roster import tests.
"""

import json
from io import BytesIO

import pytest
from openpyxl import Workbook

from backend.database import create_db_engine, create_session_factory
from backend.models import Base


@pytest.fixture(scope='function')
def engine(tmp_path):
    """File-backed SQLite engine with foreign keys enforced."""
    eng = create_db_engine(f"sqlite:///{tmp_path / 'roster.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture(scope='function')
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture(scope='function')
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def make_workbook():
    """Build .xlsx bytes from {sheet name: [header row, data rows...]}."""
    def build(sheets):
        wb = Workbook()
        wb.remove(wb.active)
        for name, rows in sheets.items():
            ws = wb.create_sheet(name)
            for row in rows:
                ws.append(row)
        buffer = BytesIO()
        wb.save(buffer)
        return buffer.getvalue()
    return build


@pytest.fixture
def sample_dataset():
    """Minimal complete JSON document: one store, one employee, one shift."""
    return {
        'stores': [{'store_number': 1001, 'store_name': 'Main St'}],
        'employees': [{'name': 'Jane Doe', 'phone': '+15550001'}],
        'schedules': [{
            'store_number': 1001,
            'date': '2023-01-02',
            'employee_name': 'Jane Doe',
            'employee_id': '1',
            'shift_time': '9:00am - 5:00pm'
        }]
    }


@pytest.fixture
def sample_json_file(tmp_path, sample_dataset):
    path = tmp_path / 'complete-dataset.json'
    path.write_text(json.dumps(sample_dataset))
    return path


@pytest.fixture
def progress_events():
    """Progress callback that records (stage, percent, message) tuples."""
    class Recorder(list):
        def __call__(self, stage, percent, message):
            self.append((stage, percent, message))

        @property
        def stages(self):
            seen = []
            for stage, _, _ in self:
                if not seen or seen[-1] != stage:
                    seen.append(stage)
            return seen

    return Recorder()


class FakeRedis:
    """In-memory stand-in for the few redis calls the tracker makes."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    def setex(self, key, seconds, value):
        self.store[key] = value
        self.expiry[key] = seconds

    def get(self, key):
        return self.store.get(key)


@pytest.fixture
def fake_redis():
    return FakeRedis()
