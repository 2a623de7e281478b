"""
Tests for the import CLI.
"""

import json

import pytest
from click.testing import CliRunner

from scripts.import_cli import cli


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def runner():
    return CliRunner()


class TestImportCommands:
    """Test direct-mode imports and exit codes."""

    def test_import_json_success(self, runner, database_url, sample_json_file):
        result = runner.invoke(cli, ['--database-url', database_url,
                                     'import-json', '--file', str(sample_json_file)])

        assert result.exit_code == 0, result.output
        assert 'Import successful' in result.output
        assert 'stores: 1' in result.output
        assert 'store_schedules: 1' in result.output

    def test_import_json_missing_section(self, runner, database_url, tmp_path):
        path = tmp_path / 'partial.json'
        path.write_text(json.dumps({'stores': [], 'employees': []}))

        result = runner.invoke(cli, ['--database-url', database_url,
                                     'import-json', '--file', str(path)])

        assert result.exit_code == 1
        assert 'schedules' in result.output

    def test_import_workbook(self, runner, database_url, tmp_path, make_workbook):
        path = tmp_path / 'roster.xlsx'
        path.write_bytes(make_workbook({
            'Stores': [['Store #', 'Store Name'], [1001, 'Main St']],
            'Lookup': [['Code'], ['A']],
        }))

        result = runner.invoke(cli, ['--database-url', database_url,
                                     'import-workbook', '--file', str(path)])

        assert result.exit_code == 0, result.output
        assert 'stores: 1' in result.output
        assert 'Unclassified sheets skipped: Lookup' in result.output

    def test_missing_file_rejected(self, runner, database_url, tmp_path):
        result = runner.invoke(cli, ['--database-url', database_url,
                                     'import-json', '--file', str(tmp_path / 'nope.json')])
        assert result.exit_code == 2


class TestInspectCommand:
    """Test classification preview without a database."""

    def test_inspect(self, runner, tmp_path, make_workbook):
        path = tmp_path / 'roster.xlsx'
        path.write_bytes(make_workbook({
            'Stores': [['Store #'], [1001], [None]],
            'Shifts': [['Site', 'Date', 'Employee'], [1001, 44928, 'Jane Doe']],
            'Lookup': [['Code'], ['A']],
        }))

        result = runner.invoke(cli, ['inspect', '--file', str(path)])

        assert result.exit_code == 0, result.output
        assert 'Stores: Store -> stores' in result.output
        assert 'Shifts: ScheduleEntry -> store_schedules' in result.output
        assert 'Lookup: unclassified' in result.output
        assert "row: ['A']" in result.output

    def test_inspect_not_a_workbook(self, runner, tmp_path):
        path = tmp_path / 'roster.xlsx'
        path.write_text('not a workbook')

        result = runner.invoke(cli, ['inspect', '--file', str(path)])
        assert result.exit_code == 1


class TestStatusCommand:
    """Test progress record lookup."""

    def test_unknown_import(self, runner, database_url, engine):
        result = runner.invoke(cli, ['--database-url', str(engine.url), 'status', '--import-id', 'missing'])
        assert result.exit_code == 1
        assert 'not found' in result.output
