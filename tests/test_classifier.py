"""
Tests for sheet classification.
"""

from services.classifier_service import EntityType, classify_sheet
from services.errors import ClassificationMiss
from services.workbook_service import Sheet


class TestClassifySheet:
    """Test ordered keyword classification."""

    def test_store_outranks_schedule(self):
        """A store signal wins even when schedule keywords are present."""
        sheet = Sheet('Store Schedule', ['Store #', 'Date', 'Employee'])
        assert classify_sheet(sheet) == EntityType.STORE

    def test_store_header_with_neutral_name(self):
        sheet = Sheet('Sheet1', ['Store Number', 'City'])
        assert classify_sheet(sheet) == EntityType.STORE

    def test_schedule_by_header(self):
        sheet = Sheet('Week 1', ['Employee', 'Shift', 'Hours'])
        assert classify_sheet(sheet) == EntityType.SCHEDULE_ENTRY

    def test_date_outranks_person_signals(self):
        sheet = Sheet('Sheet1', ['Employee Name', 'Date'])
        assert classify_sheet(sheet) == EntityType.SCHEDULE_ENTRY

    def test_schedule_by_sheet_name(self):
        sheet = Sheet('Schedules', ['Who', 'When'])
        assert classify_sheet(sheet) == EntityType.SCHEDULE_ENTRY

    def test_contact_signals(self):
        for headers in (['Full Name'], ['Phone'], ['Email'], ['Employee'], ['Contact']):
            assert classify_sheet(Sheet('Team', headers)) == EntityType.CONTACT

    def test_case_insensitive(self):
        assert classify_sheet(Sheet('STORES', ['NUMBER'])) == EntityType.STORE

    def test_unclassified(self):
        assert classify_sheet(Sheet('Lookup', ['Code', 'Value'])) is None

    def test_table_names(self):
        assert EntityType.STORE.table_name == 'stores'
        assert EntityType.CONTACT.table_name == 'contacts'
        assert EntityType.SCHEDULE_ENTRY.table_name == 'store_schedules'


class TestClassificationMiss:
    """Test the diagnostic recorded for unclassified sheets."""

    def test_preview_limited_to_three_rows(self):
        rows = [[i, f"value {i}"] for i in range(10)]
        miss = ClassificationMiss('Lookup', ['Code', 'Value'], rows)

        diagnostic = miss.to_dict()
        assert diagnostic['error'] == 'No suitable table mapping found'
        assert diagnostic['headers'] == ['Code', 'Value']
        assert diagnostic['data_preview'] == [[0, 'value 0'], [1, 'value 1'], [2, 'value 2']]
