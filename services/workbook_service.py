"""
Workbook Service - spreadsheet payload decoding.

Turns a binary workbook into an ordered list of Sheets: a header row plus
the non-blank data rows under it.
"""

import base64
import binascii
import logging
import zipfile
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from services.errors import ParseError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 200000


@dataclass
class Sheet:
    """One tabular unit of a parsed workbook."""

    name: str
    headers: List[str]
    rows: List[List[Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class WorkbookParseResult:
    """Parsed sheets plus the names of sheets with no header row."""

    sheets: List[Sheet]
    empty_sheets: List[str] = field(default_factory=list)

    def __iter__(self):
        return iter(self.sheets)

    def __len__(self):
        return len(self.sheets)


def decode_base64_payload(content: str) -> bytes:
    """Decode a base64-encoded upload into raw workbook bytes."""
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError(f"Invalid base64 content: {e}") from e


def is_blank(value: Any) -> bool:
    """True for None and empty/whitespace-only strings."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ''


def _header_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def _fit_row(values: tuple, width: int) -> List[Any]:
    row = list(values[:width])
    if len(row) < width:
        row.extend([None] * (width - len(row)))
    return row


def parse_workbook(payload: bytes, max_rows: int = DEFAULT_MAX_ROWS) -> WorkbookParseResult:
    """
    Parse a workbook payload into sheets.

    Row 1 of every sheet is the header row; all following rows are data.
    Rows whose cells are all blank are discarded so trailing empty rows
    never become phantom records.

    Args:
        payload: Raw .xlsx/.xlsm bytes
        max_rows: Safety cap on data rows kept per sheet

    Returns:
        WorkbookParseResult with sheets in workbook order

    Raises:
        ParseError: If the payload is not a spreadsheet container
    """
    try:
        wb = openpyxl.load_workbook(BytesIO(payload), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParseError(f"Not a readable spreadsheet: {e}") from e

    result = WorkbookParseResult(sheets=[])

    try:
        for sheet_name in wb.sheetnames:
            ws = wb[sheet_name]
            rows_iter = ws.iter_rows(values_only=True)

            header_values: Optional[tuple] = next(rows_iter, None)
            if header_values is None or all(is_blank(v) for v in header_values):
                logger.info(f"Sheet '{sheet_name}' has no header row, skipping")
                result.empty_sheets.append(sheet_name)
                continue

            headers = [_header_text(v) for v in header_values]
            # read_only worksheets pad rows to the sheet dimension; trim trailing blank headers
            while headers and headers[-1] == '':
                headers.pop()
            width = len(headers)

            sheet = Sheet(name=sheet_name, headers=headers)
            discarded = 0
            for values in rows_iter:
                row = _fit_row(values, width)
                if all(is_blank(v) for v in row):
                    discarded += 1
                    continue
                if len(sheet.rows) >= max_rows:
                    logger.warning(f"Sheet '{sheet_name}' exceeds {max_rows} rows, truncating")
                    break
                sheet.rows.append(row)

            logger.info(f"Sheet '{sheet_name}': {width} columns, {sheet.row_count} rows "
                        f"({discarded} blank rows discarded)")
            result.sheets.append(sheet)
    finally:
        wb.close()

    logger.info(f"Parsed {len(result.sheets)} sheets, {len(result.empty_sheets)} empty")
    return result


def parse_workbook_file(file_path: str, max_rows: int = DEFAULT_MAX_ROWS) -> WorkbookParseResult:
    """Parse a workbook from disk."""
    path = Path(file_path)
    logger.info(f"Parsing workbook: {path}")
    return parse_workbook(path.read_bytes(), max_rows=max_rows)
