"""
Record Transformer - converts loosely-typed rows into typed entity records.

Field population is header driven: every header (or JSON key) is matched
against an ordered list of substring rules for the target entity type and
the first matching rule decides the field. Blank cells never populate a
field. Specialized parsers handle shift-time ranges, spreadsheet date
serials and identifiers embedded in free-text notes.
"""

import hashlib
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from services.classifier_service import EntityType
from services.errors import TransformSkip
from services.workbook_service import Sheet, is_blank

logger = logging.getLogger(__name__)

EXCEL_EPOCH = date(1899, 12, 30)

DATE_FORMATS = (
    '%Y-%m-%d',
    '%m/%d/%Y',
    '%m/%d/%y',
    '%Y/%m/%d',
    '%m-%d-%Y',
    '%d-%b-%Y',
    '%b %d, %Y',
    '%B %d, %Y',
    '%Y%m%d',
)

SHIFT_RANGE_PATTERN = re.compile(
    r'(\d{1,2}):(\d{2})\s*(am|pm)\s*[-–]\s*(\d{1,2}):(\d{2})\s*(am|pm)',
    re.IGNORECASE
)
CLOCK_PATTERN = re.compile(r'^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*(am|pm)?\s*$', re.IGNORECASE)
EMPLOYEE_ID_PATTERN = re.compile(r'Employee ID:\s*(\d+)', re.IGNORECASE)
ROLE_PATTERN = re.compile(r'Role:\s*([^,;\n]+)', re.IGNORECASE)
STORE_NAME_CITY_PATTERN = re.compile(r' - ([^(]+)')
STORE_LABEL_PATTERN = re.compile(r'(?:store|site)[\s_]*(?:#|no\.?|num(?:ber)?|id|code)?')
INTEGRAL_DECIMAL_PATTERN = re.compile(r'\.0+$')

CONTACT_STATUSES = ('active', 'inactive')
CONTACT_PRIORITIES = ('low', 'medium', 'high')
UNKNOWN = 'Unknown'

# (substrings that must all appear in the lowercased header, target field).
# A compiled pattern instead of substrings must match the whole header.
# A target of None marks a header as deliberately ignored.
FieldRule = Tuple[Union[Tuple[str, ...], re.Pattern], Optional[str]]

STORE_FIELD_RULES: List[FieldRule] = [
    (('store', 'number'), 'store_number'),
    (('store', '#'), 'store_number'),
    (('site', 'number'), 'store_number'),
    (('address',), 'address'),
    (('city',), 'city'),
    (('state',), 'state'),
    (('zip',), 'zip_code'),
    (('postal',), 'zip_code'),
    (('phone',), 'phone'),
    (('active',), 'is_active'),
    (('name',), 'name'),
    (STORE_LABEL_PATTERN, 'store_number'),
]

CONTACT_FIELD_RULES: List[FieldRule] = [
    (('employee', 'id'), 'employee_id'),
    (('employee', '#'), 'employee_id'),
    (('phone',), 'phone'),
    (('mobile',), 'phone'),
    (('email',), 'email'),
    (('status',), 'status'),
    (('priority',), 'priority'),
    (('note',), 'notes'),
    (('first', 'name'), 'first_name'),
    (('last', 'name'), 'last_name'),
    (('name',), 'name'),
    (('employee',), 'name'),
    (('contact',), 'name'),
]

SCHEDULE_FIELD_RULES: List[FieldRule] = [
    (('employee', 'id'), 'employee_id'),
    (('employee', '#'), 'employee_id'),
    (('employee', 'type'), 'employee_type'),
    (('store', 'name'), None),
    (('store', 'number'), 'store_number'),
    (('store', '#'), 'store_number'),
    (STORE_LABEL_PATTERN, 'store_number'),
    (('date',), 'date'),
    (('hours',), 'scheduled_hours'),
    (('start',), 'start_time'),
    (('end',), 'end_time'),
    (('shift',), 'shift_time'),
    (('time',), 'shift_time'),
    (('role',), 'role'),
    (('position',), 'role'),
    (('type',), 'employee_type'),
    (('note',), 'notes'),
    (('comment',), 'notes'),
    (('remark',), 'notes'),
    (('first', 'name'), 'first_name'),
    (('last', 'name'), 'last_name'),
    (('employee',), 'employee_name'),
    (('name',), 'employee_name'),
]

FIELD_RULES: Dict[EntityType, List[FieldRule]] = {
    EntityType.STORE: STORE_FIELD_RULES,
    EntityType.CONTACT: CONTACT_FIELD_RULES,
    EntityType.SCHEDULE_ENTRY: SCHEDULE_FIELD_RULES,
}


@dataclass
class StoreRecord:
    store_number: int
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True


@dataclass
class ContactRecord:
    name: str
    phone: str
    email: Optional[str] = None
    status: str = 'active'
    priority: str = 'medium'
    notes: Optional[str] = None


@dataclass
class ScheduleRecord:
    store_number: int
    date: str
    employee_name: str
    employee_id: str = ''
    role: str = UNKNOWN
    employee_type: str = UNKNOWN
    shift_time: str = ''
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    scheduled_hours: float = 0.0
    notes: Optional[str] = None


@dataclass
class TransformResult:
    """Records built from one sheet or input section."""

    entity_type: EntityType
    records: List[Any] = field(default_factory=list)
    dropped: int = 0   # rows with no populated field
    skipped: int = 0   # rows missing a required key field
    columns_mapped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.entity_type.table_name,
            'records': len(self.records),
            'dropped': self.dropped,
            'skipped': self.skipped,
            'columns_mapped': self.columns_mapped,
        }


@dataclass
class TransformedDataset:
    """Typed records for every entity type, ready to load."""

    stores: List[StoreRecord] = field(default_factory=list)
    contacts: List[ContactRecord] = field(default_factory=list)
    schedules: List[ScheduleRecord] = field(default_factory=list)
    skipped: Dict[str, int] = field(default_factory=dict)

    def records_for(self, entity_type: EntityType) -> List[Any]:
        return {
            EntityType.STORE: self.stores,
            EntityType.CONTACT: self.contacts,
            EntityType.SCHEDULE_ENTRY: self.schedules,
        }[entity_type]

    def add(self, result: TransformResult):
        self.records_for(result.entity_type).extend(result.records)
        key = result.entity_type.table_name
        self.skipped[key] = self.skipped.get(key, 0) + result.skipped + result.dropped

    def counts(self) -> Dict[str, int]:
        return {
            'stores': len(self.stores),
            'contacts': len(self.contacts),
            'schedules': len(self.schedules),
        }


# ============================================================================
# Field parsers
# ============================================================================

def _to_24_hour(hour: int, minute: int, period: Optional[str]) -> Optional[str]:
    if minute > 59:
        return None
    if period:
        period = period.lower()
        if hour < 1 or hour > 12:
            return None
        if period == 'pm' and hour != 12:
            hour += 12
        elif period == 'am' and hour == 12:
            hour = 0
    elif hour > 23:
        return None
    return f"{hour:02d}:{minute:02d}:00"


def parse_shift_time(text: Any) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a shift range like "9:00am - 5:00pm" into 24-hour start/end times.

    Returns ("09:00:00", "17:00:00") for the example above, and (None, None)
    when the text does not contain a range in that shape.
    """
    if text is None:
        return None, None
    match = SHIFT_RANGE_PATTERN.search(str(text))
    if not match:
        return None, None

    start = _to_24_hour(int(match.group(1)), int(match.group(2)), match.group(3))
    end = _to_24_hour(int(match.group(4)), int(match.group(5)), match.group(6))
    if start is None or end is None:
        return None, None
    return start, end


def parse_clock_time(value: Any) -> Optional[str]:
    """Parse a single clock value ("9:00am", "17:30", time objects) to HH:MM:00."""
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return f"{value.hour:02d}:{value.minute:02d}:00"
    match = CLOCK_PATTERN.match(str(value))
    if not match:
        return None
    return _to_24_hour(int(match.group(1)), int(match.group(2)), match.group(3))


def format_clock(value: Any) -> str:
    """Render a start/end cell the way shift ranges are written ("9:00am")."""
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        hour = value.hour % 12 or 12
        period = 'am' if value.hour < 12 else 'pm'
        return f"{hour}:{value.minute:02d}{period}"
    return str(value).strip()


def serial_to_date(serial: float) -> date:
    """Convert a spreadsheet date serial (1899-12-30 epoch) to a calendar date."""
    return EXCEL_EPOCH + timedelta(days=int(serial))


def parse_date(value: Any) -> Optional[str]:
    """
    Normalize a date cell to YYYY-MM-DD.

    Accepts date/datetime objects, numeric date serials and common date
    strings. Anything else is returned verbatim rather than discarded.
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if isinstance(value, float) and math.isnan(value):
            return None
        try:
            return serial_to_date(value).isoformat()
        except OverflowError:
            return str(value)

    raw = str(value).strip()
    if raw.isascii() and raw.isdigit() and len(raw) != 8:
        try:
            return serial_to_date(int(raw)).isoformat()
        except OverflowError:
            return raw

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw).date().isoformat()
    except ValueError:
        pass

    logger.debug(f"Unrecognized date {raw!r}, keeping raw value")
    return raw


def extract_employee_id(notes: Optional[str]) -> Optional[str]:
    """Recover "Employee ID: <digits>" from free-text notes."""
    if not notes:
        return None
    match = EMPLOYEE_ID_PATTERN.search(notes)
    return match.group(1) if match else None


def extract_role(notes: Optional[str]) -> Optional[str]:
    """Recover "Role: <label>" (up to the next delimiter) from free-text notes."""
    if not notes:
        return None
    match = ROLE_PATTERN.search(notes)
    if not match:
        return None
    return match.group(1).strip() or None


def normalize_phone(value: Any) -> Optional[str]:
    """Strip formatting from a phone number, keeping a leading + and digits."""
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    raw = str(value).strip()
    digits = re.sub(r'\D', '', raw)
    if not digits:
        return None
    return f"+{digits}" if raw.startswith('+') else digits


def parse_store_number(value: Any) -> Optional[int]:
    """Read a positive store number from ints, floats or labels like "Store #1001"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            return None
        number = int(value)
    else:
        # "1001.0" is a float cell rendered as text; every other non-digit is dropped
        text = INTEGRAL_DECIMAL_PATTERN.sub('', str(value).strip())
        digits = re.sub(r'[^0-9]', '', text)
        if not digits:
            return None
        number = int(digits)
    return number if number > 0 else None


def parse_hours(value: Any) -> float:
    if is_blank(value) or isinstance(value, bool):
        return 0.0
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(hours) or hours < 0:
        return 0.0
    return hours


def parse_bool(value: Any, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ('true', 'yes', 'y', '1', 'active'):
        return True
    if text in ('false', 'no', 'n', '0', 'inactive', 'closed'):
        return False
    return default


def city_from_store_name(name: Optional[str]) -> Optional[str]:
    """Derive the city from names shaped like "Kinney Drugs - Potsdam (Main)"."""
    if not name:
        return None
    match = STORE_NAME_CITY_PATTERN.search(name)
    if not match:
        return None
    return match.group(1).strip() or None


def placeholder_phone(name: str, employee_id: Optional[str]) -> str:
    """Deterministic contact key for rows that carry no phone number."""
    if employee_id:
        return f"EMP-{employee_id}"
    digest = hashlib.sha1(' '.join(name.lower().split()).encode('utf-8')).hexdigest()
    return f"NAME-{digest[:12]}"


def _text(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value).strip()


def _choice(value: Any, allowed: Sequence[str], default: str) -> str:
    text = _text(value)
    if text and text.lower() in allowed:
        return text.lower()
    return default


def _person_name(fields: Dict[str, Any], key: str) -> Optional[str]:
    name = _text(fields.get(key))
    if name:
        return name
    parts = [_text(fields.get('first_name')), _text(fields.get('last_name'))]
    composed = ' '.join(p for p in parts if p)
    return composed or None


# ============================================================================
# Header mapping
# ============================================================================

def match_field(header: str, rules: List[FieldRule]) -> Optional[str]:
    """Return the field for a header under the first matching rule."""
    key = header.strip().lower()
    if not key:
        return None
    for matcher, target in rules:
        if isinstance(matcher, re.Pattern):
            if matcher.fullmatch(key):
                return target
        elif all(part in key for part in matcher):
            return target
    return None


def resolve_columns(headers: Sequence[str], entity_type: EntityType) -> List[Optional[str]]:
    """Map every header position to a field name (None when unmapped)."""
    rules = FIELD_RULES[entity_type]
    return [match_field(h, rules) for h in headers]


def map_row(columns: Sequence[Optional[str]], row: Sequence[Any]) -> Dict[str, Any]:
    """Populate fields from one row; the first non-blank value for a field wins."""
    fields: Dict[str, Any] = {}
    for target, value in zip(columns, row):
        if target is None or target in fields or is_blank(value):
            continue
        fields[target] = value.strip() if isinstance(value, str) else value
    return fields


# ============================================================================
# Record builders
# ============================================================================

def build_store(fields: Dict[str, Any]) -> StoreRecord:
    if not fields:
        raise TransformSkip('empty row', empty=True)
    store_number = parse_store_number(fields.get('store_number'))
    if store_number is None:
        raise TransformSkip('missing store number')

    name = _text(fields.get('name')) or f"Store {store_number}"
    return StoreRecord(
        store_number=store_number,
        name=name,
        address=_text(fields.get('address')),
        city=_text(fields.get('city')) or city_from_store_name(name),
        state=_text(fields.get('state')),
        zip_code=_text(fields.get('zip_code')),
        phone=normalize_phone(fields.get('phone')),
        is_active=parse_bool(fields.get('is_active'), default=True) if 'is_active' in fields else True,
    )


def build_contact(fields: Dict[str, Any]) -> ContactRecord:
    if not fields:
        raise TransformSkip('empty row', empty=True)
    name = _person_name(fields, 'name')
    if not name:
        raise TransformSkip('missing contact name')

    notes = _text(fields.get('notes'))
    employee_id = _text(fields.get('employee_id')) or extract_employee_id(notes)
    phone = normalize_phone(fields.get('phone')) or placeholder_phone(name, employee_id)
    email = _text(fields.get('email'))

    return ContactRecord(
        name=name,
        phone=phone,
        email=email.lower() if email else None,
        status=_choice(fields.get('status'), CONTACT_STATUSES, 'active'),
        priority=_choice(fields.get('priority'), CONTACT_PRIORITIES, 'medium'),
        notes=notes,
    )


def build_schedule(fields: Dict[str, Any]) -> ScheduleRecord:
    if not fields:
        raise TransformSkip('empty row', empty=True)

    store_number = parse_store_number(fields.get('store_number'))
    shift_date = parse_date(fields.get('date'))
    employee_name = _person_name(fields, 'employee_name')
    if store_number is None or not shift_date or not employee_name:
        raise TransformSkip('missing store number, date or employee name')

    notes = _text(fields.get('notes'))
    start_raw = fields.get('start_time')
    end_raw = fields.get('end_time')

    shift_time = _text(fields.get('shift_time'))
    if not shift_time and (start_raw is not None or end_raw is not None):
        shift_time = ' - '.join(format_clock(v) for v in (start_raw, end_raw) if v is not None)

    start_time, end_time = parse_shift_time(shift_time)
    if start_time is None and end_time is None:
        start_time = parse_clock_time(start_raw)
        end_time = parse_clock_time(end_raw)

    return ScheduleRecord(
        store_number=store_number,
        date=shift_date,
        employee_name=employee_name,
        employee_id=_text(fields.get('employee_id')) or extract_employee_id(notes) or '',
        role=_text(fields.get('role')) or extract_role(notes) or UNKNOWN,
        employee_type=_text(fields.get('employee_type')) or UNKNOWN,
        shift_time=shift_time or '',
        start_time=start_time,
        end_time=end_time,
        scheduled_hours=parse_hours(fields.get('scheduled_hours')),
        notes=notes,
    )


BUILDERS: Dict[EntityType, Callable[[Dict[str, Any]], Any]] = {
    EntityType.STORE: build_store,
    EntityType.CONTACT: build_contact,
    EntityType.SCHEDULE_ENTRY: build_schedule,
}


# ============================================================================
# Sheet / section transformation
# ============================================================================

def _build_into(result: TransformResult, fields: Dict[str, Any]):
    try:
        result.records.append(BUILDERS[result.entity_type](fields))
    except TransformSkip as skip:
        if skip.empty:
            result.dropped += 1
        else:
            result.skipped += 1
            logger.debug(f"Skipping {result.entity_type.value} row: {skip.reason} ({fields})")


def transform_rows(entity_type: EntityType, headers: Sequence[str],
                   rows: Iterable[Sequence[Any]]) -> TransformResult:
    """
    Build typed records from header + rows.

    Args:
        entity_type: Target entity type
        headers: Header names (blank headers are ignored)
        rows: Data rows aligned with headers

    Returns:
        TransformResult with records and drop/skip counts
    """
    columns = resolve_columns(headers, entity_type)
    result = TransformResult(
        entity_type=entity_type,
        columns_mapped=sum(1 for c in columns if c is not None)
    )
    for row in rows:
        _build_into(result, map_row(columns, row))

    logger.info(f"Transformed {len(result.records)} {entity_type.value} records "
                f"({result.dropped} empty, {result.skipped} skipped)")
    return result


def transform_sheet(sheet: Sheet, entity_type: EntityType) -> TransformResult:
    """Build typed records from a classified sheet."""
    return transform_rows(entity_type, sheet.headers, sheet.rows)


def transform_records(entity_type: EntityType, objects: Iterable[Dict[str, Any]]) -> TransformResult:
    """Build typed records from JSON objects; keys are matched like headers."""
    result = TransformResult(entity_type=entity_type)
    column_cache: Dict[Tuple[str, ...], List[Optional[str]]] = {}
    mapped = set()

    for obj in objects:
        keys = tuple(str(k) for k in obj.keys())
        columns = column_cache.get(keys)
        if columns is None:
            columns = column_cache[keys] = resolve_columns(keys, entity_type)
            mapped.update(k for k, c in zip(keys, columns) if c is not None)
        _build_into(result, map_row(columns, list(obj.values())))

    result.columns_mapped = len(mapped)
    logger.info(f"Transformed {len(result.records)} {entity_type.value} records "
                f"({result.dropped} empty, {result.skipped} skipped)")
    return result
