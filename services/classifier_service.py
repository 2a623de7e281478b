"""
Schema Classifier - maps parsed sheets onto target entity types.

Classification is a coarse, ordered keyword match over the sheet name and
its headers. Store signals outrank schedule signals, which outrank generic
person signals, because a schedule sheet also carries employee names.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional, Tuple

from services.workbook_service import Sheet

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Target entity types and the tables they load into."""
    STORE = 'Store'
    CONTACT = 'Contact'
    SCHEDULE_ENTRY = 'ScheduleEntry'

    @property
    def table_name(self) -> str:
        return {
            EntityType.STORE: 'stores',
            EntityType.CONTACT: 'contacts',
            EntityType.SCHEDULE_ENTRY: 'store_schedules',
        }[self]


def _mentions(*keywords: str) -> Callable[[Sheet], bool]:
    def predicate(sheet: Sheet) -> bool:
        texts = [sheet.name.lower()] + [h.lower() for h in sheet.headers]
        return any(kw in t for kw in keywords for t in texts)
    return predicate


# Evaluated in order; first match wins
CLASSIFICATION_RULES: List[Tuple[Callable[[Sheet], bool], EntityType]] = [
    (_mentions('store'), EntityType.STORE),
    (_mentions('shift', 'schedule', 'date'), EntityType.SCHEDULE_ENTRY),
    (_mentions('employee', 'contact', 'name', 'phone', 'email'), EntityType.CONTACT),
]


def classify_sheet(sheet: Sheet) -> Optional[EntityType]:
    """
    Return the entity type for a sheet, or None when unclassified.

    Args:
        sheet: Parsed sheet (name and headers are inspected)
    """
    for predicate, entity_type in CLASSIFICATION_RULES:
        if predicate(sheet):
            logger.debug(f"Sheet '{sheet.name}' classified as {entity_type.value}")
            return entity_type

    logger.info(f"Sheet '{sheet.name}' matched no entity type (headers: {sheet.headers})")
    return None
