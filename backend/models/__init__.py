"""Models package for the roster import system."""
from backend.models.schema import Base, Store, Contact, ScheduleEntry
from backend.models.job import ImportRun, ImportProgress, ImportStatus

__all__ = [
    'Base', 'Store', 'Contact', 'ScheduleEntry',
    'ImportRun', 'ImportProgress', 'ImportStatus'
]
