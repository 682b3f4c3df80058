"""Classroom timetable built from an uploaded schedule spreadsheet.

Ingests the first sheet of a workbook into schedule entries, keeps them in a
single local storage slot, and renders a rooms-by-periods grid per building
and date. Static files can be kept available offline with AssetCache.
"""

from src.timetable.cache import AssetCache
from src.timetable.models import GridModel, ScheduleEntry
from src.timetable.service import ScheduleService
from src.timetable.store import FileKeyValueStore, MemoryKeyValueStore, ScheduleStore

__all__ = [
    "AssetCache",
    "FileKeyValueStore",
    "GridModel",
    "MemoryKeyValueStore",
    "ScheduleEntry",
    "ScheduleService",
    "ScheduleStore",
]
