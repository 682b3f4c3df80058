"""ScheduleService - the one object the presentation layer talks to.

Wires ingestion, the schedule slot and the view together. The store is
injected, so tests and embedders can swap the backend.
"""

from pathlib import Path
from typing import BinaryIO

from src.timetable.config import TimetableConfig
from src.timetable.ingest import load_entries
from src.timetable.logging import get_logger
from src.timetable.models import GridModel, ScheduleEntry, ViewState
from src.timetable.store import FileKeyValueStore, ScheduleStore
from src.timetable.view import build_grid, selector_options

logger = get_logger(__name__)

UPLOAD_PROMPT = "Upload a schedule file."
NO_DATA_MESSAGE = "The schedule file contains no data."


class ScheduleService:
    """Upload, read, clear and render the stored schedule."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    @classmethod
    def from_config(cls, config: TimetableConfig) -> "ScheduleService":
        """Build a service backed by the on-disk store from configuration."""
        backend = FileKeyValueStore(config.data_dir)
        return cls(ScheduleStore(backend, slot=config.schedule_slot))

    def ingest(
        self, source: str | Path | bytes | BinaryIO, filename: str | None = None
    ) -> list[ScheduleEntry]:
        """Parse a schedule file and replace the stored schedule with it.

        Returns:
            The stored entries. An empty list is a successful upload of a
            file with no data rows.

        Raises:
            HeaderNotFoundError: If the header row is missing.
            ParseFailureError: For any other parse failure.
            In both cases the previous schedule stays in place.
        """
        entries = load_entries(source, filename)
        self.store.save(entries)
        logger.info("schedule_ingested", filename=filename, entries=len(entries))
        return entries

    def get_entries(self) -> list[ScheduleEntry] | None:
        """Stored entries, or None when nothing has been uploaded."""
        return self.store.load()

    def clear(self) -> None:
        """Forget the stored schedule."""
        self.store.clear()

    def render_grid(self, building: str, date: str) -> GridModel:
        """Grid for one building and date, read fresh from the store."""
        return build_grid(self.get_entries() or [], building, date)

    def view_state(self, building: str | None = None, date: str | None = None) -> ViewState:
        """Derive the full page state from the store.

        Unknown or missing selections fall back to the first option.
        """
        entries = self.get_entries()
        if entries is None:
            return ViewState(status=UPLOAD_PROMPT)
        if not entries:
            return ViewState(status=NO_DATA_MESSAGE)

        options = selector_options(entries)
        if building not in options.buildings:
            building = options.buildings[0]
        if date not in options.dates:
            date = options.dates[0]

        return ViewState(
            has_data=True,
            show_replace=True,
            options=options,
            building=building,
            date=date,
            grid=build_grid(entries, building, date),
        )
