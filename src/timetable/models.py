"""Pydantic models for schedule data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
"""

from pydantic import BaseModel, ConfigDict, Field

INVALID_DATE = "Invalid Date"


class ScheduleEntry(BaseModel):
    """One scheduled occupancy of a room at a time.

    Parsed from a single spreadsheet row. Serialized with camelCase keys
    (``dayOfWeek``) so the stored slot keeps the browser-era format.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    date: str  # "2024-09-01", or INVALID_DATE when the source was unparseable
    start: str = ""  # "09:00"
    end: str = ""  # "10:30"
    day_of_week: str = Field(default="", alias="dayOfWeek")
    discipline: str = ""
    type: str = ""  # kind of work, e.g. "Lecture", "Lab"
    group: str = ""  # student group / contingent
    building: str = ""
    room: str = ""
    teacher: str = ""

    def to_storage(self) -> dict[str, str]:
        """Dump with the storage (camelCase) keys."""
        return self.model_dump(by_alias=True)


class SelectorOptions(BaseModel):
    """Distinct building and date values offered by the selectors."""

    buildings: list[str] = Field(default_factory=list)
    dates: list[str] = Field(default_factory=list)


class GridCell(BaseModel):
    """One (room, start) slot of the grid."""

    room: str
    entry: ScheduleEntry | None = None
    ignored: int = 0  # further entries for the same slot that are not shown

    @property
    def occupied(self) -> bool:
        return self.entry is not None


class GridRow(BaseModel):
    """One period of the grid; cells follow GridModel.rooms order."""

    period: int  # 1-based position after time sorting
    start: str
    cells: list[GridCell] = Field(default_factory=list)


class GridModel(BaseModel):
    """Timetable for one building on one date: rows are periods, columns rooms."""

    building: str
    date: str
    rooms: list[str] = Field(default_factory=list)
    rows: list[GridRow] = Field(default_factory=list)
    empty: bool = False


class ViewState(BaseModel):
    """Everything the presentation layer needs to draw the page."""

    status: str = ""
    has_data: bool = False
    show_replace: bool = False
    options: SelectorOptions = Field(default_factory=SelectorOptions)
    building: str | None = None
    date: str | None = None
    grid: GridModel | None = None


class CachedResponse(BaseModel):
    """Body and metadata of an asset served by the offline cache."""

    url: str
    status: int = 200
    content_type: str = "application/octet-stream"
    content: bytes = b""
    from_cache: bool = False
