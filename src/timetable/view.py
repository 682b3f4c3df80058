"""Selector options and the timetable grid for one building and date.

Grid layout:
  - columns: distinct rooms, sorted as text
  - rows: distinct start times, sorted by clock time ("9:00" < "10:00")
  - row label: period number 1..n, purely positional after sorting
  - cell: discipline + group of the entry in that (room, start) slot

Everything spreadsheet-supplied is HTML-escaped before it lands in markup.
"""

import html
import re

from src.timetable.logging import get_logger
from src.timetable.models import (
    GridCell,
    GridModel,
    GridRow,
    ScheduleEntry,
    SelectorOptions,
)

log = get_logger(__name__)

FREE_LABEL = "Free"
NO_CLASSES_MESSAGE = "No classes for the selected date."
UNKNOWN_BUILDING_LABEL = "Unknown building"

_CLOCK_RE = re.compile(r"^\s*(\d{1,2})\s*:\s*(\d{1,2})")


def escape_html(text: str) -> str:
    """Escape &, <, >, " and ' for safe insertion into markup."""
    return html.escape(text, quote=True)


def selector_options(entries: list[ScheduleEntry]) -> SelectorOptions:
    """Distinct buildings and dates, each sorted as text.

    Dates are canonical YYYY-MM-DD, so text order is chronological.
    """
    return SelectorOptions(
        buildings=sorted({entry.building for entry in entries}),
        dates=sorted({entry.date for entry in entries}),
    )


def start_minutes(value: str) -> int | None:
    """Minutes since midnight for an "HH:MM" string, None if it isn't one."""
    match = _CLOCK_RE.match(value)
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def _start_sort_key(value: str) -> tuple[int, int, str]:
    minutes = start_minutes(value)
    if minutes is None:
        return (1, 0, value)
    return (0, minutes, value)


def build_grid(entries: list[ScheduleEntry], building: str, date: str) -> GridModel:
    """Build the timetable grid for one building on one date.

    When several entries share a (room, start) slot the first one in upload
    order is shown and the rest are counted in GridCell.ignored.
    """
    daily = [e for e in entries if e.building == building and e.date == date]
    if not daily:
        return GridModel(building=building, date=date, empty=True)

    rooms = sorted({e.room for e in daily})
    starts = sorted({e.start for e in daily}, key=_start_sort_key)

    slots: dict[tuple[str, str], GridCell] = {}
    for entry in daily:
        key = (entry.room, entry.start)
        cell = slots.get(key)
        if cell is None:
            slots[key] = GridCell(room=entry.room, entry=entry)
        else:
            cell.ignored += 1

    duplicates = sum(cell.ignored for cell in slots.values())
    if duplicates:
        log.warning(
            "duplicate_slots_ignored",
            building=building,
            date=date,
            ignored=duplicates,
        )

    rows = [
        GridRow(
            period=period,
            start=start,
            cells=[slots.get((room, start), GridCell(room=room)) for room in rooms],
        )
        for period, start in enumerate(starts, start=1)
    ]
    return GridModel(building=building, date=date, rooms=rooms, rows=rows)


def render_grid_html(grid: GridModel) -> str:
    """Render the grid as an HTML table (or the no-classes placeholder)."""
    if grid.empty:
        return f"<p>{escape_html(NO_CLASSES_MESSAGE)}</p>"

    parts = ['<table class="schedule-table"><thead><tr>', "<th>Period</th><th>Time</th>"]
    for room in grid.rooms:
        parts.append(f"<th>{escape_html(room)}</th>")
    parts.append("</tr></thead><tbody>")

    for row in grid.rows:
        parts.append(f"<tr><td>{row.period}</td><td>{escape_html(row.start)}</td>")
        for cell in row.cells:
            if cell.entry is None:
                parts.append(f'<td class="free">{FREE_LABEL}</td>')
                continue
            parts.append(
                '<td class="occupied">'
                f'<div class="subject">{escape_html(cell.entry.discipline)}</div>'
                f'<div class="group">{escape_html(cell.entry.group)}</div>'
                "</td>"
            )
        parts.append("</tr>")

    parts.append("</tbody></table>")
    return "".join(parts)


def render_options_html(values: list[str], empty_label: str = "") -> str:
    """Render <option> elements; empty values are shown as empty_label."""
    return "".join(
        f'<option value="{escape_html(value)}">{escape_html(value or empty_label)}</option>'
        for value in values
    )


def render_page_html(grid: GridModel, options: SelectorOptions) -> str:
    """Standalone HTML document with the selectors and the grid."""
    buildings = render_options_html(options.buildings, UNKNOWN_BUILDING_LABEL)
    dates = render_options_html(options.dates)
    title = escape_html(f"{grid.building or UNKNOWN_BUILDING_LABEL} - {grid.date}")
    return (
        "<!DOCTYPE html>\n"
        '<html><head><meta charset="utf-8">'
        f"<title>{title}</title></head><body>"
        '<div id="controls">'
        f'<select id="buildingSelect">{buildings}</select>'
        f'<select id="dateSelect">{dates}</select>'
        "</div>"
        f'<div id="schedule">{render_grid_html(grid)}</div>'
        "</body></html>\n"
    )


def format_grid_table(grid: GridModel) -> str:
    """Format the grid as a plain-text table.

    Columns: Period | Time | <room> ...
    """
    if grid.empty:
        return NO_CLASSES_MESSAGE

    headers = ["Period", "Time", *grid.rooms]
    rows: list[list[str]] = []
    for row in grid.rows:
        cells = [str(row.period), row.start]
        for cell in row.cells:
            if cell.entry is None:
                cells.append(FREE_LABEL)
            else:
                text = " / ".join(p for p in (cell.entry.discipline, cell.entry.group) if p)
                cells.append(text or "-")
        rows.append(cells)

    widths = [len(h) for h in headers]
    for row_cells in rows:
        for i, cell_text in enumerate(row_cells):
            widths[i] = max(widths[i], len(cell_text))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [
        " | ".join(cell_text.ljust(widths[i]) for i, cell_text in enumerate(row_cells))
        for row_cells in rows
    ]
    return "\n".join([header_line, separator, *row_lines])
