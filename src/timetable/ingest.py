"""Spreadsheet ingestion - turns an uploaded schedule workbook into entries.

Expected sheet layout (first sheet only):

    <title rows, notes, anything>
    Дата | День недели | Время начала | Время окончания | Дисциплина | ...
    01.09.2024 | Пн | 09:00 | 10:30 | Математика | ...
    ...

The header row is the first row holding both a date label and a start time
label. Columns are located by exact header text (see HEADER_LABELS), so the
column order and any extra columns don't matter.

Date cells come in three shapes depending on how the sheet was produced:
  - native dates (openpyxl or xlrd already converted the serial number),
  - raw serial numbers (days since 1899-12-30, the legacy spreadsheet epoch),
  - text such as "01.09.2024" or "01/09/2024" (day first).
"""

import csv
import io
import math
import re
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, BinaryIO

from dateutil import parser as date_parser
from openpyxl import load_workbook
import xlrd

from src.timetable.errors import HeaderNotFoundError, IngestError, ParseFailureError
from src.timetable.logging import get_logger
from src.timetable.models import INVALID_DATE, ScheduleEntry

log = get_logger(__name__)

Sheet = list[list[Any]]

# Canonical field -> accepted header labels. The template's Russian labels
# come first; English labels are accepted for translated templates.
HEADER_LABELS: dict[str, tuple[str, ...]] = {
    "date": ("Дата", "Date"),
    "start": ("Время начала", "Start Time"),
    "end": ("Время окончания", "End Time"),
    "day_of_week": ("День недели", "Day of Week"),
    "discipline": ("Дисциплина", "Discipline"),
    "type": ("Вид работы", "Type"),
    "group": ("Контингент", "Group"),
    "building": ("Корпус", "Building"),
    "room": ("Аудитория", "Room"),
    "teacher": ("Преподаватель", "Teacher"),
}

# A header row is only recognized when all of these are mapped
REQUIRED_FIELDS: tuple[str, ...] = ("date", "start")

TEXT_FIELDS: tuple[str, ...] = tuple(f for f in HEADER_LABELS if f != "date")

EXCEL_EPOCH = date(1899, 12, 30)

_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"
_XLSX_SUFFIXES = frozenset({".xlsx", ".xlsm", ".xltx", ".xltm"})

_DATE_SEPARATOR_RE = re.compile(r"[./]")
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------
def read_workbook(
    source: str | Path | bytes | BinaryIO, filename: str | None = None
) -> list[Sheet]:
    """Read a spreadsheet into a list of sheets of cell values.

    Args:
        source: Path to the file, its raw bytes, or a binary file object.
        filename: Original file name, used to pick the format when source
            is bytes or a stream.

    Returns:
        Sheets in workbook order; each sheet is a list of rows, each row a
        list of cell values with empty cells as "".

    Raises:
        ParseFailureError: If the format is not supported.
        Reader errors (corrupt zip, bad OLE stream) propagate unchanged.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        filename = filename or path.name
        data = path.read_bytes()
    elif isinstance(source, bytes):
        data = source
    else:
        data = source.read()

    suffix = Path(filename).suffix.lower() if filename else ""

    if suffix == ".xls" or (suffix not in _XLSX_SUFFIXES and data.startswith(_OLE_MAGIC)):
        return _read_xls(data)
    if suffix in _XLSX_SUFFIXES or (not suffix and data.startswith(_ZIP_MAGIC)):
        return _read_xlsx(data)
    if suffix in ("", ".csv", ".txt"):
        return [_read_csv(data)]

    raise ParseFailureError(f"Unsupported spreadsheet format {suffix!r}")


def _read_xlsx(data: bytes) -> list[Sheet]:
    workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheets: list[Sheet] = []
        for worksheet in workbook.worksheets:
            sheets.append(
                [
                    ["" if value is None else value for value in row]
                    for row in worksheet.iter_rows(values_only=True)
                ]
            )
    finally:
        workbook.close()

    log.debug("workbook_read", format="xlsx", sheets=len(sheets))
    return sheets


def _xls_value(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return ""
    if cell.ctype == xlrd.XL_CELL_DATE:
        # Serial below one day is a time-only cell
        if cell.value < 1:
            return xlrd.xldate.xldate_as_datetime(cell.value, datemode).time()
        return xlrd.xldate.xldate_as_datetime(cell.value, datemode)
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    return cell.value


def _read_xls(data: bytes) -> list[Sheet]:
    book = xlrd.open_workbook(file_contents=data, on_demand=True)
    try:
        sheets: list[Sheet] = []
        for index in range(book.nsheets):
            sheet = book.sheet_by_index(index)
            sheets.append(
                [[_xls_value(cell, book.datemode) for cell in row] for row in sheet.get_rows()]
            )
    finally:
        book.release_resources()

    log.debug("workbook_read", format="xls", sheets=len(sheets))
    return sheets


def _read_csv(data: bytes) -> Sheet:
    text = data.decode("utf-8-sig")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel

    rows = [list(row) for row in csv.reader(io.StringIO(text), dialect)]
    log.debug("workbook_read", format="csv", rows=len(rows))
    return rows


# ---------------------------------------------------------------------------
# Header detection
# ---------------------------------------------------------------------------
def _labels_in(row: list[Any]) -> set[str]:
    # Detection is exact; build_header_map() trims once the row is found
    return {cell for cell in row if isinstance(cell, str)}


def find_header_row(rows: Sheet) -> int | None:
    """Return the index of the first row holding every required label."""
    for index, row in enumerate(rows):
        labels = _labels_in(row)
        if all(
            any(label in labels for label in HEADER_LABELS[field])
            for field in REQUIRED_FIELDS
        ):
            return index
    return None


def build_header_map(row: list[Any]) -> dict[str, int]:
    """Map canonical field names to column indices for a header row.

    When a field's label appears in several columns the leftmost one wins.
    Fields with no matching column are left out.
    """
    columns: dict[str, int] = {}
    for index, cell in enumerate(row):
        if not isinstance(cell, str):
            continue
        label = cell.strip()
        for field, labels in HEADER_LABELS.items():
            if label in labels and field not in columns:
                columns[field] = index
    return columns


# ---------------------------------------------------------------------------
# Cell normalization
# ---------------------------------------------------------------------------
def _leading_int(text: str) -> int | None:
    match = _LEADING_INT_RE.match(text)
    if not match:
        return None
    try:
        return int(match.group(1))
    except ValueError:
        # More digits than int() accepts
        return None


def _date_from_parts(parts: list[str]) -> str:
    """Combine day, month, year parts; out-of-range days and months roll over.

    "31.02.2024" -> "2024-03-02", "0.03.2024" -> "2024-02-29".
    """
    day, month, year = (_leading_int(part) for part in parts)
    if day is None or month is None or year is None:
        return INVALID_DATE
    # Two-digit years follow spreadsheet convention: 24 -> 1924
    if 0 <= year <= 99:
        year += 1900
    try:
        year, month_index = divmod(year * 12 + month - 1, 12)
        return (date(year, month_index + 1, 1) + timedelta(days=day - 1)).isoformat()
    except (ValueError, OverflowError):
        return INVALID_DATE


def normalize_date(value: Any) -> str:
    """Normalize a date cell to YYYY-MM-DD.

    Unparseable input yields INVALID_DATE rather than an error, so the row
    is kept and the problem stays visible in the date selector.
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return INVALID_DATE
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return INVALID_DATE
        try:
            # Fractional part is the time of day
            return (EXCEL_EPOCH + timedelta(days=math.floor(value))).isoformat()
        except OverflowError:
            return INVALID_DATE
    if not isinstance(value, str):
        return INVALID_DATE

    text = value.strip()
    parts = _DATE_SEPARATOR_RE.split(text)
    if len(parts) == 3:
        return _date_from_parts(parts)

    try:
        return date_parser.parse(text).date().isoformat()
    except (ValueError, OverflowError):
        return INVALID_DATE


def cell_text(value: Any) -> str:
    """Render a cell as trimmed text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, datetime):
        return value.isoformat(sep=" ", timespec="minutes")
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _cell(row: list[Any], index: int | None) -> Any:
    if index is None or index >= len(row):
        return ""
    return row[index]


# ---------------------------------------------------------------------------
# Transform
# ---------------------------------------------------------------------------
def parse_rows(rows: Sheet) -> list[ScheduleEntry]:
    """Turn the rows of one sheet into schedule entries.

    Args:
        rows: Sheet rows, header row included anywhere.

    Returns:
        One entry per row below the header with a non-empty date cell,
        in sheet order. May be empty.

    Raises:
        HeaderNotFoundError: If no row holds the date and start time labels.
    """
    header_index = find_header_row(rows)
    if header_index is None:
        raise HeaderNotFoundError()

    columns = build_header_map(rows[header_index])
    log.debug("header_found", row=header_index, columns=sorted(columns))

    entries: list[ScheduleEntry] = []
    for row in rows[header_index + 1 :]:
        raw_date = _cell(row, columns.get("date"))
        if _is_empty(raw_date):
            continue

        fields = {field: cell_text(_cell(row, columns.get(field))) for field in TEXT_FIELDS}
        entries.append(ScheduleEntry(date=normalize_date(raw_date), **fields))

    invalid = sum(1 for entry in entries if entry.date == INVALID_DATE)
    if invalid:
        log.warning("invalid_dates_found", count=invalid, total=len(entries))

    return entries


def parse_workbook(sheets: list[Sheet]) -> list[ScheduleEntry]:
    """Parse the first sheet of a workbook; other sheets are ignored."""
    if not sheets:
        raise ParseFailureError("Workbook contains no sheets")
    return parse_rows(sheets[0])


def load_entries(
    source: str | Path | bytes | BinaryIO, filename: str | None = None
) -> list[ScheduleEntry]:
    """Read and parse a schedule file in one step.

    Raises:
        HeaderNotFoundError: If the header row is missing.
        ParseFailureError: For any other failure; the cause is chained and logged.
    """
    try:
        entries = parse_workbook(read_workbook(source, filename))
    except HeaderNotFoundError:
        log.warning("header_row_not_found", filename=filename)
        raise
    except IngestError as e:
        log.error("schedule_parse_failed", filename=filename, error=str(e))
        raise
    except Exception as e:
        log.error(
            "schedule_parse_failed",
            filename=filename,
            error=str(e),
            type=type(e).__name__,
        )
        raise ParseFailureError(f"Failed to parse schedule file: {e}") from e

    log.info("schedule_parsed", filename=filename, entries=len(entries))
    return entries
