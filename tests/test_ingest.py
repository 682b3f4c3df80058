from datetime import date, datetime, time
from unittest.mock import Mock

import pytest
import xlrd
from xlrd import (
    XL_CELL_BLANK,
    XL_CELL_DATE,
    XL_CELL_EMPTY,
    XL_CELL_ERROR,
    XL_CELL_NUMBER,
    XL_CELL_TEXT,
)
from xlrd.sheet import Cell

from src.timetable.errors import HeaderNotFoundError, ParseFailureError
from src.timetable.ingest import (
    build_header_map,
    cell_text,
    find_header_row,
    load_entries,
    normalize_date,
    parse_rows,
    parse_workbook,
    read_workbook,
)
from src.timetable.models import INVALID_DATE


class TestNormalizeDate:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2024-09-01", "2024-09-01"),
            (2, "1900-01-01"),
            (45536, "2024-09-01"),
            (45536.75, "2024-09-01"),
            ("01.09.2024", "2024-09-01"),
            ("01/09/2024", "2024-09-01"),
            (" 1.9.2024 ", "2024-09-01"),
            ("1.9.24", "1924-09-01"),
            ("31.02.2024", "2024-03-02"),
            ("0.03.2024", "2024-02-29"),
            ("01.13.2024", "2025-01-01"),
            (datetime(2024, 9, 1, 13, 30), "2024-09-01"),
            (date(2024, 9, 1), "2024-09-01"),
        ],
    )
    def test_valid(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize(
        "value",
        [
            "aa.bb.cccc",
            "someday",
            "01.09.99999999999999999999",
            "99999999999999999999.09.2024",
            "01.09." + "9" * 5000,
            True,
            float("nan"),
            time(9, 0),
        ],
    )
    def test_invalid_becomes_marker(self, value):
        assert normalize_date(value) == INVALID_DATE

    def test_idempotent_on_canonical_form(self):
        once = normalize_date("2024-12-31")
        assert normalize_date(once) == once


class TestCellText:
    def test_conversions(self):
        assert cell_text(None) == ""
        assert cell_text("  Room 5 ") == "Room 5"
        assert cell_text(101) == "101"
        assert cell_text(101.0) == "101"
        assert cell_text(9.5) == "9.5"
        assert cell_text(time(9, 5)) == "09:05"


class TestHeader:
    def test_first_row_with_both_labels(self, sample_rows):
        assert find_header_row(sample_rows) == 2

    def test_needs_both_required_labels(self):
        rows = [["Дата", "Корпус"], ["Время начала"]]
        assert find_header_row(rows) is None

    def test_english_labels(self):
        rows = [["Date", "Start Time", "Room"]]
        assert find_header_row(rows) == 0
        assert build_header_map(rows[0]) == {"date": 0, "start": 1, "room": 2}

    def test_first_occurrence_wins(self):
        header = ["Дата", "Аудитория", "Время начала", "Аудитория", " Room "]
        columns = build_header_map(header)
        assert columns["room"] == 1

    def test_detection_matches_label_text_exactly(self):
        rows = [[" Дата ", "Время начала"], ["Дата", "Время начала "], ["Дата", "Время начала"]]
        assert find_header_row(rows) == 2

    def test_labels_are_trimmed_and_exact(self):
        columns = build_header_map([" Дата ", "время начала", 5, None])
        assert columns == {"date": 0}


class TestParseRows:
    def test_one_entry_per_dated_row_in_order(self, sample_rows):
        entries = parse_rows(sample_rows)

        assert [e.discipline for e in entries] == ["Математика", "Физика", "Химия"]
        assert [e.date for e in entries] == ["2024-09-01", "2024-09-01", "2024-09-02"]

    def test_fields_are_mapped_and_trimmed(self, sample_rows):
        first, second, _ = parse_rows(sample_rows)

        assert first.day_of_week == "Пн"
        assert first.start == "09:00"
        assert first.end == "10:30"
        assert first.type == "Лекция"
        assert first.group == "ИВТ-21"
        assert first.building == "Главный"
        assert first.room == "101"
        assert first.teacher == "Иванов И.И."
        assert second.discipline == "Физика"

    def test_missing_columns_default_to_empty(self):
        rows = [["Дата", "Время начала"], ["01.09.2024", "09:00"]]
        (entry,) = parse_rows(rows)

        assert entry.room == ""
        assert entry.building == ""
        assert entry.teacher == ""

    def test_short_rows(self):
        rows = [["Время начала", "Корпус", "Дата"], ["09:00"], ["09:00", "A", "01.09.2024"]]
        (entry,) = parse_rows(rows)
        assert entry.building == "A"

    def test_invalid_date_kept(self):
        rows = [["Дата", "Время начала"], ["someday", "09:00"]]
        (entry,) = parse_rows(rows)
        assert entry.date == INVALID_DATE

    def test_oversized_date_parts_keep_the_row(self):
        rows = [
            ["Дата", "Время начала"],
            ["99999999999999999999.09.2024", "09:00"],
            ["01.09.2024", "10:45"],
        ]
        entries = parse_rows(rows)

        assert [(e.date, e.start) for e in entries] == [
            (INVALID_DATE, "09:00"),
            ("2024-09-01", "10:45"),
        ]

    def test_header_not_found(self):
        with pytest.raises(HeaderNotFoundError) as exc_info:
            parse_rows([["Date", "Time"], ["01.09.2024", "09:00"]])
        assert "header row" in exc_info.value.user_message

    def test_header_only_yields_no_entries(self):
        assert parse_rows([["Дата", "Время начала"]]) == []

    def test_only_first_sheet_is_used(self):
        sheets = [
            [["Дата", "Время начала"], ["01.09.2024", "09:00"]],
            [["Дата", "Время начала"], ["02.09.2024", "10:00"]],
        ]
        assert [e.date for e in parse_workbook(sheets)] == ["2024-09-01"]

    def test_empty_workbook(self):
        with pytest.raises(ParseFailureError):
            parse_workbook([])


class TestReadWorkbook:
    def test_xlsx_file(self, xlsx_file):
        entries = load_entries(xlsx_file)

        assert [e.date for e in entries] == ["2024-09-01", "2024-09-01", "2024-09-02"]
        assert entries[0].start == "09:00"
        assert entries[0].end == "10:30"
        assert entries[0].room == "101"
        assert entries[1].discipline == "Физика"
        assert "Пропуск" not in [e.discipline for e in entries]

    def test_xlsx_bytes_without_name(self, xlsx_file):
        sheets = read_workbook(xlsx_file.read_bytes())
        assert len(sheets) == 2
        assert sheets[0][0][0] == "Расписание занятий"

    def test_csv_with_semicolons(self):
        data = (
            "Дата;Время начала;Корпус;Аудитория\n"
            "01.09.2024;09:00;Главный;101\n"
            "02.09.2024;10:45;Главный;205\n"
        ).encode("utf-8-sig")

        entries = load_entries(data, filename="schedule.csv")

        assert [(e.date, e.start, e.room) for e in entries] == [
            ("2024-09-01", "09:00", "101"),
            ("2024-09-02", "10:45", "205"),
        ]

    def test_corrupt_xlsx(self):
        with pytest.raises(ParseFailureError) as exc_info:
            load_entries(b"PK\x03\x04 definitely not a workbook", filename="broken.xlsx")
        assert exc_info.value.__cause__ is not None
        assert "reading the file" in exc_info.value.user_message

    def test_xls_workbook(self, monkeypatch):
        rows = [
            [Cell(XL_CELL_TEXT, "Расписание"), Cell(XL_CELL_EMPTY, ""), Cell(XL_CELL_EMPTY, "")],
            [Cell(XL_CELL_TEXT, "Дата"), Cell(XL_CELL_TEXT, "Время начала"), Cell(XL_CELL_TEXT, "Аудитория")],
            [Cell(XL_CELL_DATE, 45536.0), Cell(XL_CELL_DATE, 0.375), Cell(XL_CELL_NUMBER, 101.0)],
            [Cell(XL_CELL_BLANK, ""), Cell(XL_CELL_TEXT, "12:00"), Cell(XL_CELL_NUMBER, 7.0)],
            [Cell(XL_CELL_TEXT, "02.09.2024"), Cell(XL_CELL_TEXT, "10:45"), Cell(XL_CELL_ERROR, 42)],
        ]
        sheet = Mock()
        sheet.get_rows.return_value = iter(rows)
        book = Mock(nsheets=1, datemode=0)
        book.sheet_by_index.return_value = sheet
        opened = Mock(return_value=book)
        monkeypatch.setattr(xlrd, "open_workbook", opened)

        entries = load_entries(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", filename="old.xls")

        assert [(e.date, e.start, e.room) for e in entries] == [
            ("2024-09-01", "09:00", "101"),
            ("2024-09-02", "10:45", ""),
        ]
        assert opened.call_args.kwargs["file_contents"].startswith(b"\xd0\xcf\x11\xe0")
        book.release_resources.assert_called_once()

    def test_ole_bytes_without_name_use_xls_reader(self, monkeypatch):
        opened = Mock(side_effect=xlrd.XLRDError("Unsupported format, or corrupt file"))
        monkeypatch.setattr(xlrd, "open_workbook", opened)

        with pytest.raises(xlrd.XLRDError):
            read_workbook(b"\xd0\xcf\x11\xe0rest")
        opened.assert_called_once()

    def test_corrupt_xls(self):
        with pytest.raises(ParseFailureError) as exc_info:
            load_entries(b"\xd0\xcf\x11\xe0 not really a workbook", filename="old.xls")
        assert exc_info.value.__cause__ is not None

    def test_csv_with_oversized_date_keeps_valid_rows(self):
        data = "Дата,Время начала\n01.09.99999999999999999999,09:00\n02.09.2024,10:45\n"

        entries = load_entries(data.encode("utf-8"), filename="schedule.csv")

        assert [e.date for e in entries] == [INVALID_DATE, "2024-09-02"]

    def test_unknown_format(self):
        with pytest.raises(ParseFailureError):
            read_workbook(b"%PDF-1.7", filename="schedule.pdf")

    def test_missing_header_in_file(self, tmp_path):
        path = tmp_path / "plain.csv"
        path.write_text("a,b\n1,2\n", encoding="utf-8")
        with pytest.raises(HeaderNotFoundError):
            load_entries(path)
