"""Shared fixtures for timetable tests."""

from datetime import datetime, time

import pytest
import requests
from openpyxl import Workbook

from src.timetable.config import reset_config
from src.timetable.logging import setup_logging
from src.timetable.models import ScheduleEntry
from src.timetable.service import ScheduleService
from src.timetable.store import MemoryKeyValueStore, ScheduleStore

HEADER = [
    "Дата",
    "День недели",
    "Время начала",
    "Время окончания",
    "Дисциплина",
    "Вид работы",
    "Контингент",
    "Корпус",
    "Аудитория",
    "Преподаватель",
]


@pytest.fixture(scope="session", autouse=True)
def _configure_logging():
    setup_logging(json_output=False, log_level="DEBUG")


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch, tmp_path):
    # Keep a developer's .env and data/ out of the tests
    monkeypatch.chdir(tmp_path)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def store():
    return ScheduleStore(MemoryKeyValueStore())


@pytest.fixture
def service(store):
    return ScheduleService(store)


@pytest.fixture
def sample_rows():
    return [
        ["Schedule for autumn term", "", "", "", "", "", "", "", "", ""],
        ["", "", "", "", "", "", "", "", "", ""],
        HEADER,
        ["01.09.2024", "Пн", "09:00", "10:30", "Математика", "Лекция", "ИВТ-21", "Главный", "101", "Иванов И.И."],
        ["01.09.2024", "Пн", "10:45", "12:15", " Физика ", "Практика", "ИВТ-22", "Главный", "205", "Петров П.П."],
        ["", "", "", "", "", "", "", "", "", ""],
        ["02.09.2024", "Вт", "9:00", "10:30", "Химия", "Лаб", "ХИМ-11", "Новый", "12", "Сидоров С.С."],
    ]


@pytest.fixture
def entries():
    return [
        ScheduleEntry(date="2024-09-01", start="10:45", room="205", building="Main",
                      discipline="Physics", group="CS-22"),
        ScheduleEntry(date="2024-09-01", start="09:00", room="101", building="Main",
                      discipline="Maths", group="CS-21"),
        ScheduleEntry(date="2024-09-01", start="09:00", room="205", building="Main",
                      discipline="History", group="CS-23"),
        ScheduleEntry(date="2024-09-02", start="09:00", room="101", building="Main",
                      discipline="Chemistry", group="CH-11"),
        ScheduleEntry(date="2024-09-01", start="09:00", room="7", building="Annex",
                      discipline="Art", group="AR-1"),
    ]


@pytest.fixture
def xlsx_file(tmp_path):
    """Workbook with a title row, the header and three data rows of mixed date types."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"
    ws.append(["Расписание занятий"])
    ws.append(HEADER)
    ws.append([datetime(2024, 9, 1), "Пн", time(9, 0), time(10, 30), "Математика",
               "Лекция", "ИВТ-21", "Главный", 101, "Иванов И.И."])
    ws.append([45536, "Пн", "10:45", "12:15", "Физика", "Практика", "ИВТ-22",
               "Главный", "205", "Петров П.П."])
    ws.append([None, "Пн", "12:30", "14:00", "Пропуск", "", "", "Главный", "101", ""])
    ws.append(["02.09.2024", "Вт", "09:00", "10:30", "Химия", "Лаб", "ХИМ-11",
               "Новый", "12", "Сидоров С.С."])
    other = wb.create_sheet("Ignored")
    other.append(["Дата", "Время начала"])
    other.append(["05.09.2024", "08:00"])

    path = tmp_path / "schedule.xlsx"
    wb.save(path)
    return path


class FakeResponse:
    def __init__(self, status_code=200, content=b"", content_type="text/plain"):
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": content_type}


class FakeSession:
    """Stands in for requests.Session; routes map URL -> FakeResponse."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.offline = False
        self.calls: list[tuple[str, str]] = []

    def request(self, method, url, timeout=None):
        self.calls.append((method, url))
        if self.offline:
            raise requests.ConnectionError(f"offline: {url}")
        return self.routes.get(url, FakeResponse(404, b"not found"))


@pytest.fixture
def asset_routes():
    base = "http://app.test/"
    return {
        base: FakeResponse(200, b"<html>root</html>", "text/html"),
        base + "index.html": FakeResponse(200, b"<html>index</html>", "text/html"),
        base + "style.css": FakeResponse(200, b"body{}", "text/css"),
        base + "script.js": FakeResponse(200, b"console.log(1)", "application/javascript"),
    }


@pytest.fixture
def fake_session(asset_routes):
    return FakeSession(asset_routes)
