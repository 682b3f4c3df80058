import json

import pytest

from src.timetable import cli


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)


@pytest.fixture
def run(tmp_path):
    data_dir = str(tmp_path / "storage")

    def _run(*args):
        return cli.main(["--data-dir", data_dir, *args])

    return _run


def test_upload_and_show_table(run, xlsx_file, capsys):
    assert run("upload", str(xlsx_file)) == 0
    assert capsys.readouterr().out.strip() == "3"

    assert run("show") == 0
    captured = capsys.readouterr()
    assert "Building: Главный  Date: 2024-09-01" in captured.err
    lines = captured.out.splitlines()
    assert lines[0].startswith("Period | Time")
    assert "Математика / ИВТ-21" in lines[2]


def test_show_json(run, xlsx_file, capsys):
    run("upload", str(xlsx_file))
    capsys.readouterr()

    assert run("show", "--building", "Новый", "--date", "2024-09-02", "--format", "json") == 0
    grid = json.loads(capsys.readouterr().out)
    assert grid["rooms"] == ["12"]
    assert grid["rows"][0]["cells"][0]["entry"]["dayOfWeek"] == "Вт"


def test_show_html_to_file(run, xlsx_file, tmp_path, capsys):
    run("upload", str(xlsx_file))
    out = tmp_path / "out" / "grid.html"

    assert run("show", "--format", "html", "--output", str(out)) == 0
    assert '<table class="schedule-table">' in out.read_text(encoding="utf-8")


def test_show_without_upload(run, capsys):
    assert run("show") == 1
    assert "Upload a schedule file." in capsys.readouterr().err


def test_upload_without_header(run, tmp_path, capsys):
    bad = tmp_path / "bad.csv"
    bad.write_text("a,b\n1,2\n", encoding="utf-8")

    assert run("upload", str(bad)) == 1
    assert "header row" in capsys.readouterr().err


def test_options(run, xlsx_file, capsys):
    run("upload", str(xlsx_file))
    capsys.readouterr()

    assert run("options") == 0
    assert json.loads(capsys.readouterr().out) == {
        "buildings": ["Главный", "Новый"],
        "dates": ["2024-09-01", "2024-09-02"],
    }


def test_clear_asks_for_confirmation(run, xlsx_file, monkeypatch, capsys):
    run("upload", str(xlsx_file))

    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    assert run("clear") == 0
    assert run("show") == 0

    assert run("clear", "--yes") == 0
    assert run("show") == 1
