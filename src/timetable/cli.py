"""Upload, view and clear the classroom timetable from the command line.

Run with: timetable upload schedule.xlsx
Grid:     timetable show --building "Main" --date 2024-09-01
JSON:     timetable show --format json
HTML:     timetable show --format html --output schedule.html
Options:  timetable options
Clear:    timetable clear [--yes]
Offline:  timetable cache install | activate | fetch index.html [--navigate]

Settings come from the environment or .env (see TimetableConfig);
--data-dir and --cache-dir override the storage locations.

Exit codes:
  0 = success (requested output on stdout)
  1 = error (message on stderr)
"""

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

from src.timetable.cache import AssetCache
from src.timetable.config import get_config
from src.timetable.errors import IngestError, TimetableError
from src.timetable.logging import get_logger, setup_logging
from src.timetable.service import ScheduleService
from src.timetable.view import format_grid_table, render_page_html

log = get_logger(__name__)


def _log(msg: str) -> None:
    """Write user-facing messages to stderr so stdout stays clean for output."""
    print(msg, file=sys.stderr)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        prog="timetable",
        description="Classroom timetable built from an uploaded schedule spreadsheet.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--data-dir", default=None, help="Local storage directory.")
    parser.add_argument("--cache-dir", default=None, help="Offline cache directory.")
    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Parse a schedule file and store it.")
    upload.add_argument("file", type=Path, help="Schedule workbook (.xlsx or .csv).")

    show = commands.add_parser("show", help="Show the grid for a building and date.")
    show.add_argument("--building", default=None, help="Building (default: first).")
    show.add_argument("--date", default=None, help="Date YYYY-MM-DD (default: first).")
    show.add_argument(
        "--format",
        choices=("table", "json", "html"),
        default="table",
        help="Output format (default: table).",
    )
    show.add_argument("--output", type=Path, default=None, help="Write to this file.")

    commands.add_parser("options", help="List available buildings and dates as JSON.")

    clear = commands.add_parser("clear", help="Delete the stored schedule.")
    clear.add_argument("--yes", action="store_true", help="Don't ask for confirmation.")

    cache = commands.add_parser("cache", help="Manage the offline asset cache.")
    cache_commands = cache.add_subparsers(dest="cache_command", required=True)
    cache_commands.add_parser("install", help="Download all assets for this version.")
    cache_commands.add_parser("activate", help="Delete caches of other versions.")
    fetch = cache_commands.add_parser("fetch", help="Fetch an asset cache-first.")
    fetch.add_argument("path", help="Asset path or URL.")
    fetch.add_argument(
        "--navigate",
        action="store_true",
        help="Treat as a page navigation (serve fallback page when offline).",
    )

    return parser.parse_args(argv)


def _cmd_upload(service: ScheduleService, args: argparse.Namespace) -> int:
    try:
        entries = service.ingest(args.file)
    except IngestError as e:
        _log(e.user_message)
        return 1

    if not entries:
        _log("The schedule file contains no data.")
    else:
        _log(f"Stored {len(entries)} schedule entries from {args.file.name}")
    print(len(entries))
    return 0


def _cmd_show(service: ScheduleService, args: argparse.Namespace) -> int:
    state = service.view_state(args.building, args.date)
    if not state.has_data:
        _log(state.status)
        return 1 if service.get_entries() is None else 0

    if args.building is not None and args.building != state.building:
        _log(f"Unknown building {args.building!r}, showing {state.building!r}")
    if args.date is not None and args.date != state.date:
        _log(f"Unknown date {args.date!r}, showing {state.date!r}")

    if args.format == "json":
        output = json.dumps(
            state.grid.model_dump(mode="json", by_alias=True),
            indent=2,
            ensure_ascii=False,
        )
    elif args.format == "html":
        output = render_page_html(state.grid, state.options)
    else:
        _log(f"Building: {state.building or '-'}  Date: {state.date}")
        output = format_grid_table(state.grid)

    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(output, encoding="utf-8")
        _log(f"Wrote {args.format} grid to {args.output}")
    else:
        print(output)
    return 0


def _cmd_options(service: ScheduleService, args: argparse.Namespace) -> int:
    state = service.view_state()
    print(json.dumps(state.options.model_dump(), indent=2, ensure_ascii=False))
    return 0


def _cmd_clear(service: ScheduleService, args: argparse.Namespace) -> int:
    if not args.yes:
        answer = input("Delete the saved schedule and upload a new one? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            _log("Cancelled.")
            return 0
    service.clear()
    _log("Schedule cleared. Upload a schedule file.")
    return 0


def _cmd_cache(cache: AssetCache, args: argparse.Namespace) -> int:
    if args.cache_command == "install":
        count = cache.install()
        _log(f"Cached {count} assets in {cache.cache_name}")
    elif args.cache_command == "activate":
        removed = cache.activate()
        _log(f"Removed {len(removed)} old cache(s)")
        print(json.dumps(removed))
    else:
        response = cache.fetch(args.path, navigate=args.navigate)
        source = "cache" if response.from_cache else "network"
        _log(f"{response.status} {response.url} ({response.content_type}, from {source})")
        sys.stdout.buffer.write(response.content)
        sys.stdout.flush()
    return 0


_COMMANDS = {
    "upload": _cmd_upload,
    "show": _cmd_show,
    "options": _cmd_options,
    "clear": _cmd_clear,
}


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = _parse_args(argv)

    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    updates = {}
    if args.data_dir is not None:
        updates["data_dir"] = args.data_dir
    if args.cache_dir is not None:
        updates["cache_dir"] = args.cache_dir
    if updates:
        config = config.model_copy(update=updates)

    log.debug("cli_started", command=args.command)
    try:
        if args.command == "cache":
            return _cmd_cache(AssetCache.from_config(config), args)
        return _COMMANDS[args.command](ScheduleService.from_config(config), args)
    except TimetableError as e:
        _log(f"ERROR: {e}")
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
