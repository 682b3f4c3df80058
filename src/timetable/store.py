"""Local key-value storage and the schedule slot kept in it.

The schedule lives in exactly one named slot as a JSON array. A new upload
overwrites the slot; nothing is ever merged. Reading a slot that doesn't
decode clears it, so a corrupt file can never wedge the application.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from src.timetable.errors import CorruptStoredStateError
from src.timetable.logging import get_logger
from src.timetable.models import ScheduleEntry

logger = get_logger(__name__)

_ENTRY_LIST = TypeAdapter(list[ScheduleEntry])
_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """String-to-string storage with localStorage semantics."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process key-value store, lost when the process exits."""

    def __init__(self, items: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileKeyValueStore:
    """Key-value store backed by one UTF-8 file per key in a directory.

    Writes go through a temporary file and os.replace(), so readers see
    either the old value or the new one, never a partial write.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY_RE.match(key):
            raise ValueError(f"Invalid storage key {key!r}")
        return self.root / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            # Undecodable bytes are corrupt content, not a missing key
            return path.read_bytes().decode("utf-8", errors="replace")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


def encode_entries(entries: list[ScheduleEntry]) -> str:
    """Serialize entries to the slot's JSON array format."""
    return json.dumps([entry.to_storage() for entry in entries], ensure_ascii=False)


def decode_entries(raw: str) -> list[ScheduleEntry]:
    """Parse slot content back into entries.

    Raises:
        CorruptStoredStateError: If the content is not a JSON array of entries.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptStoredStateError(f"Stored schedule is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise CorruptStoredStateError(
            f"Stored schedule is a {type(data).__name__}, expected a list"
        )

    try:
        return _ENTRY_LIST.validate_python(data)
    except ValidationError as e:
        raise CorruptStoredStateError(
            f"Stored schedule has {e.error_count()} invalid field(s)"
        ) from e


class ScheduleStore:
    """The single named slot that holds the current schedule.

    Lifecycle: absent (nothing uploaded) -> populated (after save) ->
    absent again (after clear, or after a corrupt slot is detected).
    """

    def __init__(self, backend: KeyValueStore, slot: str = "schedule") -> None:
        self.backend = backend
        self.slot = slot

    def save(self, entries: list[ScheduleEntry]) -> None:
        """Overwrite the slot with the given entries."""
        self.backend.set_item(self.slot, encode_entries(entries))
        logger.info("schedule_saved", slot=self.slot, entries=len(entries))

    def load(self) -> list[ScheduleEntry] | None:
        """Read the slot.

        Returns:
            The stored entries (possibly empty), or None when the slot is
            absent or its content was corrupt. A corrupt slot is cleared.
        """
        raw = self.backend.get_item(self.slot)
        if raw is None:
            logger.debug("schedule_load", slot=self.slot, result="absent")
            return None

        try:
            entries = decode_entries(raw)
        except CorruptStoredStateError as e:
            logger.warning("stored_schedule_corrupt", slot=self.slot, error=str(e))
            self.clear()
            return None

        logger.debug("schedule_load", slot=self.slot, entries=len(entries))
        return entries

    def clear(self) -> None:
        """Remove the slot."""
        self.backend.remove_item(self.slot)
        logger.info("schedule_cleared", slot=self.slot)
