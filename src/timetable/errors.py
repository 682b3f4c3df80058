"""Error hierarchy for schedule ingestion, storage and the offline asset cache.

Ingestion errors carry a user-facing message separate from the diagnostic one,
so the UI layer can show ``err.user_message`` while logs keep the cause.

The asset cache reuses the transient/permanent split so tenacity retry
decorators can classify network failures:
    Retrying(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(3))
"""

HEADER_NOT_FOUND_MESSAGE = (
    "Could not find the header row in the file. "
    "Make sure the file follows the schedule template."
)
PARSE_FAILURE_MESSAGE = (
    "An error occurred while reading the file. Check the format and try again."
)


class TimetableError(Exception):
    """Base exception for all timetable errors."""

    pass


class IngestError(TimetableError):
    """Spreadsheet could not be turned into schedule entries.

    The store is never modified when this is raised.
    """

    user_message = PARSE_FAILURE_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class HeaderNotFoundError(IngestError):
    """First sheet has no row with both the date and start time labels.

    The user has to fix the file; retrying the same file cannot succeed.
    """

    user_message = HEADER_NOT_FOUND_MESSAGE


class ParseFailureError(IngestError):
    """Any other failure while reading or transforming the spreadsheet.

    Examples: corrupt binary, unsupported format, unexpected cell structure.
    """

    pass


class CorruptStoredStateError(TimetableError):
    """Stored slot content is not a valid serialized entry list.

    Never escapes ScheduleStore.load(): the slot is cleared and treated as absent.
    """

    pass


class CacheError(TimetableError):
    """Base exception for offline asset cache failures."""

    pass


class TransientError(CacheError):
    """Temporary failure that may succeed on retry.

    Examples: connection refused, timeouts, 5xx responses.
    """

    pass


class PermanentError(CacheError):
    """Failure that won't succeed on retry.

    Examples: 404 for a listed asset, fallback page missing from the cache.
    """

    pass
