"""
Exceptions surfaced by the health metrics core.

Numeric problems never show up here: invalid measurements resolve to None or
"N/A" and empty cohorts resolve to zeroed payloads. Only store failures and
reports with nothing to report reach the caller.
"""


class SchoolHealthError(Exception):
    """Base class for every error raised by this package."""


class StoreError(SchoolHealthError):
    """The document store rejected or failed a call."""


class MissingIndexError(StoreError):
    """An ordered query needs a composite index the store does not have yet."""


class StoreUnavailableError(StoreError):
    """The store could not be reached, or every fallback query failed."""


class PermissionDeniedError(StoreUnavailableError):
    """The signed-in user may not read or write the requested documents."""


class NotFoundError(StoreError):
    """A document looked up by id does not exist."""


class NoDataError(SchoolHealthError):
    """A report was requested for a grade with no students or no valid records."""

    def __init__(self, message: str, grade: str | None = None) -> None:
        super().__init__(message)
        self.grade = grade
