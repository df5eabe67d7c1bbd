"""
Redbook Automator - Errors

Failures that can surface from the extraction and publication engines.
Anything a fallback stage can recover from is logged instead of raised.
"""

import enum


class RedbookError(Exception):
    """Base class for automation errors."""


class NavigationFailure(RedbookError):
    """The target page was never reached or never loaded."""

    def __init__(self, message: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class ExtractionErrorKind(str, enum.Enum):
    NAVIGATION = "navigation"
    TIMEOUT = "timeout"


class ExtractionError(NavigationFailure):
    """The note page could not be loaded for extraction."""

    def __init__(self, kind: ExtractionErrorKind, message: str) -> None:
        super().__init__(message, timed_out=kind is ExtractionErrorKind.TIMEOUT)
        self.kind = kind


class SessionExpired(RedbookError):
    """The login session was lost and was not restored."""


class TargetNotFound(RedbookError):
    """No selector strategy located a required element."""


class DialogTimeout(RedbookError):
    """The native file dialog never appeared."""
