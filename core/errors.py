"""
errors.py
----------
Error taxonomy for the analytics engine.

- InvalidWindowError: malformed or inverted date bounds. Raised immediately.
- UpstreamFetchError: any failure from the external record/entity source.
  Propagated to the caller untouched; the engine never retries.
- DuplicateMergeError: the same secondary source merged twice into one
  bucket set.
- PartialDataWarning: soft, non-fatal. A secondary source was unavailable and
  its contribution was treated as zero.
"""


class AnalyticsError(Exception):
    """Base class for all analytics engine errors."""


class InvalidWindowError(AnalyticsError, ValueError):
    """Malformed, inverted or unknown date window."""


class UpstreamFetchError(AnalyticsError):
    """Wraps a failure from an external record or entity source."""

    def __init__(self, message: str, source: str | None = None, status_code: int | None = None):
        self.message = message
        self.source = source
        self.status_code = status_code
        super().__init__(message)


class DuplicateMergeError(AnalyticsError):
    """A secondary source was merged into the same buckets more than once."""


class PartialDataWarning(UserWarning):
    """A merge source was unavailable; its contribution counts as zero."""

    def __init__(self, message: str, source: str | None = None):
        self.message = message
        self.source = source
        super().__init__(message)
