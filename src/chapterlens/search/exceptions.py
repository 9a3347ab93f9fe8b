"""Custom exceptions for the search pipeline."""


class ChapterLensError(Exception):
    """Base class for errors surfaced to callers."""


class InvalidQueryError(ChapterLensError):
    """Blank query or malformed quota counter. Fatal to the call."""


class SearchUnavailableError(ChapterLensError):
    """No retrieval stage could reach its backing store."""


class RetryableError(Exception):
    """Analyzer error that may succeed on a later attempt."""


class NonRetryableError(Exception):
    """Analyzer error that will not succeed without a change of input or config."""


class ProviderUnavailableError(Exception):
    """A collaborator is not configured or failed to initialise."""
