from __future__ import annotations


class KeywordQueryError(Exception):
    """Base class for errors raised by the query layer."""

    retryable = False
    status_code = 500


class InvalidRange(KeywordQueryError):
    status_code = 400


class NotFound(KeywordQueryError):
    status_code = 404


class ComputationFailure(KeywordQueryError):
    retryable = True
    status_code = 503


class CacheWriteFailure(KeywordQueryError):
    """Persisting a computed window failed. Never surfaces to readers."""

    retryable = True
