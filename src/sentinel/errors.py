"""
Custom exception classes for the Sentinel pipeline.

Defines specific error types for different failure scenarios.
"""

from typing import Optional


class SentinelError(Exception):
    """Base exception for all Sentinel pipeline errors."""

    pass


class ConfigError(SentinelError):
    """Raised when a required credential or setting is missing."""

    pass


class SearchConfigError(ConfigError):
    """Raised when the web search provider has no API key configured."""

    pass


class LLMConfigError(ConfigError):
    """Raised when the LLM provider has no API key configured."""

    pass


class ParseError(SentinelError):
    """Raised when LLM output cannot be parsed into the expected JSON shape."""

    pass


class NetworkError(SentinelError):
    """Raised when an HTTP fetch fails (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class PDFExtractionError(NetworkError):
    """Raised when a fetched PDF cannot be turned into text."""

    pass


class InvalidPDFError(PDFExtractionError):
    """Raised when PDF signature validation fails."""

    pass


class PersistenceError(SentinelError):
    """Raised when a write to the persistence store fails."""

    pass


class CancelledRunError(SentinelError):
    """Raised at an external call site once the run's cancellation token is set."""

    pass
