"""
vision/errors.py
----------------
Error taxonomy for the visual-similarity search subsystem.

ServiceWarming is a condition, not a failure: callers should poll.
"""

from __future__ import annotations
from typing import Optional


class VisualSearchError(Exception):
    """Base class for every condition raised by the search subsystem."""


class ExtractionError(VisualSearchError):
    """Image could not be loaded/decoded, the model call failed, or timed out."""

    def __init__(self, message: str, source: Optional[str] = None, timed_out: bool = False):
        super().__init__(message)
        self.source = source
        self.timed_out = timed_out


class CacheLoadError(VisualSearchError):
    """Durable cache snapshot is missing or malformed."""


class CacheSaveError(VisualSearchError):
    """Durable cache snapshot could not be written."""


class EmbeddingDimensionError(VisualSearchError, ValueError):
    """A vector whose length or content does not fit the cache."""


class ServiceWarming(VisualSearchError):
    """Embedding cache is not ready yet; retry shortly."""

    def __init__(self, message: str = "Visual search is warming up, please retry in a few seconds.",
                 state: Optional[str] = None):
        super().__init__(message)
        self.state = state


class SearchFailed(VisualSearchError):
    """The query image could not be embedded. Terminal for that request."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
