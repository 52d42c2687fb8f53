"""Exceptions shared by the generation client and the HTTP surface.

Stream parse failures and resolver problems are deliberately absent: both are
recovered where they happen and never reach the caller.
"""

from __future__ import annotations


class StoryForgeError(RuntimeError):
    """Base class for errors surfaced to the caller as a failed generation."""


class ConfigurationError(StoryForgeError):
    """A required credential or URL is missing. Raised before any network call."""


class ProviderError(StoryForgeError):
    """The backend could not be reached or answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
