"""Exception hierarchy shared by storage, tag suggestions and rendering."""

from __future__ import annotations

from typing import Optional


class EpicMeError(Exception):
    """Base exception for EpicMe operations."""
    pass


class NotFoundError(EpicMeError):
    """Raised when an entry, tag or video does not exist."""
    pass


class DuplicateTagError(EpicMeError):
    """Raised when a tag name is already taken."""
    pass


class TagSuggestionError(EpicMeError):
    """Base exception for unusable model tag suggestions."""
    pass


class TagSuggestionParseError(TagSuggestionError):
    """Raised when the model response is not valid JSON."""
    pass


class TagSuggestionSchemaError(TagSuggestionError):
    """Raised when the model response is JSON but not an array."""
    pass


class RenderError(EpicMeError):
    """Base exception for render jobs."""
    pass


class RenderCancelled(RenderError):
    """Raised when a render job observed its cancellation token."""
    pass


class RenderFailed(RenderError):
    """Raised when the renderer exited non-zero without being cancelled."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class InvalidTransition(RenderError):
    """Raised when a render job would revisit or skip a state."""
    pass
