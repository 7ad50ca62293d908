"""Error taxonomy for admin edit sessions."""
from __future__ import annotations


class CurationError(Exception):
    """Base class; `str(exc)` is safe to show to an admin."""


class LoadFailed(CurationError):
    """Parent aggregate or its members could not be loaded. Terminal for the session."""

    def __init__(self, message: str, *, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


class SaveFailed(CurationError):
    """A reconciliation step was rejected; the working copy is kept for retry."""


class SaveInProgress(CurationError):
    """Another save for the same session has not finished yet."""


__all__ = ["CurationError", "LoadFailed", "SaveFailed", "SaveInProgress"]
