"""Storage for session-scoped saved filters."""

from .filter_store import SavedFilter, SessionFilterStore

__all__ = ["SavedFilter", "SessionFilterStore"]
