"""Domain exceptions shared by ClassCast services and API handlers."""

from __future__ import annotations


class RecordNotFoundError(LookupError):
    """Raised when a referenced course, section, student or submission does not exist."""


class RecordConflictError(ValueError):
    """Raised when a write would violate a uniqueness or capacity rule."""


class ConcurrentUpdateError(RuntimeError):
    """Raised when optimistic writes keep losing to concurrent updates."""


class StaleWriteError(ConcurrentUpdateError):
    """Raised by repositories when a conditional write finds a newer version."""


class AlreadyEnrolledError(RecordConflictError):
    """Raised when a student is already on a course roster or its waitlist."""


class CorruptRecordError(RuntimeError):
    """Raised when a stored document cannot be read back without losing data."""
