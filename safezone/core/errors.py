"""Domain errors raised by the alert dispatcher and trip monitor.

Validation and state errors are raised before any mutation, so the
Alert/Trip is left untouched when one of these propagates.
"""

from __future__ import annotations


class SafeZoneError(Exception):
    """Base class for all core errors."""


class InvalidInput(SafeZoneError):
    """A required field is missing or malformed (coordinates, times)."""


class NoContacts(SafeZoneError):
    """The user has no emergency contacts on file."""


class NotFound(SafeZoneError):
    """The entity is missing, owned by someone else, or no longer active."""


class InvalidState(SafeZoneError):
    """The entity exists but its status does not accept the transition."""
