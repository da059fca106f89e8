"""Database models for the preference service."""

from .base import Base, TimestampMixin, new_id, utcnow
from .location import Location, LocationType
from .preferences import Preference, PreferenceStatus, SourceType

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "new_id",
    "utcnow",
    # Models
    "Location",
    "LocationType",
    "Preference",
    "PreferenceStatus",
    "SourceType",
]
