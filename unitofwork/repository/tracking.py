"""
Tracking modes for repository reads and entity states for explicit state changes.
"""

from enum import Enum


class TrackingType(str, Enum):
    """Whether entities returned by a read stay attached to the session."""
    NO_TRACKING = "no_tracking"
    NO_TRACKING_WITH_IDENTITY_RESOLUTION = "no_tracking_with_identity_resolution"
    TRACKING = "tracking"

    @property
    def is_tracking(self) -> bool:
        return self is TrackingType.TRACKING


class EntityState(str, Enum):
    """State of an entity relative to a session."""
    DETACHED = "detached"
    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
