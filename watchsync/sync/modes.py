"""Synchronization modes for a watch."""

from enum import Enum


class SyncMode(str, Enum):
    """How a watch synchronizes its directory.

    The mode is chosen when the watch is added and never changes.
    """

    INCREMENTAL = "incremental"
    """Upload each new or changed file on its own"""

    BUNDLE = "bundle"
    """Archive the whole directory and upload it on every pass"""

    @classmethod
    def from_flag(cls, bundle: bool) -> "SyncMode":
        return cls.BUNDLE if bundle else cls.INCREMENTAL
