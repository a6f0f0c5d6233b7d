"""
Error taxonomy.

Only genuinely exceptional conditions are exceptions here. A geocode miss, a missing
location row or a denied device permission are ordinary values (`None`) and never raise.
"""

from __future__ import annotations


class ProxiSyncError(Exception):
    """Base class for engine errors."""


class TransientStorageError(ProxiSyncError):
    """The location store could not be reached; callers may retry with backoff."""


class StorageTimeoutError(TransientStorageError):
    """A storage operation did not complete within its configured timeout."""


class FriendshipPermissionError(ProxiSyncError):
    """A user attempted a friendship transition they are not allowed to make."""
