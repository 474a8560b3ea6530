"""Failure taxonomy for the progress write and sync paths."""

from __future__ import annotations


class ProgressSyncError(RuntimeError):
    """Base class for progress persistence failures."""


class LocalWriteFailure(ProgressSyncError):
    """The on-device cache could not persist a record; the action must be retried."""


class RemoteWriteFailure(ProgressSyncError):
    """An upsert to the remote store failed; the local completion stands."""


class RemoteReadFailure(ProgressSyncError):
    """The remote store could not be read; callers fall back to local data."""


__all__ = [
    "LocalWriteFailure",
    "ProgressSyncError",
    "RemoteReadFailure",
    "RemoteWriteFailure",
]
