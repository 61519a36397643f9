"""Typed error taxonomy for the fusion engine.

Per-modality problems (:class:`SchemaMismatchError`) are recovered locally by
dropping the observation.  Everything else is fatal to the single request it
occurs in and is surfaced to the caller.
"""

from __future__ import annotations


class MoodSyncError(Exception):
    """Base class for all engine errors."""


class SchemaMismatchError(MoodSyncError):
    """A probability vector does not match the emotion label set."""


class InsufficientInputError(MoodSyncError):
    """No usable modality observation is left to fuse."""


class DegenerateDistributionError(MoodSyncError):
    """A distribution sums to zero and cannot be normalised."""


class UnknownLabelError(MoodSyncError):
    """Feedback references a label outside the emotion label set."""


class UnknownModalityError(MoodSyncError):
    """A modality name outside the supported channels."""


class NoHistoryError(MoodSyncError):
    """Trend metrics were requested over an empty window."""


class ProfileStoreError(MoodSyncError):
    """The external profile store failed to load or save a profile."""


class RequestCancelledError(MoodSyncError):
    """The caller abandoned the request before profiles were written."""
