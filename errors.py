"""Per-file ingestion failures.

Every error here is non-fatal for a batch: the importer turns it into a
``"<filename>: <reason>"`` line and moves on to the next file.
"""

from __future__ import annotations

from constants import MSG_NOT_FIT, MSG_NOT_RUNNING, MSG_TOO_SHORT


class IngestError(Exception):
    """Base class for failures that reject a single file."""


class UnsupportedFormat(IngestError):
    """Upload name does not carry the .fit extension."""

    def __init__(self, message: str = MSG_NOT_FIT):
        super().__init__(message)


class DecodeError(IngestError):
    """FIT bytes are malformed, truncated or carry no session."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__("Could not decode FIT file: {0}".format(detail))


class UnsupportedActivityType(IngestError):
    """Decoded session is not a run."""

    def __init__(self, sport):
        self.sport = sport
        super().__init__(MSG_NOT_RUNNING.format(sport or ''))


class ActivityTooShort(IngestError):
    """Run is under the minimum distance or duration."""

    def __init__(self, distance_km: float, duration_min: float):
        self.distance_km = distance_km
        self.duration_min = duration_min
        super().__init__(MSG_TOO_SHORT)


class PersistenceFailure(IngestError):
    """Store rejected the write for a reason other than a duplicate key."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__("Could not save run: {0}".format(detail))


class DuplicateRunError(Exception):
    """Raised by the store when (user_id, filename) already exists."""

    def __init__(self, user_id: str, filename: str):
        self.user_id = user_id
        self.filename = filename
        super().__init__("Run {0} already stored for {1}".format(filename, user_id))
