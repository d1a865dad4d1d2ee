"""Domain errors with stable machine-readable codes.

The HTTP layer maps these to responses; persistence errors are never wrapped.
"""

from __future__ import annotations


class TrackerError(Exception):
    status_code = 400

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class InvalidInputError(TrackerError):
    """Caller input rejected: title_required, daily_target_invalid, content_required, ..."""

    status_code = 400


class NotFoundError(TrackerError):
    status_code = 404


TITLE_REQUIRED = "title_required"
DAILY_TARGET_INVALID = "daily_target_invalid"
CONTENT_REQUIRED = "content_required"
CONTENT_TOO_LONG = "content_too_long"
INVALID_DATE = "invalid_date"
NOTE_ID_REQUIRED = "note_id_required"
GOAL_NOT_FOUND = "goal_not_found"
