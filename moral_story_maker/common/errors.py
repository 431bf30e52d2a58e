"""Error taxonomy.

Every handler-level failure is one of these; the API turns them into
``{"error": message}`` responses carrying ``status_code``.
"""

from __future__ import annotations


class StoryMakerError(Exception):
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class AuthenticationRequired(StoryMakerError):
    status_code = 401


class Forbidden(StoryMakerError):
    status_code = 403


class NotFound(StoryMakerError):
    status_code = 404


class ValidationError(StoryMakerError):
    """Request content rejected, e.g. by the banned-phrase filter."""

    status_code = 400


class UpstreamGenerationError(StoryMakerError):
    """A third-party AI call failed or returned unusable content."""

    status_code = 502


class MuxingError(StoryMakerError):
    status_code = 502


class StorageError(StoryMakerError):
    status_code = 502


class DownloadError(StorageError):
    pass


class LedgerUpdateError(StoryMakerError):
    status_code = 500


class WebhookError(StoryMakerError):
    status_code = 400
