"""Failure kinds raised by the mirror core and the HTTP status each maps to."""

from __future__ import annotations

from fastapi import status


class MirrorError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    # text sent to clients; None means the bare status phrase
    public_detail: str | None = None

    def __init__(self, message: str, *, filename: str | None = None) -> None:
        super().__init__(message)
        self.filename = filename


class InvalidFilename(MirrorError):
    """The requested name is not a recognised release artifact."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_detail = "Invalid filename format"


class UpstreamNotFound(MirrorError):
    """The origin answered 404 for the artifact."""

    status_code = status.HTTP_404_NOT_FOUND


class UpstreamUnavailable(MirrorError):
    """The origin could not be reached, timed out, or answered with a non-200, non-404 status."""

    status_code = status.HTTP_502_BAD_GATEWAY


class LocalIOFailure(MirrorError):
    """Creating, writing or publishing the scratch file failed on the cache host."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
