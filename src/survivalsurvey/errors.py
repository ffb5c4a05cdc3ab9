"""Exception hierarchy shared by the fetch, derivation, and storage layers."""

from __future__ import annotations


class SurveyDataError(Exception):
    """Base class for every error raised by survivalsurvey."""


class FetchError(SurveyDataError):
    """Failure while paging through the remote feed.

    Parameters
    ----------
    message:
        Human-readable description. Must never contain credentials.
    status:
        HTTP status code of the failing response, when one was received.
    offset:
        Page offset that was being requested when the failure happened.
    """

    def __init__(self, message: str, *, status: int | None = None, offset: int | None = None):
        super().__init__(message)
        self.status = status
        self.offset = offset


class AuthenticationFailure(FetchError):
    """The feed rejected the supplied credentials (HTTP 401/403)."""


class TransientNetworkFailure(FetchError):
    """Timeout or connection problem; safe to retry."""


class UpstreamServerError(FetchError):
    """Non-success status other than an auth rejection, or an unreadable body."""


class NoDataAvailable(SurveyDataError):
    """No persisted snapshot exists and no fresh data could be fetched."""


class MalformedRecord(SurveyDataError, ValueError):
    """A single value could not be parsed as the expected type."""


__all__ = [
    "SurveyDataError",
    "FetchError",
    "AuthenticationFailure",
    "TransientNetworkFailure",
    "UpstreamServerError",
    "NoDataAvailable",
    "MalformedRecord",
]
