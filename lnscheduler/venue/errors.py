from __future__ import annotations


class VenueError(Exception):
    """Base for every failure talking to the trading venue."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class VenueRejectedError(VenueError):
    """The venue refused the request; retrying the same request will not help."""


class VenueAuthError(VenueRejectedError):
    """Missing or invalid API credentials."""


class VenueTransientError(VenueError):
    """A failure that may clear on the next tick."""


class VenueTimeoutError(VenueTransientError):
    pass


class VenueNetworkError(VenueTransientError):
    pass


class VenueRateLimitError(VenueTransientError):
    pass


class VenueUnavailableError(VenueTransientError):
    pass
