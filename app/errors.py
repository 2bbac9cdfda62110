"""Error taxonomy shared by the HTTP layer and the client-side state."""

from __future__ import annotations


class CinemaGuruError(Exception):
    """Base class for service errors carrying an HTTP-equivalent status."""

    status_code: int = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = str(self.args[0])


class Unauthorized(CinemaGuruError):
    """No authenticated principal could be resolved."""

    status_code = 401


class BadRequest(CinemaGuruError):
    """The request is missing or carries a malformed correlation key."""

    status_code = 400


class NotFound(CinemaGuruError):
    """The referenced title does not exist."""

    status_code = 404


class DataSourceError(CinemaGuruError):
    """The persistence layer could not be reached or failed."""

    status_code = 500


class StaleViewError(CinemaGuruError):
    """A response arrived after its view epoch was superseded."""

    status_code = 409
