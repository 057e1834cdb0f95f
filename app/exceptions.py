"""
Domain exceptions shared by the server services and the chat client.

The API layer maps each class to an HTTP status; the client maps the status
back to the same class so callers handle one taxonomy on both sides.
"""


class RoomifyError(Exception):
    """Base class for every domain error."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(RoomifyError):
    """Malformed input (bad date/time, non-positive price, empty text)."""

    status_code = 400


class ForbiddenError(RoomifyError):
    """Actor is not allowed to perform the operation."""

    status_code = 403


class NotFoundError(RoomifyError):
    """Referenced match, user, property or card does not exist."""

    status_code = 404


class ConflictError(RoomifyError):
    """Operation is not valid in the current state of the match."""

    status_code = 409


class NetworkError(RoomifyError):
    """A round trip to the server failed (transport error or 5xx)."""

    status_code = 503

    def __init__(self, message: str, original_error: Exception | None = None):
        self.original_error = original_error
        super().__init__(message)


_BY_STATUS = {
    cls.status_code: cls
    for cls in (ValidationError, ForbiddenError, NotFoundError, ConflictError)
}


def error_for_status(status_code: int, message: str) -> RoomifyError:
    """Rebuild the domain error matching an HTTP status code."""
    if status_code == 422:
        return ValidationError(message)
    if status_code == 401:
        return ForbiddenError(message)
    if status_code >= 500:
        return NetworkError(message)
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        return RoomifyError(message)
    return cls(message)
