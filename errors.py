"""Error taxonomy shared by the services.

Every service failure is a ``LibraryError`` subclass carrying the HTTP status
and a short machine-readable code.  ``main.py`` renders them with a single
exception handler, so services never build HTTP responses themselves.
"""

from fastapi import status


class LibraryError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_message = "Request could not be completed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(LibraryError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "Not found"


class Unavailable(LibraryError):
    status_code = status.HTTP_409_CONFLICT
    code = "unavailable"
    default_message = "Book is currently not available"


class Conflict(LibraryError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "Request conflicts with the current state"


class Forbidden(LibraryError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Not authorized"


class InternalConsistency(LibraryError):
    """A stored counter or record disagrees with the lending invariants."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_consistency"
    default_message = "Inventory counters are inconsistent"


class WriteConflict(LibraryError):
    """Concurrent writers kept winning; safe for the client to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "write_conflict"
    default_message = "Too many concurrent updates, please retry"
